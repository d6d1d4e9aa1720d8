"""Unit tests for single-chunk AES-GCM sealing."""

import os

import pytest

from ravenbox.core.exceptions import AuthError
from ravenbox.security.cipher import (
    NONCE_LEN,
    TAG_LEN,
    ChunkCipher,
    chunk_associated_data,
    chunk_nonce,
    open_chunk,
    seal_chunk,
)
from ravenbox.security.kdf import DerivedKey


@pytest.fixture
def key():
    return DerivedKey(os.urandom(32))


@pytest.fixture
def base_nonce():
    return os.urandom(NONCE_LEN)


# ==============================================================================
# Tests: Nonces
# ==============================================================================

def test_chunk_nonce_zero_is_base(base_nonce):
    assert chunk_nonce(base_nonce, 0) == base_nonce


def test_chunk_nonces_are_distinct(base_nonce):
    nonces = {chunk_nonce(base_nonce, i) for i in range(5000)}
    assert len(nonces) == 5000
    assert all(len(n) == NONCE_LEN for n in nonces)


def test_chunk_nonce_rejects_bad_input(base_nonce):
    with pytest.raises(ValueError):
        chunk_nonce(b"short", 0)
    with pytest.raises(OverflowError):
        chunk_nonce(base_nonce, 2 ** 32)
    with pytest.raises(OverflowError):
        chunk_nonce(base_nonce, -1)


def test_associated_data_encodes_position():
    assert chunk_associated_data(1, False) != chunk_associated_data(2, False)
    assert chunk_associated_data(1, False) != chunk_associated_data(1, True)
    assert chunk_associated_data(0, True, b"HDR").endswith(b"HDR")


# ==============================================================================
# Tests: seal/open
# ==============================================================================

def test_seal_open_roundtrip(key, base_nonce):
    ad = chunk_associated_data(0, True)
    ct = seal_chunk(key.material, base_nonce, b"hello", ad)
    assert len(ct) == 5 + TAG_LEN
    assert open_chunk(key.material, base_nonce, ct, ad) == b"hello"


def test_open_with_wrong_associated_data_fails(key, base_nonce):
    ct = seal_chunk(key.material, base_nonce, b"hello", chunk_associated_data(0, False))
    with pytest.raises(AuthError):
        open_chunk(key.material, base_nonce, ct, chunk_associated_data(0, True))


def test_open_with_flipped_bit_fails(key, base_nonce):
    ad = chunk_associated_data(3, False)
    ct = bytearray(seal_chunk(key.material, base_nonce, b"payload", ad))
    ct[0] ^= 0x01
    with pytest.raises(AuthError):
        open_chunk(key.material, base_nonce, bytes(ct), ad)


def test_open_too_short_fails(key, base_nonce):
    with pytest.raises(AuthError, match="too short"):
        open_chunk(key.material, base_nonce, b"\x00" * (TAG_LEN - 1), b"")


# ==============================================================================
# Tests: ChunkCipher sequencing
# ==============================================================================

def test_chunk_cipher_roundtrip(key, base_nonce):
    sealer = ChunkCipher(key, base_nonce, b"header")
    records = [sealer.seal_next(b"a" * 10, False), sealer.seal_next(b"b" * 3, True)]
    assert sealer.index == 2

    opener = ChunkCipher(key, base_nonce, b"header")
    assert opener.open_next(records[0], False) == b"a" * 10
    assert opener.open_next(records[1], True) == b"b" * 3


def test_chunk_cipher_detects_reorder(key, base_nonce):
    sealer = ChunkCipher(key, base_nonce)
    sealer.seal_next(b"first", False)
    second = sealer.seal_next(b"second", False)

    opener = ChunkCipher(key, base_nonce)
    with pytest.raises(AuthError):
        opener.open_next(second, False)


def test_chunk_cipher_binds_header(key, base_nonce):
    record = ChunkCipher(key, base_nonce, b"header-a").seal_next(b"data", True)
    with pytest.raises(AuthError):
        ChunkCipher(key, base_nonce, b"header-b").open_next(record, True)


def test_chunk_cipher_refuses_after_final(key, base_nonce):
    sealer = ChunkCipher(key, base_nonce)
    sealer.seal_next(b"", True)
    with pytest.raises(RuntimeError, match="final chunk"):
        sealer.seal_next(b"more", False)
