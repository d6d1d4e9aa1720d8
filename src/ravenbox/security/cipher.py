"""AES-256-GCM sealing of a single container chunk.

Each chunk is bound to its position through the associated data:

- 8 bytes: big-endian chunk index
- 1 byte: final flag (1 for the last chunk, else 0)
- N bytes: the serialized container header

so reordering, truncation, a misplaced final chunk, or a header edit all
surface as an authentication failure.
"""
from __future__ import annotations

import struct

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ravenbox.core.exceptions import AuthError, FormatError

from .kdf import DerivedKey

NONCE_LEN = 12
TAG_LEN = 16
# the counter is XORed into the low 4 bytes of the base nonce
MAX_CHUNKS = 2 ** 32


def chunk_nonce(base_nonce: bytes, index: int) -> bytes:
    """Return the nonce for chunk ``index``: ``base_nonce XOR index``."""
    if len(base_nonce) != NONCE_LEN:
        raise ValueError(f"base nonce must be {NONCE_LEN} bytes")
    if not 0 <= index < MAX_CHUNKS:
        raise OverflowError(f"chunk index {index} exceeds the per-container limit")
    counter = int.from_bytes(base_nonce, "big") ^ index
    return counter.to_bytes(NONCE_LEN, "big")


def chunk_associated_data(index: int, is_final: bool, header: bytes = b"") -> bytes:
    return struct.pack(">QB", index, 1 if is_final else 0) + header


def seal_chunk(key: bytes, nonce: bytes, plaintext: bytes, associated_data: bytes) -> bytes:
    """Encrypt ``plaintext`` and return ``ciphertext || tag``."""
    return AESGCM(key).encrypt(nonce, plaintext, associated_data)


def open_chunk(key: bytes, nonce: bytes, ciphertext: bytes, associated_data: bytes) -> bytes:
    """Decrypt ``ciphertext || tag`` or raise :class:`AuthError`."""
    if len(ciphertext) < TAG_LEN:
        raise AuthError("chunk too short to carry an authentication tag")
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag:
        raise AuthError("authentication failed (tampered data or wrong password)") from None


class ChunkCipher:
    """
    Seals/opens the chunks of one container in strict index order.

    Indexes are handed out by the cipher itself, so a caller cannot reuse
    a nonce by passing the same index twice.
    """

    def __init__(self, key: DerivedKey, base_nonce: bytes, header: bytes = b""):
        if len(base_nonce) != NONCE_LEN:
            raise ValueError(f"base nonce must be {NONCE_LEN} bytes")
        self._aead = AESGCM(key.material)
        self._base_nonce = base_nonce
        self._header = header
        self._index = 0
        self._finished = False

    @property
    def index(self) -> int:
        """Index of the next chunk to be processed."""
        return self._index

    def _next(self, is_final: bool):
        if self._finished:
            raise RuntimeError("final chunk already processed")
        if self._index >= MAX_CHUNKS:
            raise FormatError("container exceeds the maximum number of chunks")
        nonce = chunk_nonce(self._base_nonce, self._index)
        ad = chunk_associated_data(self._index, is_final, self._header)
        self._index += 1
        self._finished = is_final
        return nonce, ad

    def seal_next(self, plaintext: bytes, is_final: bool) -> bytes:
        nonce, ad = self._next(is_final)
        return self._aead.encrypt(nonce, plaintext, ad)

    def open_next(self, ciphertext: bytes, is_final: bool) -> bytes:
        if len(ciphertext) < TAG_LEN:
            raise AuthError("chunk too short to carry an authentication tag")
        nonce, ad = self._next(is_final)
        try:
            return self._aead.decrypt(nonce, ciphertext, ad)
        except InvalidTag:
            raise AuthError(
                f"authentication failed at chunk {self._index - 1} "
                "(tampered data or wrong password)"
            ) from None
