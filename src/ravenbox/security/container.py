"""Streaming RavenBox container format.

Header layout (binary, all big-endian):
- 4 bytes: magic b'RBOX'
- 1 byte: version (1)
- 1 byte: alg_id (0 = plain, 1 = AES-256-GCM)

AES-256-GCM containers continue with:
- 4 bytes: argon2id time_cost
- 4 bytes: argon2id memory_cost (KiB)
- 1 byte: argon2id parallelism
- 16 bytes: salt
- 12 bytes: base nonce
- 4 bytes: plaintext chunk size

Body: one sealed record per chunk, ``chunk_size + 16`` bytes each except the
last, which may be shorter. There are no length prefixes and no trailer; the
last record is the one that ends the stream and it is sealed with the final
flag set (see :mod:`ravenbox.security.cipher`).

Plain containers carry only the 6-byte prefix followed by the raw payload, so
uploads made without a password can still be told apart from encrypted ones.

Everything here works on file-like objects and generators and keeps at most
a couple of chunks in memory.
"""
from __future__ import annotations

import io
import logging
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, Optional, Union

from ravenbox.core.exceptions import (
    FormatError,
    KeyDerivationError,
    PasswordRequiredError,
)

from .cipher import NONCE_LEN, TAG_LEN, ChunkCipher
from .kdf import SALT_LEN, KdfParams, derive_key, generate_salt

logger = logging.getLogger(__name__)

MAGIC = b"RBOX"
VERSION = 1
ALG_ID_PLAIN = 0
ALG_ID_AESGCM = 1

DEFAULT_CHUNK_SIZE = 64 * 1024
MAX_CHUNK_SIZE = 16 * 1024 * 1024

_PREFIX = struct.Struct(">4sBB")
_AESGCM_FIELDS = struct.Struct(f">IIB{SALT_LEN}s{NONCE_LEN}sI")

PREFIX_LEN = _PREFIX.size
HEADER_LEN = _PREFIX.size + _AESGCM_FIELDS.size

# results of sniff()
KIND_ENCRYPTED = "encrypted"
KIND_PLAIN = "plain"
KIND_FOREIGN = "foreign"


class PeekableReader:
    """
    Wraps a readable byte stream with lookahead.

    Network bodies may return short reads before the end of the stream, so
    :meth:`read` keeps reading until ``n`` bytes are collected or the
    underlying stream is exhausted.
    """

    def __init__(self, raw: BinaryIO, read_size: int = DEFAULT_CHUNK_SIZE):
        self._raw = raw
        self._buf = bytearray()
        self._eof = False
        self._read_size = read_size

    def _fill(self, n: int) -> None:
        while len(self._buf) < n and not self._eof:
            data = self._raw.read(max(n - len(self._buf), self._read_size))
            if not data:
                self._eof = True
                break
            self._buf += data

    def peek(self, n: int) -> bytes:
        self._fill(n)
        return bytes(self._buf[:n])

    def read(self, n: int = -1) -> bytes:
        if n is None or n < 0:
            while not self._eof:
                self._fill(len(self._buf) + self._read_size)
            n = len(self._buf)
        self._fill(n)
        out = bytes(self._buf[:n])
        del self._buf[:n]
        return out

    def at_eof(self) -> bool:
        self._fill(1)
        return not self._buf


class IterStream(io.RawIOBase):
    """Read-only file object over an iterator of byte strings."""

    def __init__(self, chunks: Iterable[bytes]):
        super().__init__()
        self._chunks = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        # fill the whole buffer unless the iterator runs dry
        filled = 0
        while filled < len(b):
            if not self._pending:
                try:
                    self._pending = next(self._chunks)
                except StopIteration:
                    break
                continue
            n = min(len(b) - filled, len(self._pending))
            b[filled : filled + n] = self._pending[:n]
            self._pending = self._pending[n:]
            filled += n
        return filled

    def close(self) -> None:
        # closing the generator runs its cleanup (key wiping) right away
        close = getattr(self._chunks, "close", None)
        if close is not None:
            close()
        super().close()


@dataclass(frozen=True)
class ContainerHeader:
    algorithm: int = ALG_ID_AESGCM
    kdf_params: KdfParams = KdfParams()
    salt: bytes = b""
    base_nonce: bytes = b""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    version: int = VERSION

    @property
    def encrypted(self) -> bool:
        return self.algorithm == ALG_ID_AESGCM

    def validate(self) -> None:
        if self.version != VERSION:
            raise FormatError(f"Unsupported version: {self.version}")
        if self.algorithm == ALG_ID_PLAIN:
            return
        if self.algorithm != ALG_ID_AESGCM:
            raise FormatError(f"Unsupported algorithm: {self.algorithm}")
        if not 1 <= self.chunk_size <= MAX_CHUNK_SIZE:
            raise FormatError(f"chunk size out of bounds: {self.chunk_size}")
        if len(self.salt) != SALT_LEN or len(self.base_nonce) != NONCE_LEN:
            raise FormatError("malformed salt or nonce")
        try:
            self.kdf_params.validate()
        except KeyDerivationError as e:
            raise FormatError(f"KDF parameters out of bounds: {e}") from e

    def to_bytes(self) -> bytes:
        header = bytearray(_PREFIX.pack(MAGIC, self.version, self.algorithm))
        if self.encrypted:
            p = self.kdf_params
            header += _AESGCM_FIELDS.pack(
                p.time_cost,
                p.memory_cost,
                p.parallelism,
                self.salt,
                self.base_nonce,
                self.chunk_size,
            )
        return bytes(header)


def read_header(reader: PeekableReader) -> ContainerHeader:
    """Consume and validate a container header."""
    prefix = reader.read(PREFIX_LEN)
    if len(prefix) < PREFIX_LEN:
        raise FormatError("Invalid file format (truncated header)")
    magic, version, alg = _PREFIX.unpack(prefix)
    if magic != MAGIC:
        raise FormatError("Invalid file format (magic mismatch)")
    if version != VERSION:
        raise FormatError(f"Unsupported version: {version}")

    if alg == ALG_ID_PLAIN:
        return ContainerHeader(algorithm=ALG_ID_PLAIN, version=version)
    if alg != ALG_ID_AESGCM:
        raise FormatError(f"Unsupported algorithm: {alg}")

    fields = reader.read(_AESGCM_FIELDS.size)
    if len(fields) < _AESGCM_FIELDS.size:
        raise FormatError("Invalid file format (truncated header)")
    time_cost, memory_cost, parallelism, salt, base_nonce, chunk_size = _AESGCM_FIELDS.unpack(fields)
    header = ContainerHeader(
        algorithm=alg,
        kdf_params=KdfParams(time_cost, memory_cost, parallelism),
        salt=salt,
        base_nonce=base_nonce,
        chunk_size=chunk_size,
        version=version,
    )
    header.validate()
    return header


def sniff(reader: PeekableReader) -> str:
    """Classify a stream without consuming it."""
    prefix = reader.peek(PREFIX_LEN)
    if len(prefix) < PREFIX_LEN or prefix[:4] != MAGIC:
        return KIND_FOREIGN
    if prefix[5] == ALG_ID_PLAIN:
        return KIND_PLAIN
    return KIND_ENCRYPTED


def container_size(plaintext_len: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Size in bytes of the encrypted container for a plaintext of the given length."""
    chunks = max(1, -(-plaintext_len // chunk_size))
    return HEADER_LEN + plaintext_len + chunks * TAG_LEN


def _iter_chunks(source: BinaryIO, chunk_size: int) -> Iterator[tuple]:
    # one chunk of lookahead tells us which chunk is the last one;
    # an empty source still yields a single empty final chunk
    reader = PeekableReader(source, read_size=chunk_size)
    chunk = reader.read(chunk_size)
    while True:
        if reader.at_eof():
            yield chunk, True
            return
        yield chunk, False
        chunk = reader.read(chunk_size)


def iter_encrypt(
    source: BinaryIO,
    password: Union[bytes, str],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    kdf_params: KdfParams = KdfParams(),
) -> Iterator[bytes]:
    """Yield an encrypted container for ``source``: the header, then one record per chunk."""
    header = ContainerHeader(
        algorithm=ALG_ID_AESGCM,
        kdf_params=kdf_params,
        salt=generate_salt(),
        base_nonce=os.urandom(NONCE_LEN),
        chunk_size=chunk_size,
    )
    header.validate()
    header_bytes = header.to_bytes()

    with derive_key(password, header.salt, kdf_params) as key:
        cipher = ChunkCipher(key, header.base_nonce, header_bytes)
        yield header_bytes
        for chunk, is_final in _iter_chunks(source, chunk_size):
            yield cipher.seal_next(chunk, is_final)
        logger.debug("sealed %d chunk(s)", cipher.index)


def encrypt_stream(
    source: BinaryIO,
    sink: BinaryIO,
    password: Union[bytes, str],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    kdf_params: KdfParams = KdfParams(),
) -> int:
    """Encrypt ``source`` into ``sink``; returns the number of bytes written."""
    written = 0
    for record in iter_encrypt(source, password, chunk_size, kdf_params):
        sink.write(record)
        written += len(record)
    return written


def _iter_open(reader: PeekableReader, header: ContainerHeader, password) -> Iterator[bytes]:
    record_len = header.chunk_size + TAG_LEN
    logger.debug("opening container: kdf %s, chunk size %d", header.kdf_params.to_dict(), header.chunk_size)
    with derive_key(password, header.salt, header.kdf_params) as key:
        cipher = ChunkCipher(key, header.base_nonce, header.to_bytes())
        while True:
            record = reader.read(record_len)
            is_final = reader.at_eof()
            # raises AuthError on the first bad chunk; nothing after it is read
            yield cipher.open_next(record, is_final)
            if is_final:
                break
        logger.debug("opened %d chunk(s)", cipher.index)


def iter_decrypt(source: Union[BinaryIO, PeekableReader], password: Union[bytes, str]) -> Iterator[bytes]:
    """Yield the plaintext of an encrypted container, chunk by chunk."""
    reader = source if isinstance(source, PeekableReader) else PeekableReader(source)
    header = read_header(reader)
    if not header.encrypted:
        raise FormatError("not an encrypted container")
    yield from _iter_open(reader, header, password)


def decrypt_stream(source: BinaryIO, sink: BinaryIO, password: Union[bytes, str]) -> int:
    """Decrypt ``source`` into ``sink``; returns the number of plaintext bytes written.

    Output is written as chunks verify, so on failure ``sink`` holds a
    partial, untrusted prefix of the plaintext. Callers writing to a file
    should use a temporary path (see :mod:`ravenbox.core.paths`).
    """
    written = 0
    for chunk in iter_decrypt(source, password):
        sink.write(chunk)
        written += len(chunk)
    return written


def wrap_plain(source: BinaryIO, read_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield a plain (unencrypted) container around ``source``."""
    yield ContainerHeader(algorithm=ALG_ID_PLAIN).to_bytes()
    while True:
        data = source.read(read_size)
        if not data:
            break
        yield data


def iter_unwrap(
    source: Union[BinaryIO, PeekableReader],
    password: Optional[Union[bytes, str]] = None,
) -> Iterator[bytes]:
    """Yield the payload of any container, decrypting when it is encrypted."""
    reader = source if isinstance(source, PeekableReader) else PeekableReader(source)
    header = read_header(reader)
    if header.encrypted:
        if password is None:
            raise PasswordRequiredError("object is encrypted; a password is required")
        yield from _iter_open(reader, header, password)
        return
    while True:
        data = reader.read(DEFAULT_CHUNK_SIZE)
        if not data:
            break
        yield data
