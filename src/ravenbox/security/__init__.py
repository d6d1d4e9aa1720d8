"""Security helpers: key derivation, chunk sealing and the container format for RavenBox.

This package provides:
- Argon2id password key derivation with wipeable keys
- AES-256-GCM sealing of individual chunks bound to their position
- Streaming encode/decode of the self-describing container format
"""

from .kdf import KdfParams, DerivedKey, generate_salt, derive_key
from .cipher import ChunkCipher, chunk_nonce, seal_chunk, open_chunk
from .container import (
    ContainerHeader,
    encrypt_stream,
    decrypt_stream,
    iter_encrypt,
    iter_decrypt,
    iter_unwrap,
    read_header,
    sniff,
)

__all__ = [
    "KdfParams",
    "DerivedKey",
    "generate_salt",
    "derive_key",
    "ChunkCipher",
    "chunk_nonce",
    "seal_chunk",
    "open_chunk",
    "ContainerHeader",
    "encrypt_stream",
    "decrypt_stream",
    "iter_encrypt",
    "iter_decrypt",
    "iter_unwrap",
    "read_header",
    "sniff",
]
