"""
Upload/download workflow: containers in front of a storage backend.

Every upload is wrapped in a container. With a password the payload is
encrypted; without one it is a plain container, whose magic bytes still let a
download tell the two apart. Objects without the magic (uploaded by other
tools) are downloaded verbatim when no password is given; with a password
only an encrypted container is accepted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

from ..security.container import (
    DEFAULT_CHUNK_SIZE,
    KIND_ENCRYPTED,
    KIND_FOREIGN,
    IterStream,
    PeekableReader,
    decrypt_stream,
    encrypt_stream,
    iter_encrypt,
    iter_unwrap,
    sniff,
    wrap_plain,
)
from ..security.kdf import KdfParams
from .exceptions import FormatError, PasswordRequiredError
from .paths import atomic_output, build_remote_key, key_basename
from .storage import ObjectMeta, StorageBackend

logger = logging.getLogger(__name__)

Password = Optional[Union[str, bytes]]


class TransferOrchestrator:
    """Runs one upload or download at a time against ``backend``."""

    def __init__(
        self,
        backend: StorageBackend,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        kdf_params: KdfParams = KdfParams(),
    ):
        self.backend = backend
        self.chunk_size = chunk_size
        self.kdf_params = kdf_params

    def encrypt_and_upload(
        self,
        source_path: Union[str, Path],
        password: Password = None,
        remote_key: Optional[str] = None,
        prefix: Optional[str] = None,
        expires_in: Optional[int] = None,
    ) -> str:
        """
        Stream ``source_path`` through a container into the backend.

        Returns the object key written. ``expires_in`` (seconds from now)
        sets the object's Expires header where the backend supports it.
        """
        src = Path(source_path).expanduser()
        if not src.is_file():
            raise FileNotFoundError(f"no such file: {src}")
        key = build_remote_key(src, prefix, remote_key)
        expires = None
        if expires_in is not None:
            expires = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

        with open(src, "rb") as f:
            if password is None:
                records = wrap_plain(f, self.chunk_size)
            else:
                records = iter_encrypt(f, password, self.chunk_size, self.kdf_params)
            with IterStream(records) as stream:
                logger.info(
                    "uploading %s -> %s (%s)", src.name, key, "encrypted" if password is not None else "plain"
                )
                self.backend.put(key, stream, expires=expires)
        return key

    def download_and_decrypt(
        self,
        remote_key: str,
        local_path: Optional[Union[str, Path]] = None,
        password: Password = None,
    ) -> Path:
        """
        Fetch ``remote_key`` and write its payload to ``local_path``.

        ``local_path`` may be a directory (the key's base name is used) or
        omitted (current directory). The file appears only once the whole
        payload has been read and, if encrypted, authenticated. Passing a
        password requires an encrypted container; plain or foreign objects
        raise FormatError.
        """
        destination = Path(local_path).expanduser() if local_path else Path.cwd()
        if destination.is_dir():
            destination = destination / key_basename(remote_key)

        body = self.backend.get(remote_key)
        try:
            reader = PeekableReader(body, read_size=self.chunk_size)
            kind = sniff(reader)
            if kind == KIND_ENCRYPTED and password is None:
                raise PasswordRequiredError(f"{remote_key} is encrypted; a password is required")
            if kind != KIND_ENCRYPTED and password is not None:
                # with a password the object must be an encrypted container
                raise FormatError(f"{remote_key} is not an encrypted container ({kind})")
            if kind == KIND_FOREIGN:
                logger.warning("%s is not a ravenbox container; saving it unmodified", remote_key)
                payload = iter(lambda: reader.read(self.chunk_size), b"")
            else:
                payload = iter_unwrap(reader, password)

            with atomic_output(destination) as out:
                for chunk in payload:
                    out.write(chunk)
        finally:
            close = getattr(body, "close", None)
            if close is not None:
                close()
        logger.info("downloaded %s -> %s (%s)", remote_key, destination, kind)
        return destination

    def list_objects(self, prefix: Optional[str] = None, max_keys: Optional[int] = None) -> List[ObjectMeta]:
        return self.backend.list((prefix or "").lstrip("/"), max_keys)


def encrypt_file(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    password: Union[str, bytes],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    kdf_params: KdfParams = KdfParams(),
) -> Path:
    """Encrypt a local file into a container file."""
    with open(Path(input_path).expanduser(), "rb") as src, atomic_output(output_path) as out:
        written = encrypt_stream(src, out, password, chunk_size, kdf_params)
    logger.info("encrypted %s -> %s (%d bytes)", input_path, output_path, written)
    return Path(output_path).expanduser()


def decrypt_file(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    password: Union[str, bytes],
) -> Path:
    """Decrypt a container file; the output only appears if every chunk authenticates."""
    with open(Path(input_path).expanduser(), "rb") as src, atomic_output(output_path) as out:
        written = decrypt_stream(src, out, password)
    logger.info("decrypted %s -> %s (%d bytes)", input_path, output_path, written)
    return Path(output_path).expanduser()
