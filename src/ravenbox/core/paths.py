""" Helpers for remote keys and local output files. """

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

CONTAINER_SUFFIX = ".rbx"
DECRYPTED_SUFFIX = ".dec"


def sanitize_prefix(prefix: Optional[str]) -> str:
    """
    Normalize an upload prefix into a key prefix.

    Leading slashes are dropped and a trailing one is added, so "//books"
    becomes "books/". A bare "/" (or nothing) means the bucket root.
    """
    if not prefix:
        return ""
    prefix = prefix.replace("\\", "/").lstrip("/")
    if not prefix:
        return ""
    if not prefix.endswith("/"):
        prefix += "/"
    return prefix


def build_remote_key(source_path: Union[str, Path], prefix: Optional[str] = None, name: Optional[str] = None) -> str:
    filename = name or Path(source_path).name
    if not filename:
        raise ValueError(f"cannot derive an object name from {source_path!r}")
    return sanitize_prefix(prefix) + filename.lstrip("/")


def key_basename(key: str) -> str:
    # last path component of an object key
    return key.rstrip("/").rsplit("/", 1)[-1]


def crypt_output_name(input_path: Union[str, Path], encrypt: bool) -> str:
    """
    Default output file name for local encrypt/decrypt.

    Encrypting appends ".rbx"; decrypting strips it, or appends ".dec"
    when the input does not carry the suffix.
    """
    name = Path(input_path).name
    if encrypt:
        return name + CONTAINER_SUFFIX
    if name.endswith(CONTAINER_SUFFIX) and len(name) > len(CONTAINER_SUFFIX):
        return name[: -len(CONTAINER_SUFFIX)]
    return name + DECRYPTED_SUFFIX


@contextlib.contextmanager
def atomic_output(destination: Union[str, Path]) -> Iterator[BinaryIO]:
    """
    Open a temporary file next to ``destination`` for writing.

    It is renamed over ``destination`` only when the block exits cleanly;
    on any exception the temporary file is removed, so a failed decrypt
    never leaves partial plaintext at the final path.
    """
    destination = Path(destination).expanduser()
    destination.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=destination.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            yield f
        os.replace(tmp_path, destination)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            tmp_path.unlink()
        raise
