"""Password key derivation for RavenBox containers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Union

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw

from ravenbox.core.exceptions import KeyDerivationError

SALT_LEN = 16
KEY_LEN = 32

MAX_TIME_COST = 64
MAX_MEMORY_COST = 2 * 1024 * 1024  # KiB, i.e. 2 GiB
MAX_PARALLELISM = 16


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters, stored in every container header."""

    time_cost: int = 3
    memory_cost: int = 65536
    parallelism: int = 1

    def validate(self) -> None:
        if not 1 <= self.parallelism <= MAX_PARALLELISM:
            raise KeyDerivationError(f"parallelism out of range: {self.parallelism}")
        if not 1 <= self.time_cost <= MAX_TIME_COST:
            raise KeyDerivationError(f"time_cost out of range: {self.time_cost}")
        # argon2 needs at least 8 KiB per lane
        if not 8 * self.parallelism <= self.memory_cost <= MAX_MEMORY_COST:
            raise KeyDerivationError(f"memory_cost out of range: {self.memory_cost}")

    def to_dict(self) -> Dict:
        return {
            "algo": "argon2id",
            "time": self.time_cost,
            "memory": self.memory_cost,
            "parallelism": self.parallelism,
        }


class DerivedKey:
    """
    A derived key held in a mutable buffer so it can be wiped after use.

    Python gives no hard guarantee that no other copy of the bytes exists
    (argon2 returns an immutable ``bytes`` object first), so wiping is
    best-effort. Use it as a context manager to bound its lifetime:

        with derive_key(password, salt) as key:
            ...
    """

    __slots__ = ("_buf",)

    def __init__(self, raw: bytes):
        self._buf = bytearray(raw)

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        state = "wiped" if self.wiped else f"{len(self._buf)} bytes"
        return f"<DerivedKey {state}>"

    def __enter__(self) -> "DerivedKey":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    @property
    def material(self) -> bytearray:
        if self.wiped:
            raise RuntimeError("Derived key has been wiped")
        return self._buf

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0


def generate_salt(length: int = SALT_LEN) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def derive_key(
    password: Union[bytes, str],
    salt: bytes,
    params: KdfParams = KdfParams(),
) -> DerivedKey:
    """
    Derive a container key from a password using Argon2id.

    The salt must be exactly ``SALT_LEN`` bytes. Any password is accepted,
    including an empty one.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_LEN:
        raise KeyDerivationError(f"salt must be {SALT_LEN} bytes")
    params.validate()

    try:
        raw = hash_secret_raw(
            secret=password,
            salt=bytes(salt),
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=KEY_LEN,
            type=Type.ID,
        )
    except HashingError as e:
        raise KeyDerivationError(f"argon2 derivation failed: {e}") from e
    return DerivedKey(raw)
