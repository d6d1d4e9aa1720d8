"""Configuration loading for the RavenBox CLI."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from .exceptions import ConfigError
from .storage import LocalStorageBackend, S3StorageBackend, StorageBackend

ENV_PREFIX = "RAVENBOX_"
CONFIG_ENV = "RAVENBOX_CONFIG"
PASSWORD_ENV = "RAVENBOX_PASSWORD"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "ravenbox" / "ravenbox.json"

_S3_FIELDS = ("access_key_id", "secret_access_key", "region", "endpoint_url", "bucket")


@dataclass
class Config:
    access_key_id: str = ""
    secret_access_key: str = ""
    region: str = ""
    endpoint_url: str = ""
    bucket: str = ""
    # when set, objects live in this directory instead of a bucket
    local_root: str = ""

    def missing_fields(self) -> list:
        if self.local_root:
            return []
        return [name for name in _S3_FIELDS if not getattr(self, name)]

    def is_valid(self) -> bool:
        return not self.missing_fields()

    def build_backend(self) -> StorageBackend:
        missing = self.missing_fields()
        if missing:
            raise ConfigError(f"configuration is incomplete, missing: {', '.join(missing)}")
        if self.local_root:
            return LocalStorageBackend(self.local_root)
        return S3StorageBackend(
            bucket=self.bucket,
            endpoint_url=self.endpoint_url,
            region=self.region,
            access_key_id=self.access_key_id,
            secret_access_key=self.secret_access_key,
        )


def config_path(path: Optional[str | Path] = None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.getenv(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def write_template(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(Config()), f, indent=2)


def load_config(
    path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """
    Load the config file and apply ``RAVENBOX_<FIELD>`` environment overrides.

    A missing file is replaced by an empty template and ``ConfigError`` is
    raised so the user knows where to fill in credentials. Environment
    variables alone are enough when they make the config complete.
    """
    environ = os.environ if environ is None else environ
    path = config_path(path)

    values = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"cannot read config file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"config file {path} must contain a JSON object")
        known = {f.name for f in fields(Config)}
        values = {k: str(v) for k, v in raw.items() if k in known and v is not None}

    for f in fields(Config):
        env_value = environ.get(ENV_PREFIX + f.name.upper())
        if env_value:
            values[f.name] = env_value

    config = Config(**values)
    if not path.exists() and not config.is_valid():
        write_template(path)
        raise ConfigError(f"configuration initialized at {path}; fill in the storage credentials")
    return config
