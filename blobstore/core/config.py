"""
Store configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (BLOBSTORE_*)
3. Project config (./blobstore.toml)
4. User config (~/.blobstore/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    BLOBSTORE_ADDRESS → address
    BLOBSTORE_POOL_SIZE → pool_size
    BLOBSTORE_COMPRESS → compress
    BLOBSTORE_TABLE → table
    BLOBSTORE_JOURNAL_MODE → journal_mode

A store can also be described by a single address carrying its options
as query parameters, see StoreConfig.from_address().
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel, Field, ValidationError, field_validator

from blobstore.core.errors import ConfigError

JOURNAL_MODES = ("delete", "truncate", "persist", "memory", "wal", "off")
SYNCHRONOUS_MODES = ("off", "normal", "full", "extra")


def default_pool_size() -> int:
    """One connection per available CPU."""
    return os.cpu_count() or 1


class StoreConfig(BaseModel):
    """Configuration for a SQLite-backed blob store. Fixed once the store is open."""

    address: str = "blobs.db"
    pool_size: int = Field(default_factory=default_pool_size)
    compress: bool = True
    table: str = "blobs"
    journal_mode: str | None = None
    synchronous: str | None = None
    busy_timeout_ms: int = 5000
    list_batch_size: int = 256

    model_config = {"frozen": True}

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("address must not be empty")
        return v

    @field_validator("pool_size")
    @classmethod
    def _check_pool_size(cls, v: int) -> int:
        return v if v > 0 else default_pool_size()

    @field_validator("table")
    @classmethod
    def _check_table(cls, v: str) -> str:
        if not v:
            raise ValueError("table name must not be empty")
        return v

    @field_validator("journal_mode")
    @classmethod
    def _check_journal_mode(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        mode = v.lower()
        if mode not in JOURNAL_MODES:
            raise ValueError(f"invalid journal mode {v!r}")
        return mode

    @field_validator("synchronous")
    @classmethod
    def _check_synchronous(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        mode = v.lower()
        if mode not in SYNCHRONOUS_MODES:
            raise ValueError(f"invalid synchronous mode {v!r}")
        return mode

    @field_validator("busy_timeout_ms", "list_batch_size")
    @classmethod
    def _check_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @property
    def is_uri(self) -> bool:
        return self.address.startswith("file:")

    @classmethod
    def create(cls, **values: Any) -> StoreConfig:
        """Build a config, reporting validation failures as ConfigError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_address(cls, addr: str, **overrides: Any) -> StoreConfig:
        """
        Build a config from an address with store options in its query.

        Recognized parameters (removed from the address):
            poolsize=n     pool size
            compress=bool  enable/disable compression (default true)
            journal=mode   journal mode

        Any other query parameters are passed to SQLite verbatim, which
        requires a "file:" URI.
        """
        values: dict[str, Any] = {}
        base, sep, query = addr.partition("?")
        if sep and base:
            params = parse_qsl(query, keep_blank_values=True)
            rest: list[tuple[str, str]] = []
            for name, value in params:
                if name == "poolsize":
                    try:
                        values["pool_size"] = int(value)
                    except ValueError as e:
                        raise ConfigError(f"invalid poolsize: {value!r}") from e
                elif name == "compress":
                    parsed = _parse_bool(value)
                    if parsed is None:
                        raise ConfigError(f"invalid compress: {value!r}")
                    values["compress"] = parsed
                elif name == "journal":
                    values["journal_mode"] = value
                else:
                    rest.append((name, value))
            addr = base
            if rest:
                if not base.startswith("file:"):
                    raise ConfigError(
                        f"SQLite query parameters require a file: URI, got {base!r}"
                    )
                addr += "?" + urlencode(rest)
        values["address"] = addr
        values.update(overrides)
        return cls.create(**values)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> StoreConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.blobstore/config.toml)
        user_config_path = user_path or Path.home() / ".blobstore" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./blobstore.toml)
        project_config_path = project_path or Path.cwd() / "blobstore.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        # Settings may live under a [store] table or at the top level
        section = merged.pop("store", {})
        if isinstance(section, dict):
            merged = {**section, **merged}

        return StoreConfig.create(**merged)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _parse_bool(value: str) -> bool | None:
    v = value.strip().lower()
    if v in ("1", "t", "true", "yes", "on"):
        return True
    if v in ("0", "f", "false", "no", "off"):
        return False
    return None


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from BLOBSTORE_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "BLOBSTORE_ADDRESS": "address",
        "BLOBSTORE_POOL_SIZE": "pool_size",
        "BLOBSTORE_COMPRESS": "compress",
        "BLOBSTORE_TABLE": "table",
        "BLOBSTORE_JOURNAL_MODE": "journal_mode",
        "BLOBSTORE_SYNCHRONOUS": "synchronous",
        "BLOBSTORE_BUSY_TIMEOUT_MS": "busy_timeout_ms",
    }

    for env_var, key in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            # pydantic coerces strings to the field types
            result[key] = value

    return result


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            for var_name in pattern.findall(value):
                value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
            data[key] = value
