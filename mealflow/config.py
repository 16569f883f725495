"""Application configuration: defaults, data directory and command-line overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import platformdirs

APP_NAME = "xjtu_mealflow"
PROJECT_NAME = APP_NAME.upper()
DATA_DIR_ENV = f"{PROJECT_NAME}_DATA"
DEFAULT_DB_FILE = "transactions.db"

_KNOWN_KEYS = frozenset(
    {
        "data_dir",
        "db_path",
        "db_in_mem",
        "fetch.account",
        "fetch.hallticket",
        "fetch.use_mock_data",
    }
)


def get_data_dir() -> Path:
    """Return the data directory: the environment override, the platform default, or ./.data."""
    from_env = os.environ.get(DATA_DIR_ENV)
    if from_env is not None:
        return Path(from_env)
    try:
        return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))
    except Exception:  # platform lookup failed; fall back to a local directory
        return Path(".") / ".data"


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise ValueError(f"invalid type for `{key}`, expected a boolean: {value!r}")


def _to_str(key: str, value: Any) -> str:
    if isinstance(value, (str, os.PathLike)):
        return os.fspath(value)
    raise ValueError(f"invalid type for `{key}`, expected a string: {value!r}")


@dataclass
class AppConfig:
    """Where data lives and whether the database is kept in memory."""

    data_dir: Path = field(default_factory=Path)
    db_file: Path = field(default_factory=Path)
    db_in_mem: bool = False

    def db_path(self) -> Path | None:
        """Return the database file path, or None when an in-memory database is used."""
        if self.db_in_mem:
            return None
        return self.data_dir / self.db_file


@dataclass
class FetchConfig:
    """Initial fetch settings; the database remains the source of truth once stored."""

    account: str | None = None
    hallticket: str | None = None
    use_mock_data: bool = False


@dataclass
class Config:
    """The complete application configuration."""

    config: AppConfig = field(default_factory=AppConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)

    @classmethod
    def load(cls, overrides: Mapping[str, Any] | None = None) -> "Config":
        """Build the configuration from defaults, then apply dotted-key ``overrides``."""
        values: dict[str, Any] = {
            "data_dir": str(get_data_dir()),
            "db_path": DEFAULT_DB_FILE,
        }
        for key, value in (overrides or {}).items():
            if value is not None:
                values[key.lower()] = value

        unknown = sorted(set(values) - _KNOWN_KEYS)
        if unknown:
            raise ValueError(f"unknown configuration keys: {', '.join(unknown)}")

        app = AppConfig(
            data_dir=Path(_to_str("data_dir", values["data_dir"])),
            db_file=Path(_to_str("db_path", values["db_path"])),
            db_in_mem=_to_bool("db_in_mem", values.get("db_in_mem", False)),
        )
        account = values.get("fetch.account")
        hallticket = values.get("fetch.hallticket")
        fetch = FetchConfig(
            account=None if account is None else _to_str("fetch.account", account),
            hallticket=(
                None if hallticket is None else _to_str("fetch.hallticket", hallticket)
            ),
            use_mock_data=_to_bool(
                "fetch.use_mock_data", values.get("fetch.use_mock_data", False)
            ),
        )
        return cls(config=app, fetch=fetch)