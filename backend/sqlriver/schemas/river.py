"""River configuration resolved from the host's key/value settings."""

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.engine import URL

from sqlriver.exceptions import ConfigurationError

REQUIRED_KEYS = ("hostname", "database", "username", "password", "query")


def _string_value(value: Any, default: Optional[str]) -> Optional[str]:
    if value is None:
        return default
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() == "true"


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise ConfigurationError(key, f"Config {key} must be an integer, got {value!r}")


class SyncConfig(BaseModel):
    """Immutable river configuration, created once at startup."""

    model_config = ConfigDict(frozen=True)

    river_name: str = Field(..., min_length=1)
    dialect: str = Field(default="mysql+pymysql", min_length=1)
    hostname: str = Field(..., min_length=1, description="Source host, optionally host:port")
    database: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1, description="SQL executed each cycle")
    index: str = Field(..., min_length=1)
    doc_type: str = Field(default="data", min_length=1)
    unique_id_field: Optional[str] = None
    delete_old_entries: bool = True
    interval_ms: int = Field(default=600000, description="Time between cycle starts; <= 0 runs once")
    fetch_size: int = Field(default=500, gt=0)
    count_rows: bool = True

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def one_shot(self) -> bool:
        return self.interval_ms <= 0

    @property
    def connection_url(self) -> URL:
        """SQLAlchemy URL for the source; a ``host:port`` hostname is split."""
        host, _, port = self.hostname.partition(":")
        return URL.create(
            self.dialect,
            username=self.username,
            password=self.password,
            host=host,
            port=int(port) if port else None,
            database=self.database,
        )

    @classmethod
    def from_river_settings(cls, river_name: str, river_settings: Mapping[str, Any]) -> "SyncConfig":
        """
        Resolve a SyncConfig from raw river settings.

        Keys are read from the nested ``mysql`` object when present, otherwise
        from the top level. Raises ConfigurationError when a required key is
        missing or a value cannot be parsed.
        """
        source: Mapping[str, Any] = river_settings.get("mysql", river_settings)
        if not isinstance(source, Mapping):
            raise ConfigurationError("mysql", "River settings 'mysql' must be an object")

        def read(key: str, default: Optional[str] = None) -> Optional[str]:
            return _string_value(source.get(key), default)

        for key in REQUIRED_KEYS:
            if not read(key):
                raise ConfigurationError(key)

        values: Dict[str, Any] = {
            "river_name": river_name,
            "dialect": read("dialect", "mysql+pymysql"),
            "hostname": read("hostname"),
            "database": read("database"),
            "username": read("username"),
            "password": read("password"),
            "query": read("query"),
            "index": read("index", river_name),
            "doc_type": read("type", "data"),
            "unique_id_field": read("uniqueIdField") or None,
            "delete_old_entries": _parse_bool(read("deleteOldEntries", "true")),
            "interval_ms": _parse_int("interval", read("interval", "600000")),
            "fetch_size": _parse_int("fetchSize", read("fetchSize", "500")),
            "count_rows": _parse_bool(read("countRows", "true")),
        }
        try:
            return cls(**values)
        except ValidationError as e:
            key = str(e.errors()[0]["loc"][0]) if e.errors() else "river"
            raise ConfigurationError(key, f"Invalid river config {key}: {e}")
