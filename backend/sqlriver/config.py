"""Application configuration management."""

from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Host settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.debug and self.log_level.upper() != "TRACE":
            self.log_level = "DEBUG"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    api_v1_str: str = "/api/v1"

    # Elasticsearch sink
    elasticsearch_url: str = "http://localhost:9200"
    elasticsearch_username: Optional[str] = None
    elasticsearch_password: Optional[str] = None
    elasticsearch_timeout: float = 30.0
    elasticsearch_verify_certs: bool = True

    # River: settings are given as JSON, e.g.
    # RIVER_SETTINGS='{"mysql": {"hostname": "db", "database": "shop", ...}}'
    river_name: str = "mysql_river"
    river_settings: Dict[str, Any] = {}
    river_autostart: bool = True
    river_history_size: int = 20


# Global settings instance
settings = Settings()
