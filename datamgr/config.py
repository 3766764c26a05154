"""
Configuration for the data manager server.

Uses pydantic-settings for environment variable loading. All settings have
defaults suitable for local use; every field can be overridden with a
DATAMGR_-prefixed environment variable (e.g. DATAMGR_JSON_DIR).
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Server configuration loaded from environment."""

    # Storage directories
    json_dir: str = Field(default="./data/json", description="Directory for JSON documents")
    sqlite_dir: str = Field(default="./data/sqlite", description="Directory for SQLite databases")

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, description="Bind port")

    # CORS settings
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # Front-end assets, mounted at / when the directory exists
    static_dir: str | None = Field(default=None, description="Static front-end directory")

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    log_format: str = Field(default="text", description="Log format: json or text")

    model_config = {"env_prefix": "DATAMGR_"}
