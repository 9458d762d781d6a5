"""Application configuration for the file proxy service."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class FileProxySettings(BaseSettings):
    """Runtime settings for the file proxy API service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    storage_path: Path = env_field(Path("./files-metadata"), "FILES_METADATA_DIR")
    throttle_limit: int = env_field(0, "THROTTLE_LIMIT")
    throttle_window_seconds: int = env_field(60, "THROTTLE_WINDOW_SECONDS")
    basic_auth_username: str = env_field("", "BASIC_AUTH_USERNAME")
    basic_auth_password: SecretStr = env_field(SecretStr(""), "BASIC_AUTH_PASSWORD")
    server_host: str = env_field("0.0.0.0", "SERVER_HOST")
    server_port: int = env_field(3000, "SERVER_PORT")
    upstream_timeout_seconds: float = env_field(30.0, "FILEPROXY_UPSTREAM_TIMEOUT")
    max_download_bytes: Optional[int] = env_field(None, "FILEPROXY_MAX_DOWNLOAD_BYTES")
    allow_insecure_upstream: bool = env_field(False, "FILEPROXY_ALLOW_INSECURE_UPSTREAM")
    redis_url: Optional[str] = env_field(None, "FILEPROXY_REDIS_URL")
    metrics_token: Optional[SecretStr] = env_field(None, "FILEPROXY_METRICS_TOKEN")
    log_level: str = env_field("INFO", "FILEPROXY_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "FILEPROXY_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "FILEPROXY_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "FILEPROXY_OTEL_SAMPLER_RATIO")

    @field_validator("throttle_limit", mode="before")
    @classmethod
    def _blank_throttle_disables(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        return value

    @field_validator("max_download_bytes", "redis_url", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("storage_path", mode="before")
    @classmethod
    def _expand_storage_path(cls, value):
        if isinstance(value, str):
            value = Path(value)
        if isinstance(value, Path):
            return value.expanduser()
        return value

