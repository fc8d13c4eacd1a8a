from __future__ import annotations

import secrets
from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Site Access Control"
    app_env: str = "development"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_dir: Path = BASE_DIR / "logs"

    database_url: str = f"sqlite:///{BASE_DIR / 'data' / 'site_access.db'}"
    store_backend: Literal["sql", "rest"] = "sql"
    rest_url: str = ""
    rest_service_key: str = ""
    rest_schema: str = "public"
    rest_timeout_seconds: float = 10.0

    jwt_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(48))
    jwt_algorithm: str = "HS256"
    access_token_minutes: int = 12 * 60

    descriptor_encryption: bool = True
    descriptor_cipher_key: str = Field(default_factory=lambda: secrets.token_urlsafe(32))

    embedding_backend: Literal["arcface", "dlib"] = "arcface"
    # Falls back to the embedding provider's own length when unset.
    descriptor_length: int | None = None
    # Overrides the embedding provider's own calibration when set.
    match_distance_threshold: float | None = None
    duplicate_window_seconds: int = 120

    default_timezone: str = "America/La_Paz"

    cors_origins_raw: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins_raw.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
