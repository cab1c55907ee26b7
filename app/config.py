"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = "StalkerTV-Free/40304.13 CFNetwork/3860.200.31 Darwin/25.1.0"
DEFAULT_ACCEPT_LANGUAGE = "en-IN,en-GB;q=0.9,en;q=0.8"


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Stalker IPTV", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=7100, alias="PORT")

    portal_url: str = Field(default="", alias="PORTAL_URL")
    portal_mac: str = Field(
        default="",
        alias="PORTAL_MAC",
        validation_alias=AliasChoices("PORTAL_MAC", "MAC"),
    )
    stb_lang: str = Field(default="en_IN", alias="STB_LANG")
    timezone: str = Field(default="Asia/Kolkata", alias="TIMEZONE")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="PORTAL_USER_AGENT")
    accept_language: str = Field(
        default=DEFAULT_ACCEPT_LANGUAGE, alias="PORTAL_ACCEPT_LANGUAGE"
    )
    prehash: str = Field(default="", alias="PORTAL_PREHASH")

    portal_timeout_seconds: float = Field(
        default=96.0, alias="PORTAL_TIMEOUT", ge=1.0
    )
    token_ttl_seconds: int = Field(default=1_200, alias="TOKEN_TTL", ge=1)
    refresh_interval_seconds: int = Field(
        default=3_600, alias="REFRESH_INTERVAL", ge=60
    )
    catalog_page_size: int = Field(
        default=100, alias="CATALOG_PAGE_SIZE", ge=1, le=1_000
    )

    ssl_keyfile: str | None = Field(default=None, alias="SSL_KEYFILE")
    ssl_certfile: str | None = Field(default=None, alias="SSL_CERTFILE")
    ssl_ca_certs: str | None = Field(default=None, alias="SSL_CA_CERTS")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./stalker.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "portal_url",
        "portal_mac",
        "prehash",
        mode="before",
    )
    @classmethod
    def _strip_text(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("ssl_keyfile", "ssl_certfile", "ssl_ca_certs", mode="before")
    @classmethod
    def _blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def tls_enabled(self) -> bool:
        """Return whether both halves of the TLS key pair are configured."""

        return bool(self.ssl_keyfile and self.ssl_certfile)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
