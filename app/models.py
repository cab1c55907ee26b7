"""Pydantic models describing portal configuration and catalog payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_ACCEPT_LANGUAGE, DEFAULT_USER_AGENT
from .utils import normalize_title, pack_composite_id


class PortalConfig(BaseModel):
    """Runtime configuration of the portal connection."""

    model_config = ConfigDict(populate_by_name=True)

    portal_url: str = Field(
        default="",
        validation_alias=AliasChoices("portal_url", "portalUrl", "portal"),
    )
    mac: str = Field(default="", validation_alias=AliasChoices("mac", "macAddress"))
    stb_lang: str = Field(
        default="en_IN", validation_alias=AliasChoices("stb_lang", "stbLang")
    )
    timezone: str = "Asia/Kolkata"
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        validation_alias=AliasChoices("user_agent", "userAgent"),
    )
    accept_language: str = Field(
        default=DEFAULT_ACCEPT_LANGUAGE,
        validation_alias=AliasChoices("accept_language", "acceptLanguage"),
    )
    prehash: str = ""
    client_id: str = Field(
        default="", validation_alias=AliasChoices("client_id", "__cfduid")
    )

    @field_validator("portal_url", "mac", "prehash", "client_id", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def is_configured(self) -> bool:
        return bool(self.portal_url and self.mac)

    def identity(self) -> "PortalIdentity":
        return PortalIdentity(
            mac=self.mac,
            stb_lang=self.stb_lang or "en_IN",
            timezone=self.timezone or "Asia/Kolkata",
            client_id=self.client_id,
            user_agent=self.user_agent,
            accept_language=self.accept_language,
            prehash=self.prehash,
        )


@dataclass(frozen=True, slots=True)
class PortalIdentity:
    """Viewer identity and client attributes sent with every portal call."""

    mac: str
    stb_lang: str = "en_IN"
    timezone: str = "Asia/Kolkata"
    client_id: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    prehash: str = ""

    def cookie(self) -> str:
        parts = [
            f"mac={self.mac}",
            f"stb_lang={self.stb_lang}",
            f"timezone={self.timezone}",
            f"__cfduid={self.client_id}",
        ]
        return "; ".join(parts)


@dataclass(frozen=True, slots=True)
class GenreRecord:
    """A portal-defined channel grouping."""

    id: str
    title: str
    key: str = field(default="", compare=False)

    @classmethod
    def build(cls, genre_id: object, title: object) -> "GenreRecord":
        text = str(title or "").strip()
        ident = "" if genre_id is None else str(genre_id).strip()
        return cls(id=ident, title=text, key=normalize_title(text))

    @classmethod
    def from_payload(cls, entry: Mapping[str, Any]) -> "GenreRecord | None":
        genre_id = next(
            (
                entry[name]
                for name in ("id", "genre_id", "category_id")
                if entry.get(name) is not None
            ),
            None,
        )
        title = (
            entry.get("title")
            or entry.get("name")
            or entry.get("category_name")
            or entry.get("genre_title")
        )
        if genre_id in (None, "") or not title:
            return None
        return cls.build(genre_id, title)


class ChannelRecord(BaseModel):
    """A live channel as reported by ``get_all_channels``.

    Portals attach category attributes under deployment specific names, so
    unknown fields are kept and exposed through :meth:`attribute`.
    """

    model_config = ConfigDict(extra="allow")

    id: str = ""
    name: str = ""
    cmd: str = ""
    logo: str | None = None

    @field_validator("id", "name", "cmd", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        if value is None:
            return ""
        return str(value)

    @field_validator("logo", mode="before")
    @classmethod
    def _blank_logo(cls, value: object) -> object:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def attribute(self, name: str) -> Any:
        """Return a declared or extra attribute, or ``None``."""

        if name in type(self).model_fields:
            return getattr(self, name)
        return (self.model_extra or {}).get(name)

    @property
    def command(self) -> str:
        """Return the playable-source descriptor, falling back to the id."""

        return self.cmd or self.id

    def display_name(self) -> str:
        return self.name or f"CH {self.id}"

    def to_catalog_stub(self, endpoint: str, identity: str) -> dict[str, object]:
        """Return a Stremio-compatible meta object for catalog listings."""

        return {
            "id": pack_composite_id(endpoint, identity, self.command),
            "type": "tv",
            "name": self.display_name(),
            "poster": self.logo,
            "description": self.cmd,
        }
