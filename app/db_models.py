"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class PortalProfile(Base):
    """Persisted portal connection settings."""

    __tablename__ = "portal_profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    portal_url: Mapped[str] = mapped_column(String(512), default="")
    mac: Mapped[str] = mapped_column(String(64), default="")
    stb_lang: Mapped[str] = mapped_column(String(32), default="en_IN")
    timezone: Mapped[str] = mapped_column(String(64), default="Asia/Kolkata")
    user_agent: Mapped[str] = mapped_column(Text, default="")
    accept_language: Mapped[str] = mapped_column(String(200), default="")
    prehash: Mapped[str | None] = mapped_column(String(200), nullable=True)
    client_id: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
