"""Persisted portal configuration backed by the SQL database."""

from __future__ import annotations

import logging
import secrets

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import PortalProfile
from ..errors import InvalidEndpoint
from ..models import PortalConfig
from .portal import canonicalize_endpoint

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_ID = "default"


class PortalConfigStore:
    """Loads, caches and saves the single portal configuration row.

    The in-memory copy is swapped wholesale on every save so readers never
    see a half-applied update.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        profile_id: str = DEFAULT_PROFILE_ID,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._profile_id = profile_id
        self._current = self._seed_from_settings()

    @property
    def current(self) -> PortalConfig:
        return self._current

    def _seed_from_settings(self) -> PortalConfig:
        try:
            portal_url = canonicalize_endpoint(self._settings.portal_url)
        except InvalidEndpoint:
            portal_url = ""
        return PortalConfig(
            portal_url=portal_url,
            mac=self._settings.portal_mac,
            stb_lang=self._settings.stb_lang,
            timezone=self._settings.timezone,
            user_agent=self._settings.user_agent,
            accept_language=self._settings.accept_language,
            prehash=self._settings.prehash,
        )

    async def load(self) -> PortalConfig:
        """Read the stored row, creating it from settings on first start."""

        async with self._session_factory() as session:
            profile = await session.get(PortalProfile, self._profile_id)
            if profile is None:
                config = self._current
                if not config.client_id:
                    config = config.model_copy(
                        update={"client_id": secrets.token_hex(16)}
                    )
                profile = PortalProfile(id=self._profile_id)
                self._apply(profile, config)
                session.add(profile)
                await session.commit()
                logger.info("Created portal profile %s", self._profile_id)
            elif not profile.client_id:
                profile.client_id = secrets.token_hex(16)
                await session.commit()
            self._current = self._to_config(profile)
        return self._current

    async def save(self, config: PortalConfig) -> PortalConfig:
        """Persist a full configuration, keeping the existing client id."""

        update: dict[str, str] = {}
        if config.portal_url:
            update["portal_url"] = canonicalize_endpoint(config.portal_url)
        if not config.client_id:
            update["client_id"] = self._current.client_id or secrets.token_hex(16)
        if update:
            config = config.model_copy(update=update)

        async with self._session_factory() as session:
            profile = await session.get(PortalProfile, self._profile_id)
            if profile is None:
                profile = PortalProfile(id=self._profile_id)
                session.add(profile)
            self._apply(profile, config)
            await session.commit()
        self._current = config
        return config

    async def update_endpoint(self, endpoint: str) -> None:
        """Record a permanently relocated portal as the default endpoint."""

        await self.save(self._current.model_copy(update={"portal_url": endpoint}))

    @staticmethod
    def _apply(profile: PortalProfile, config: PortalConfig) -> None:
        profile.portal_url = config.portal_url
        profile.mac = config.mac
        profile.stb_lang = config.stb_lang
        profile.timezone = config.timezone
        profile.user_agent = config.user_agent
        profile.accept_language = config.accept_language
        profile.prehash = config.prehash or None
        profile.client_id = config.client_id

    @staticmethod
    def _to_config(profile: PortalProfile) -> PortalConfig:
        return PortalConfig(
            portal_url=profile.portal_url or "",
            mac=profile.mac or "",
            stb_lang=profile.stb_lang or "en_IN",
            timezone=profile.timezone or "Asia/Kolkata",
            user_agent=profile.user_agent or PortalConfig().user_agent,
            accept_language=profile.accept_language or PortalConfig().accept_language,
            prehash=profile.prehash or "",
            client_id=profile.client_id or "",
        )
