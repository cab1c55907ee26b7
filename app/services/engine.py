"""High level orchestration of portal sessions, genres, channels and manifest."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import replace
from typing import Any

import httpx

from ..config import Settings
from ..errors import PortalError, UnknownGenre
from ..models import ChannelRecord, PortalConfig, PortalIdentity
from ..utils import CompositeId, strip_ffmpeg_prefix, unpack_composite_id
from .channels import ChannelCache
from .config_store import PortalConfigStore
from .genres import GenreIndex, is_unfiltered
from .manifest import CATALOG_ID, ManifestPublisher
from .normalizer import extract_list, extract_stream_url, extract_token
from .portal import PortalOrchestrator, PortalTransport, canonicalize_endpoint
from .sessions import SessionCache

logger = logging.getLogger(__name__)

FALLBACK_CHANNEL_NAME = "Live Channel"


class PortalEngine:
    """Owns the caches of one configured portal and serves add-on requests."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        config_store: PortalConfigStore,
        *,
        sessions: SessionCache | None = None,
    ) -> None:
        self._settings = settings
        self._config_store = config_store
        self.transport = PortalTransport(
            http_client, timeout=settings.portal_timeout_seconds
        )
        self.sessions = sessions or SessionCache(
            self._handshake, ttl_seconds=settings.token_ttl_seconds
        )
        self.orchestrator = PortalOrchestrator(
            self.transport,
            on_relocate=self.sessions.evict,
            on_permanent_redirect=config_store.update_endpoint,
        )
        self.genres = GenreIndex(self.orchestrator, self.sessions)
        self.channels = ChannelCache(self.orchestrator, self.sessions)
        self.manifest = ManifestPublisher(name=settings.app_name)
        self._refresh_task: asyncio.Task[None] | None = None
        self._refresh_job: asyncio.Task[None] | None = None

    @property
    def config(self) -> PortalConfig:
        return self._config_store.current

    def is_configured(self) -> bool:
        config = self.config
        if not config.mac:
            return False
        try:
            canonicalize_endpoint(config.portal_url)
        except PortalError:
            return False
        return True

    def _connection(self) -> tuple[str, PortalIdentity]:
        config = self.config
        return canonicalize_endpoint(config.portal_url), config.identity()

    def _identity_for(self, mac: str) -> PortalIdentity:
        return replace(self.config.identity(), mac=mac)

    async def _handshake(self, endpoint: str, identity: PortalIdentity) -> Any:
        return await self.orchestrator.request(
            endpoint, identity, "handshake", token="", context="stb"
        )

    # Lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Load the stored configuration and launch background refreshes."""

        await self._config_store.load()
        if self.is_configured():
            self.request_refresh()
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        for task in (self._refresh_task, self._refresh_job):
            if task is None:
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._refresh_task = None
        self._refresh_job = None

    def clear(self) -> None:
        self.sessions.clear()
        self.genres.clear()
        self.channels.clear()

    async def apply_config(self, config: PortalConfig) -> PortalConfig:
        """Persist new settings, drop sessions and refetch in the background."""

        saved = await self._config_store.save(config)
        if self._refresh_job is not None and not self._refresh_job.done():
            self._refresh_job.cancel()
        self._refresh_job = None
        self.clear()
        logger.info("Portal configuration updated for %s", saved.portal_url)
        if self.is_configured():
            self.request_refresh()
        return saved

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.refresh_interval_seconds)
            if self.is_configured():
                self.request_refresh()

    def request_refresh(self) -> None:
        """Start a fire-and-forget refresh unless one is already running."""

        existing = self._refresh_job
        if existing is not None and not existing.done():
            return

        async def _runner() -> None:
            try:
                await self.refresh_all()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background refresh failed: %s", exc)

        self._refresh_job = asyncio.create_task(_runner())

    async def refresh_all(self) -> None:
        """Refresh genres then channels; each failure is logged independently."""

        await self.refresh_genres()
        await self.refresh_channels()

    async def refresh_genres(self) -> bool:
        endpoint, identity = self._connection()
        try:
            records = await self.genres.refresh(endpoint, identity)
        except PortalError as exc:
            logger.warning("Genre refresh failed: %s", exc)
            return False
        self.manifest.publish_if_changed(record.title for record in records)
        return True

    async def refresh_channels(self) -> bool:
        endpoint, identity = self._connection()
        try:
            await self.channels.refresh(endpoint, identity)
        except PortalError as exc:
            logger.warning(
                "Channel refresh failed, keeping %d cached channels: %s",
                len(self.channels.snapshot),
                exc,
            )
            return False
        return True

    # Add-on operations ----------------------------------------------------

    async def list_catalog(
        self,
        genre_selector: str | None = None,
        skip: int = 0,
        limit: int | None = None,
        *,
        catalog_id: str = CATALOG_ID,
    ) -> list[dict[str, object]]:
        """Return catalog meta summaries; any failure yields an empty list."""

        if catalog_id != CATALOG_ID or not self.is_configured():
            return []
        try:
            endpoint, identity = self._connection()
            channels = await self._channels_for(endpoint, identity, genre_selector)
        except UnknownGenre as exc:
            logger.warning("%s (known genres: %d)", exc, len(self.genres.records))
            return []
        except PortalError as exc:
            logger.error("Catalog error: %s", exc)
            return []

        start = max(skip, 0)
        stop = None if limit is None else start + max(limit, 0)
        metas = [
            channel.to_catalog_stub(endpoint, identity.mac)
            for channel in channels[start:stop]
        ]
        logger.info(
            "Serving %d of %d channels (genre=%s, skip=%d)",
            len(metas),
            len(channels),
            genre_selector or "All",
            start,
        )
        return metas

    async def _channels_for(
        self, endpoint: str, identity: PortalIdentity, genre_selector: str | None
    ) -> list[ChannelRecord]:
        if not self.channels.snapshot:
            await self.channels.refresh(endpoint, identity)
        if is_unfiltered(genre_selector):
            return self.channels.filter_by_genre(None)

        if not self.genres.records:
            await self.refresh_genres()
        genre = self.genres.resolve(genre_selector)
        matches = self.channels.filter_by_genre(genre)
        if matches:
            return matches
        logger.info("No cached channel carries genre %s, asking the portal", genre.title)
        return await self.channels.fetch_genre_live(endpoint, identity, genre)

    async def lookup_meta(self, composite_id: str) -> dict[str, object]:
        """Return channel details, or a minimal placeholder when unavailable."""

        try:
            decoded = unpack_composite_id(composite_id)
        except ValueError as exc:
            logger.warning("Meta lookup for malformed id %s: %s", composite_id, exc)
            return self._minimal_meta(composite_id, "")

        meta = self._minimal_meta(composite_id, decoded.command)
        try:
            found = await self._find_channel(decoded)
        except PortalError as exc:
            logger.warning("Meta enrichment failed: %s", exc)
            return meta
        if found is not None:
            meta["name"] = found.name or FALLBACK_CHANNEL_NAME
            meta["poster"] = found.logo
            meta["logo"] = found.logo
            meta["background"] = found.logo
            if not meta["description"] and found.cmd:
                meta["description"] = found.cmd
        return meta

    @staticmethod
    def _minimal_meta(composite_id: str, description: str) -> dict[str, object]:
        return {
            "id": composite_id,
            "type": "tv",
            "name": FALLBACK_CHANNEL_NAME,
            "description": description,
            "releaseInfo": "Stalker IPTV",
        }

    async def _find_channel(self, decoded: CompositeId) -> ChannelRecord | None:
        snapshot = self.channels.snapshot
        if not snapshot and self.is_configured():
            endpoint, identity = self._connection()
            await self.channels.refresh(endpoint, identity)
            snapshot = self.channels.snapshot
        for channel in snapshot:
            if channel.command == decoded.command:
                return channel
        return None

    async def resolve_stream(self, composite_id: str) -> str | None:
        """Return a playable URL for the channel, or ``None``."""

        try:
            decoded = unpack_composite_id(composite_id)
            identity = self._identity_for(decoded.identity)
            token = await self.sessions.get_token(decoded.endpoint, identity)
            payload = await self.orchestrator.request(
                decoded.endpoint,
                identity,
                "create_link",
                token=token,
                params={"cmd": decoded.bare_url},
                context="itv",
                include_prehash=False,
            )
        except (PortalError, ValueError) as exc:
            logger.error("Stream error: %s", exc)
            return None

        linked = extract_stream_url(payload)
        url = strip_ffmpeg_prefix(linked) if linked else decoded.bare_url
        return url or None

    async def test_connection(self, portal_url: str, mac: str) -> dict[str, Any]:
        """Handshake and count channels against an unsaved portal."""

        endpoint = canonicalize_endpoint(portal_url)
        identity = self._identity_for(mac.strip())
        scratch = PortalOrchestrator(self.transport)
        handshake = await scratch.request(
            endpoint, identity, "handshake", token="", context="stb"
        )
        token = extract_token(handshake) or ""
        payload = await scratch.request(
            endpoint,
            identity,
            "get_all_channels",
            token=token,
            context="itv",
            include_token=False,
            include_prehash=False,
        )
        return {
            "ok": True,
            "portal": endpoint,
            "handshake": handshake,
            "token": token,
            "channels_count": len(extract_list(payload)),
        }
