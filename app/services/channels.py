"""Prefetched channel snapshot with local genre filtering."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import ValidationError

from ..errors import EmptyUpstreamList, PortalError, StaleRefresh
from ..models import ChannelRecord, GenreRecord, PortalIdentity
from .normalizer import extract_list
from .portal import PortalOrchestrator
from .sessions import SessionCache

logger = logging.getLogger(__name__)

CHANNEL_CONTEXTS = ("itv", "stb")

GENRE_ID_ATTRIBUTES = ("tv_genre_id", "genre_id", "category_id", "cat_id", "group_id")
GENRE_TITLE_ATTRIBUTES = (
    "genre",
    "tv_genre",
    "genre_title",
    "genre_name",
    "category",
    "category_name",
    "group",
    "group_title",
)


def parse_channels(entries: Iterable[Any]) -> list[ChannelRecord]:
    channels: list[ChannelRecord] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            channels.append(ChannelRecord.model_validate(entry))
        except ValidationError as exc:
            logger.debug("Skipping malformed channel %r: %s", entry.get("id"), exc)
    return channels


class ChannelCache:
    """Holds the full channel list and filters it by genre in memory.

    :meth:`clear` starts a new generation; a refresh that began before it
    discards its result instead of restoring the previous portal's channels.
    """

    def __init__(
        self,
        orchestrator: PortalOrchestrator,
        sessions: SessionCache,
        *,
        id_attributes: Iterable[str] = GENRE_ID_ATTRIBUTES,
        title_attributes: Iterable[str] = GENRE_TITLE_ATTRIBUTES,
    ) -> None:
        self._orchestrator = orchestrator
        self._sessions = sessions
        self._id_attributes = tuple(id_attributes)
        self._title_attributes = tuple(title_attributes)
        self._snapshot: tuple[ChannelRecord, ...] = ()
        self._live: dict[str, tuple[ChannelRecord, ...]] = {}
        self._generation = 0

    @property
    def snapshot(self) -> tuple[ChannelRecord, ...]:
        return self._snapshot

    def replace(self, channels: Iterable[ChannelRecord]) -> None:
        self._snapshot, self._live = tuple(channels), {}

    def clear(self) -> None:
        self._generation += 1
        self._snapshot, self._live = (), {}

    def _ensure_current(self, generation: int, what: str) -> None:
        if generation != self._generation:
            logger.info("Discarding %s fetched before the portal changed", what)
            raise StaleRefresh(f"Portal configuration changed during {what} refresh")

    async def refresh(self, endpoint: str, identity: PortalIdentity) -> tuple[ChannelRecord, ...]:
        """Fetch every channel and replace the snapshot on success.

        The previous snapshot is kept when the portal yields nothing or fails.
        """

        generation = self._generation
        token = await self._sessions.get_token(endpoint, identity)
        last_error: PortalError | None = None
        for context in CHANNEL_CONTEXTS:
            try:
                payload = await self._orchestrator.request(
                    endpoint,
                    identity,
                    "get_all_channels",
                    token=token,
                    context=context,
                    include_token=False,
                    include_prehash=False,
                )
            except PortalError as exc:
                logger.info("get_all_channels (type=%s) failed: %s", context, exc)
                last_error = exc
                continue
            channels = parse_channels(extract_list(payload))
            if channels:
                self._ensure_current(generation, "channel")
                self.replace(channels)
                logger.info(
                    "Cached %d channels (type=%s)", len(channels), context
                )
                return self._snapshot
        if last_error is not None:
            raise last_error
        raise EmptyUpstreamList("get_all_channels returned no channels")

    def matches(self, channel: ChannelRecord, genre: GenreRecord) -> bool:
        for name in self._id_attributes:
            value = channel.attribute(name)
            if value not in (None, "") and str(value).strip() == genre.id:
                return True
        wanted = genre.title.casefold()
        for name in self._title_attributes:
            value = channel.attribute(name)
            if isinstance(value, str) and value.strip().casefold() == wanted:
                return True
        return False

    def filter_by_genre(self, genre: GenreRecord | None) -> list[ChannelRecord]:
        snapshot = self._snapshot
        if genre is None:
            return list(snapshot)
        return [channel for channel in snapshot if self.matches(channel, genre)]

    async def fetch_genre_live(
        self, endpoint: str, identity: PortalIdentity, genre: GenreRecord
    ) -> list[ChannelRecord]:
        """Ask the portal for one genre when the snapshot lacks category fields.

        Only the first page the portal returns is used. Results are kept until
        the snapshot is next replaced.
        """

        cached = self._live.get(genre.id)
        if cached is not None:
            return list(cached)
        generation = self._generation
        token = await self._sessions.get_token(endpoint, identity)
        payload = await self._orchestrator.request(
            endpoint,
            identity,
            "get_channels",
            token=token,
            params={"genre": genre.id},
            context="itv",
        )
        channels = parse_channels(extract_list(payload))
        self._ensure_current(generation, "genre channel")
        self._live[genre.id] = tuple(channels)
        return channels
