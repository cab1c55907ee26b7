"""Genre lookup built from whichever category action the portal supports."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import EmptyUpstreamList, PortalError, StaleRefresh, UnknownGenre
from ..models import GenreRecord, PortalIdentity
from ..utils import normalize_title
from .normalizer import extract_list
from .portal import PortalOrchestrator
from .sessions import SessionCache

logger = logging.getLogger(__name__)

GENRE_ACTIONS = ("get_tv_genres", "get_genres", "get_categories")
GENRE_CONTEXTS = ("itv", "stb")
GENRE_ACTIONS: tuple[tuple[str, str], ...] = tuple(
    (action, context) for action in GENRE_ACTIONS for context in GENRE_CONTEXTS
)

NO_FILTER_SELECTORS = frozenset(
    {"all", "*", "none", "true", "false", "null", "undefined"}
)


def is_unfiltered(selector: str | None) -> bool:
    """Return whether a selector means "every channel"."""

    text = (selector or "").strip().lower()
    return not text or text in NO_FILTER_SELECTORS


class GenreIndex:
    """Bidirectional id/title lookup of portal genres."""

    def __init__(self, orchestrator: PortalOrchestrator, sessions: SessionCache):
        self._orchestrator = orchestrator
        self._sessions = sessions
        self._titles_by_id: dict[str, str] = {}
        self._by_key: dict[str, GenreRecord] = {}
        self._records: tuple[GenreRecord, ...] = ()
        self._generation = 0

    @property
    def records(self) -> tuple[GenreRecord, ...]:
        return self._records

    def titles(self) -> list[str]:
        return [record.title for record in self._records]

    async def refresh(self, endpoint: str, identity: PortalIdentity) -> tuple[GenreRecord, ...]:
        """Try the genre actions in order and rebuild the index from the first hit."""

        generation = self._generation
        token = await self._sessions.get_token(endpoint, identity)
        for action, context in GENRE_ACTIONS:
            try:
                payload = await self._orchestrator.request(
                    endpoint,
                    identity,
                    action,
                    token=token,
                    context=context,
                )
            except PortalError as exc:
                logger.info("Genre lookup %s/%s failed: %s", action, context, exc)
                continue
            entries = extract_list(payload, allow_mapping=True)
            records = self._build_records(entries)
            if records:
                if generation != self._generation:
                    logger.info("Discarding genres fetched before the portal changed")
                    raise StaleRefresh("Portal configuration changed during genre refresh")
                logger.info(
                    "Loaded %d genres via %s (type=%s)", len(records), action, context
                )
                self.replace(records)
                return records
        raise EmptyUpstreamList("No genre action returned any categories")

    @staticmethod
    def _build_records(entries: list[Any]) -> tuple[GenreRecord, ...]:
        records: list[GenreRecord] = []
        seen: set[str] = set()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            record = GenreRecord.from_payload(entry)
            if record is None or record.key in NO_FILTER_SELECTORS:
                continue
            if record.key in seen:
                continue
            seen.add(record.key)
            records.append(record)
        return tuple(records)

    def replace(self, records: tuple[GenreRecord, ...]) -> None:
        titles_by_id = {record.id: record.title for record in records}
        by_key = {record.key: record for record in records}
        self._titles_by_id, self._by_key, self._records = titles_by_id, by_key, records

    def clear(self) -> None:
        self._generation += 1
        self.replace(())

    def resolve(self, selector: str | None) -> GenreRecord | None:
        """Map a user selector to a genre; ``None`` means no filtering.

        Raises :class:`UnknownGenre` when the selector matches nothing.
        """

        if is_unfiltered(selector):
            return None
        text = str(selector).strip()
        record = self._by_key.get(normalize_title(text))
        if record is not None:
            return record
        title = self._titles_by_id.get(text)
        if title is not None:
            record = self._by_key.get(normalize_title(title))
            if record is not None:
                return record
        raise UnknownGenre(text)
