"""Versioned Stremio manifest with atomic republishing."""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Iterable, Sequence

logger = logging.getLogger(__name__)

CATALOG_ID = "stalker_live"
ALL_GENRES = "All"
LOADING_PLACEHOLDER = (ALL_GENRES, "Loading")

BASE_MANIFEST: dict[str, Any] = {
    "id": "org.stalker.iptv",
    "version": "1.9.1",
    "name": "Stalker IPTV",
    "description": "Stremio add-on for Stalker/Ministra IPTV portals.",
    "resources": ["catalog", "meta", "stream"],
    "types": ["tv"],
    "catalogs": [
        {
            "type": "tv",
            "id": CATALOG_ID,
            "name": "Live TV (Stalker)",
            "extra": [
                {"name": "genre", "options": [], "isRequired": False},
                {"name": "skip", "isRequired": False},
            ],
        }
    ],
    "idPrefixes": ["stalker"],
    "behaviorHints": {"configurable": True},
}


def bump_patch(version: str) -> str:
    """Return ``version`` with its patch component incremented."""

    parts = version.split(".")
    while len(parts) < 3:
        parts.append("0")
    try:
        parts[2] = str(int(parts[2]) + 1)
    except ValueError:
        parts[2] = "1"
    return ".".join(parts)


def genre_options(titles: Iterable[str]) -> tuple[str, ...]:
    """Return the option list shown in Stremio, always led by ``All``."""

    options = [ALL_GENRES]
    seen = {ALL_GENRES.casefold()}
    for title in titles:
        text = str(title or "").strip()
        if not text or text.casefold() in seen:
            continue
        seen.add(text.casefold())
        options.append(text)
    return tuple(options)


class ManifestPublisher:
    """Keeps a pre-serialized manifest body that readers fetch as-is.

    Option lists are compared as sets: a portal returning the same genres in
    a different order does not produce a new version.
    """

    def __init__(
        self,
        base: dict[str, Any] | None = None,
        *,
        name: str | None = None,
    ) -> None:
        self._base = copy.deepcopy(base or BASE_MANIFEST)
        if name:
            self._base["name"] = name
        self._version = str(self._base.get("version") or "1.0.0")
        self._options: tuple[str, ...] = LOADING_PLACEHOLDER
        self._body = self._serialize(self._options, self._version)

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def version(self) -> str:
        return self._version

    @property
    def options(self) -> tuple[str, ...]:
        return self._options

    def document(self) -> dict[str, Any]:
        return json.loads(self._body)

    def _serialize(self, options: Sequence[str], version: str) -> bytes:
        manifest = copy.deepcopy(self._base)
        manifest["version"] = version
        for catalog in manifest.get("catalogs", []):
            if catalog.get("id") != CATALOG_ID:
                continue
            for extra in catalog.get("extra", []):
                if extra.get("name") == "genre":
                    extra["options"] = list(options)
        return json.dumps(manifest, ensure_ascii=False).encode("utf-8")

    def publish_if_changed(self, titles: Iterable[str]) -> bool:
        """Publish a new body when the genre options differ; return whether it did."""

        candidate = genre_options(titles)
        if set(candidate) == set(self._options):
            return False
        version = bump_patch(self._version)
        body = self._serialize(candidate, version)
        self._body, self._options, self._version = body, candidate, version
        logger.info(
            "Published manifest %s with %d genre options", version, len(candidate)
        )
        return True
