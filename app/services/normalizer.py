"""Extraction of tokens, lists and stream URLs from portal payloads.

Portals wrap the same data in different envelopes (``{"js": {...}}``,
``{"data": [...]}``, a JSON string inside ``js`` and so on). Each public helper
walks an ordered tuple of extractors and returns the first non-empty result;
the tuple order is the documented priority.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping

Extractor = Callable[[Any], Any]

LIST_FIELD_NAMES = ("channels", "genres", "categories", "items")


def _path(*keys: str) -> Extractor:
    def extract(payload: Any) -> Any:
        current = payload
        for key in keys:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        return current

    return extract


TOKEN_EXTRACTORS: tuple[Extractor, ...] = (
    _path("token"),
    _path("js", "token"),
    _path("data", "token"),
    _path("js", "data", "token"),
)


def extract_token(payload: Any) -> str | None:
    """Return the session token carried by a handshake response."""

    for extractor in TOKEN_EXTRACTORS:
        value = extractor(payload)
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value).strip()
    return None


def _self_list(payload: Any) -> Any:
    return payload


def _named_lists(payload: Any) -> list[Any]:
    for container in (payload, _path("js")(payload)):
        if not isinstance(container, Mapping):
            continue
        for name in LIST_FIELD_NAMES:
            value = container.get(name)
            if isinstance(value, list) and value:
                return value
    return []


LIST_EXTRACTORS: tuple[Extractor, ...] = (
    _self_list,
    _path("data"),
    _path("js", "data"),
    _path("js"),
    _named_lists,
)

ENCODED_FIELDS: tuple[Extractor, ...] = (
    _self_list,
    _path("js"),
    _path("data"),
)


def _decode_embedded(payload: Any) -> Any:
    for extractor in ENCODED_FIELDS:
        value = extractor(payload)
        if not isinstance(value, str) or not value.strip():
            continue
        try:
            return json.loads(value)
        except ValueError:
            continue
    return None


def _mapping_as_pairs(payload: Any) -> list[dict[str, Any]]:
    candidates = [_path("js")(payload), _path("data")(payload)]
    if isinstance(payload, Mapping) and not {"js", "data"} & set(payload):
        candidates.append(payload)
    for candidate in candidates:
        if not isinstance(candidate, Mapping) or not candidate:
            continue
        pairs: list[dict[str, Any]] = []
        for key, value in candidate.items():
            if isinstance(value, Mapping):
                title = value.get("title") or value.get("name")
            elif isinstance(value, str):
                title = value.strip()
            else:
                title = None
            if title in (None, ""):
                break
            pairs.append({"id": str(key), "title": str(title)})
        else:
            return pairs
    return []


def extract_list(
    payload: Any, *, allow_mapping: bool = False, _reparse: bool = True
) -> list[Any]:
    """Return the first non-empty list found in ``payload``.

    ``allow_mapping`` is used for genre/category lookups, where some portals
    answer with ``{"<id>": "<title>", ...}`` instead of a list of records.
    """

    if payload is None:
        return []
    for extractor in LIST_EXTRACTORS:
        value = extractor(payload)
        if isinstance(value, list) and value:
            return value
    if _reparse:
        decoded = _decode_embedded(payload)
        if decoded is not None:
            found = extract_list(decoded, allow_mapping=allow_mapping, _reparse=False)
            if found:
                return found
    if allow_mapping:
        return _mapping_as_pairs(payload)
    return []


def _first_playlist_url(*keys: str) -> Extractor:
    def extract(payload: Any) -> Any:
        playlist = _path(*keys, "playlist")(payload)
        if isinstance(playlist, list) and playlist and isinstance(playlist[0], Mapping):
            return playlist[0].get("url")
        return None

    return extract


STREAM_URL_EXTRACTORS: tuple[Extractor, ...] = (
    _path("js", "cmd"),
    _path("data", "cmd"),
    _path("cmd"),
    _path("url"),
    _first_playlist_url("data"),
    _first_playlist_url("js"),
)


def extract_stream_url(payload: Any) -> str | None:
    """Return the playable command produced by ``create_link``."""

    for extractor in STREAM_URL_EXTRACTORS:
        value = extractor(payload)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
