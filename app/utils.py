"""Utility helpers for the Stalker add-on."""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

ID_PREFIX = "stalker"
FFMPEG_PREFIX = "ffmpeg "

PERCENT_ESCAPE_RE = re.compile(r"%[0-9A-Fa-f]{2}")
MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")


def normalize_title(value: str) -> str:
    """Return a lookup key with diacritics removed, lowercased and trimmed."""

    value = unicodedata.normalize("NFKD", value or "")
    value = "".join(char for char in value if not unicodedata.combining(char))
    value = re.sub(r"\s+", " ", value)
    return value.strip().lower()


def maybe_double_decode(value: str) -> str:
    """Percent-decode once, and a second time only if escapes remain."""

    once = unquote(value or "")
    if PERCENT_ESCAPE_RE.search(once):
        return unquote(once)
    return once


def strip_ffmpeg_prefix(command: str) -> str:
    """Return the bare playable URL of a portal ``cmd`` string."""

    if command.startswith(FFMPEG_PREFIX):
        return command[len(FFMPEG_PREFIX):]
    return command


@dataclass(frozen=True, slots=True)
class CompositeId:
    """Decoded form of the opaque id handed to Stremio."""

    endpoint: str
    identity: str
    command: str

    @property
    def bare_url(self) -> str:
        return strip_ffmpeg_prefix(self.command)


def pack_composite_id(endpoint: str, identity: str, command: str) -> str:
    """Encode endpoint, identity and channel command into one opaque id."""

    return (
        f"{ID_PREFIX}:{quote(endpoint, safe='')}"
        f"|{identity}|{quote(command, safe='')}"
    )


def unpack_composite_id(value: str) -> CompositeId:
    """Decode an id produced by :func:`pack_composite_id`."""

    if not value:
        raise ValueError("Empty id")
    prefix = f"{ID_PREFIX}:"
    raw = value[len(prefix):] if value.startswith(prefix) else value
    parts = raw.split("|")
    if len(parts) != 3:
        raise ValueError(
            f"Bad id format, expected 3 parts, got {len(parts)}: {raw}"
        )
    encoded_endpoint, identity, encoded_command = parts
    if not MAC_RE.match(identity):
        logger.warning("Parsed MAC looks odd: %s", identity)
    return CompositeId(
        endpoint=maybe_double_decode(encoded_endpoint),
        identity=identity,
        command=maybe_double_decode(encoded_command),
    )
