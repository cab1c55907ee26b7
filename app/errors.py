"""Failure taxonomy for portal communication."""

from __future__ import annotations


class PortalError(Exception):
    """Base class for every failure raised while talking to a portal."""


class InvalidEndpoint(PortalError, ValueError):
    """The configured portal URL is empty or cannot be parsed."""


class TooManyRedirects(PortalError):
    """The portal kept redirecting past the hop budget."""


class HandshakeFailed(PortalError):
    """The handshake response did not carry a usable token."""


class PortalUnreachable(PortalError):
    """Network failure or an unexpected HTTP status from the portal."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyUpstreamList(PortalError):
    """Every tried action/context combination returned nothing."""


class UnknownGenre(PortalError, LookupError):
    """A genre selector did not resolve to any indexed genre."""

    def __init__(self, selector: str) -> None:
        super().__init__(f"Unknown genre selector: {selector!r}")
        self.selector = selector


class StaleRefresh(PortalError):
    """The configuration changed while a refresh was waiting on the portal."""
