"""HTTP plumbing for the Stalker/Ministra portal action endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx

from ..errors import InvalidEndpoint, PortalUnreachable, TooManyRedirects
from ..models import PortalIdentity

logger = logging.getLogger(__name__)

LOAD_PHP_SUFFIX = "/server/load.php"
PORTAL_PATH_MARKER = "/stalker_portal"
PROTOCOL_MARKER = ("JsHttpRequest", "1-xml")
MAX_REDIRECT_HOPS = 3

# Some portals reject these on GET, so requests carrying them are POSTed.
FILTER_PARAMS = frozenset(
    {"genre", "genre_id", "tv_genre_id", "category", "category_id", "cat_id", "group_id"}
)


def canonicalize_endpoint(value: str | None) -> str:
    """Return the ``.../server/load.php`` action endpoint for any portal URL."""

    raw = (value or "").strip()
    if not raw:
        raise InvalidEndpoint("Portal URL is empty")
    if "://" not in raw:
        raw = f"http://{raw}"
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
    except ValueError as exc:
        raise InvalidEndpoint(f"Invalid portal URL: {value!r}") from exc
    if not parts.scheme or not hostname:
        raise InvalidEndpoint(f"Invalid portal URL: {value!r}")

    path = parts.path.rstrip("/")
    if not path.endswith(LOAD_PHP_SUFFIX):
        if PORTAL_PATH_MARKER in path:
            cut = path.index(PORTAL_PATH_MARKER) + len(PORTAL_PATH_MARKER)
            path = path[:cut] + LOAD_PHP_SUFFIX
        else:
            path = LOAD_PHP_SUFFIX
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


def session_key(endpoint: str, identity: str) -> str:
    return f"{endpoint}|{identity}".lower()


@dataclass(frozen=True, slots=True)
class Redirect:
    """A relocation reported by the portal instead of a payload."""

    target: str
    permanent: bool


@dataclass(slots=True)
class PortalRequest:
    """One action call against a canonical endpoint."""

    endpoint: str
    identity: PortalIdentity
    action: str
    token: str = ""
    params: Mapping[str, Any] = field(default_factory=dict)
    context: str = "stb"
    include_token: bool = True
    include_prehash: bool = True

    def query(self) -> dict[str, str]:
        query = {"type": self.context, "action": self.action}
        if self.include_token:
            query["token"] = self.token or ""
        if self.include_prehash and self.identity.prehash:
            query["prehash"] = self.identity.prehash
        key, value = PROTOCOL_MARKER
        query[key] = value
        for name, extra in self.params.items():
            if extra is not None:
                query[name] = str(extra)
        return query

    def headers(self) -> dict[str, str]:
        return {
            "Accept": "*/*",
            "User-Agent": self.identity.user_agent,
            "Authorization": f"Bearer {self.token}" if self.token else "",
            "Accept-Language": self.identity.accept_language,
            "Accept-Encoding": "gzip, deflate",
            "Cookie": self.identity.cookie(),
        }

    @property
    def uses_filter(self) -> bool:
        return any(name in FILTER_PARAMS for name in self.params)


class PortalTransport:
    """Sends a single portal request without following redirects."""

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 96.0):
        self._client = http_client
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 10.0))

    async def send(self, request: PortalRequest) -> Any:
        """Return the decoded body, or a :class:`Redirect`."""

        query = request.query()
        method = "POST" if request.uses_filter else "GET"
        try:
            response = await self._client.request(
                method,
                request.endpoint,
                params=query,
                data=query if method == "POST" else None,
                headers=request.headers(),
                timeout=self._timeout,
                follow_redirects=False,
            )
        except httpx.HTTPError as exc:
            raise PortalUnreachable(
                f"{request.action} failed against {request.endpoint}: "
                f"{exc.__class__.__name__}: {exc}"
            ) from exc

        status = response.status_code
        if 200 <= status < 300:
            try:
                return response.json()
            except ValueError:
                return response.text
        if 300 <= status < 400:
            location = response.headers.get("location")
            if location:
                target = canonicalize_endpoint(urljoin(request.endpoint, location))
                return Redirect(target=target, permanent=status in (301, 308))
            raise PortalUnreachable(
                f"Redirect without Location from {request.endpoint}",
                status_code=status,
            )
        raise PortalUnreachable(
            f"{request.action} returned HTTP {status} from {request.endpoint}",
            status_code=status,
        )


class PortalOrchestrator:
    """Drives the transport across a bounded number of redirects."""

    def __init__(
        self,
        transport: PortalTransport,
        *,
        on_relocate: Callable[[str, PortalIdentity], None] | None = None,
        on_permanent_redirect: Callable[[str], Awaitable[None]] | None = None,
        max_hops: int = MAX_REDIRECT_HOPS,
    ) -> None:
        self._transport = transport
        self._on_relocate = on_relocate
        self._on_permanent_redirect = on_permanent_redirect
        self._max_hops = max_hops

    async def request(
        self,
        endpoint: str,
        identity: PortalIdentity,
        action: str,
        *,
        token: str = "",
        params: Mapping[str, Any] | None = None,
        context: str = "stb",
        include_token: bool = True,
        include_prehash: bool = True,
    ) -> Any:
        """Run ``action`` and return the first non-redirect payload."""

        current = canonicalize_endpoint(endpoint)
        for _ in range(self._max_hops):
            result = await self._transport.send(
                PortalRequest(
                    endpoint=current,
                    identity=identity,
                    action=action,
                    token=token,
                    params=dict(params or {}),
                    context=context,
                    include_token=include_token,
                    include_prehash=include_prehash,
                )
            )
            if not isinstance(result, Redirect):
                return result

            previous, current = current, result.target
            if self._on_relocate is not None:
                self._on_relocate(previous, identity)
            if result.permanent:
                logger.info("Permanent redirect: %s -> %s", previous, current)
                await self._persist(current)
            else:
                logger.info("Temporary redirect: %s -> %s", previous, current)

        raise TooManyRedirects(
            f"Too many redirects contacting portal for {action} "
            f"(last endpoint {current})"
        )

    async def _persist(self, endpoint: str) -> None:
        if self._on_permanent_redirect is None:
            return
        try:
            await self._on_permanent_redirect(endpoint)
        except Exception as exc:
            logger.warning("Failed to persist relocated portal %s: %s", endpoint, exc)
