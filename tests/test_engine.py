"""End-to-end behaviour of the portal engine against a scripted portal."""

from __future__ import annotations

import asyncio
from typing import Any, cast
from urllib.parse import parse_qsl

import httpx
import pytest

from app.config import Settings
from app.models import ChannelRecord, PortalConfig
from app.services.config_store import PortalConfigStore
from app.services.engine import PortalEngine
from app.utils import pack_composite_id

ENDPOINT = "http://portal.test/server/load.php"
MAC = "00:1A:79:00:00:01"


class FakePortal:
    """Answers load.php actions like a small Stalker deployment."""

    def __init__(self) -> None:
        self.genres: list[dict[str, Any]] = [
            {"id": "1", "title": "News"},
            {"id": "2", "title": "Sports"},
        ]
        self.channels: list[dict[str, Any]] = [
            {"id": 1, "name": "A", "cmd": "ffmpeg http://cdn.test/1", "tv_genre_id": "1"},
            {"id": 2, "name": "B", "cmd": "ffmpeg http://cdn.test/2", "tv_genre_id": "2"},
            {"id": 3, "name": "C", "cmd": "ffmpeg http://cdn.test/3", "genre_title": "sports"},
        ]
        self.genre_channels: dict[str, list[dict[str, Any]]] = {}
        self.link: Any = {"js": {"cmd": "ffmpeg http://cdn.test/live/1.ts?token=abc"}}
        self.failing = False
        self.redirect: tuple[int, str] | None = None
        self.requests: list[httpx.Request] = []

    def actions(self) -> list[str]:
        return [self._params(request).get("action", "") for request in self.requests]

    @staticmethod
    def _params(request: httpx.Request) -> dict[str, str]:
        params = dict(request.url.params)
        if request.method == "POST":
            params.update(parse_qsl(request.content.decode()))
        return params

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failing:
            return httpx.Response(500, text="maintenance")
        params = self._params(request)
        action = params.get("action")
        if self.redirect and request.url.host == "portal.test" and action != "handshake":
            status, location = self.redirect
            return httpx.Response(status, headers={"Location": location})
        if action == "handshake":
            return httpx.Response(200, json={"js": {"token": "tok"}})
        if action == "get_tv_genres":
            return httpx.Response(200, json={"js": self.genres})
        if action == "get_all_channels":
            return httpx.Response(200, json={"js": {"data": self.channels}})
        if action == "get_channels":
            found = self.genre_channels.get(params.get("genre", ""), [])
            return httpx.Response(200, json={"js": {"data": found}})
        if action == "create_link":
            return httpx.Response(200, json=self.link)
        return httpx.Response(404)


class FakeStore:
    def __init__(self, config: PortalConfig) -> None:
        self.current = config
        self.saved: list[PortalConfig] = []
        self.endpoints: list[str] = []

    async def load(self) -> PortalConfig:
        return self.current

    async def save(self, config: PortalConfig) -> PortalConfig:
        self.saved.append(config)
        self.current = config
        return config

    async def update_endpoint(self, endpoint: str) -> None:
        self.endpoints.append(endpoint)
        self.current = self.current.model_copy(update={"portal_url": endpoint})


def configured(**overrides: Any) -> PortalConfig:
    values: dict[str, Any] = {
        "portal_url": ENDPOINT,
        "mac": MAC,
        "client_id": "c0ffee",
        "prehash": "PH",
    }
    values.update(overrides)
    return PortalConfig(**values)


def make_engine(client: httpx.AsyncClient, store: FakeStore) -> PortalEngine:
    return PortalEngine(
        Settings(_env_file=None), client, cast(PortalConfigStore, store)
    )


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("selector", [None, "", "All", "ALL", "*"])
async def test_sentinel_genres_list_every_channel(selector: str | None) -> None:
    portal = FakePortal()
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        metas = await engine.list_catalog(selector)

    assert [meta["name"] for meta in metas] == ["A", "B", "C"]
    assert metas[0]["id"] == pack_composite_id(ENDPOINT, MAC, "ffmpeg http://cdn.test/1")
    assert metas[0]["type"] == "tv"
    assert "get_tv_genres" not in portal.actions()


@pytest.mark.anyio("asyncio")
async def test_catalog_pages_with_skip_and_limit() -> None:
    portal = FakePortal()
    portal.channels = [
        {"id": index, "name": f"CH{index}", "cmd": f"ffmpeg http://cdn.test/{index}"}
        for index in range(5)
    ]
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        page = await engine.list_catalog(None, skip=2, limit=2)
        beyond = await engine.list_catalog(None, skip=10, limit=2)

    assert [meta["name"] for meta in page] == ["CH2", "CH3"]
    assert beyond == []
    assert portal.actions().count("get_all_channels") == 1


@pytest.mark.anyio("asyncio")
async def test_catalog_filters_by_genre_title_or_id() -> None:
    portal = FakePortal()
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        by_title = await engine.list_catalog("sports")
        by_id = await engine.list_catalog("1")

    assert [meta["name"] for meta in by_title] == ["B", "C"]
    assert [meta["name"] for meta in by_id] == ["A"]
    assert portal.actions().count("handshake") == 1


@pytest.mark.anyio("asyncio")
async def test_catalog_asks_portal_when_snapshot_lacks_genre_fields() -> None:
    portal = FakePortal()
    portal.channels = [{"id": 1, "name": "A", "cmd": "ffmpeg http://cdn.test/1"}]
    portal.genre_channels = {"1": [{"id": 9, "name": "Nine", "cmd": "ffmpeg http://cdn.test/9"}]}
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        metas = await engine.list_catalog("News")

    assert [meta["name"] for meta in metas] == ["Nine"]
    live = portal.requests[-1]
    assert live.method == "POST"
    assert dict(parse_qsl(live.content.decode()))["genre"] == "1"


@pytest.mark.anyio("asyncio")
async def test_unknown_genre_yields_empty_catalog() -> None:
    portal = FakePortal()
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        metas = await engine.list_catalog("Cooking")

    assert metas == []


@pytest.mark.anyio("asyncio")
async def test_portal_failure_yields_empty_catalog() -> None:
    portal = FakePortal()
    portal.failing = True
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        metas = await engine.list_catalog(None)

    assert metas == []


@pytest.mark.anyio("asyncio")
async def test_unconfigured_portal_or_foreign_catalog_is_empty() -> None:
    portal = FakePortal()
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        unconfigured = make_engine(client, FakeStore(PortalConfig()))
        engine = make_engine(client, FakeStore(configured()))

        assert await unconfigured.list_catalog(None) == []
        assert await engine.list_catalog(None, catalog_id="other") == []

    assert portal.requests == []


@pytest.mark.anyio("asyncio")
async def test_lookup_meta_enriches_from_snapshot() -> None:
    portal = FakePortal()
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        engine.channels.replace(
            [
                ChannelRecord.model_validate(
                    {"id": 1, "name": "One", "cmd": "ffmpeg http://cdn.test/1", "logo": "http://img/1.png"}
                )
            ]
        )
        known = await engine.lookup_meta(pack_composite_id(ENDPOINT, MAC, "ffmpeg http://cdn.test/1"))
        unknown = await engine.lookup_meta(pack_composite_id(ENDPOINT, MAC, "ffmpeg http://cdn.test/2"))

    assert known["name"] == "One"
    assert known["poster"] == "http://img/1.png"
    assert known["logo"] == "http://img/1.png"
    assert known["description"] == "ffmpeg http://cdn.test/1"
    assert unknown["name"] == "Live Channel"
    assert unknown["description"] == "ffmpeg http://cdn.test/2"
    assert unknown["type"] == "tv"
    assert portal.requests == []


@pytest.mark.anyio("asyncio")
async def test_lookup_meta_for_malformed_id_is_minimal() -> None:
    async with httpx.AsyncClient(transport=httpx.MockTransport(FakePortal())) as client:
        engine = make_engine(client, FakeStore(configured()))
        meta = await engine.lookup_meta("stalker:broken")

    assert meta == {
        "id": "stalker:broken",
        "type": "tv",
        "name": "Live Channel",
        "description": "",
        "releaseInfo": "Stalker IPTV",
    }


@pytest.mark.anyio("asyncio")
async def test_resolve_stream_uses_create_link() -> None:
    portal = FakePortal()
    composite = pack_composite_id(ENDPOINT, MAC, "ffmpeg http://cdn.test/live/1.ts")
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        url = await engine.resolve_stream(composite)

    assert url == "http://cdn.test/live/1.ts?token=abc"
    assert portal.actions() == ["handshake", "create_link"]
    link_params = portal.requests[-1].url.params
    assert link_params["cmd"] == "http://cdn.test/live/1.ts"
    assert link_params["type"] == "itv"
    assert "prehash" not in link_params
    assert portal.requests[-1].headers["Cookie"].startswith(f"mac={MAC};")


@pytest.mark.anyio("asyncio")
async def test_resolve_stream_falls_back_to_bare_url() -> None:
    portal = FakePortal()
    portal.link = {"js": {}}
    composite = pack_composite_id(ENDPOINT, MAC, "ffmpeg http://cdn.test/live/1.ts")
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        url = await engine.resolve_stream(composite)

    assert url == "http://cdn.test/live/1.ts"


@pytest.mark.anyio("asyncio")
async def test_resolve_stream_failures_return_none() -> None:
    portal = FakePortal()
    portal.failing = True
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        failed = await engine.resolve_stream(
            pack_composite_id(ENDPOINT, MAC, "ffmpeg http://cdn.test/live/1.ts")
        )
        malformed = await engine.resolve_stream("stalker:nope")

    assert failed is None
    assert malformed is None


@pytest.mark.anyio("asyncio")
async def test_temporary_redirect_evicts_session_without_persisting() -> None:
    portal = FakePortal()
    portal.redirect = (302, "http://mirror.test/")
    store = FakeStore(configured())
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, store)
        metas = await engine.list_catalog(None)

        assert len(engine.sessions) == 0

    assert [meta["name"] for meta in metas] == ["A", "B", "C"]
    assert store.endpoints == []
    assert portal.requests[-1].url.host == "mirror.test"


@pytest.mark.anyio("asyncio")
async def test_permanent_redirect_updates_stored_endpoint() -> None:
    portal = FakePortal()
    portal.redirect = (301, "http://mirror.test/")
    store = FakeStore(configured())
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, store)
        await engine.list_catalog(None)

    assert store.endpoints == ["http://mirror.test/server/load.php"]
    assert store.current.portal_url == "http://mirror.test/server/load.php"


@pytest.mark.anyio("asyncio")
async def test_refresh_genres_publishes_manifest_once() -> None:
    portal = FakePortal()
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        assert await engine.refresh_genres() is True
        assert await engine.refresh_genres() is True

    assert engine.manifest.version == "1.9.2"
    assert engine.manifest.options == ("All", "News", "Sports")


@pytest.mark.anyio("asyncio")
async def test_failed_refresh_keeps_cached_channels() -> None:
    portal = FakePortal()
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        assert await engine.refresh_channels() is True
        portal.channels = []
        assert await engine.refresh_channels() is False

    assert [channel.name for channel in engine.channels.snapshot] == ["A", "B", "C"]


@pytest.mark.anyio("asyncio")
async def test_apply_config_clears_caches() -> None:
    portal = FakePortal()
    store = FakeStore(configured())
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, store)
        await engine.list_catalog(None)
        assert engine.channels.snapshot

        saved = await engine.apply_config(configured(mac="00:1A:79:00:00:02"))

        assert saved.mac == "00:1A:79:00:00:02"
        assert store.saved == [saved]
        assert engine.channels.snapshot == ()
        assert len(engine.sessions) == 0
        await engine.stop()


@pytest.mark.anyio("asyncio")
async def test_connection_test_does_not_persist_redirects() -> None:
    portal = FakePortal()
    portal.redirect = (301, "http://mirror.test/")
    store = FakeStore(configured())
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, store)
        result = await engine.test_connection("portal.test", "00:1A:79:00:00:09")

    assert result["ok"] is True
    assert result["portal"] == ENDPOINT
    assert result["token"] == "tok"
    assert result["channels_count"] == 3
    assert store.endpoints == []


@pytest.mark.anyio("asyncio")
async def test_genre_fallback_is_fetched_once_per_snapshot() -> None:
    portal = FakePortal()
    portal.channels = [{"id": 1, "name": "A", "cmd": "ffmpeg http://cdn.test/1"}]
    portal.genre_channels = {"1": [{"id": 9, "name": "Nine", "cmd": "ffmpeg http://cdn.test/9"}]}
    async with httpx.AsyncClient(transport=httpx.MockTransport(portal)) as client:
        engine = make_engine(client, FakeStore(configured()))
        first = await engine.list_catalog("News")
        second = await engine.list_catalog("News", skip=1)
        await engine.refresh_channels()
        await engine.list_catalog("News")

    assert [meta["name"] for meta in first] == ["Nine"]
    assert second == []
    assert portal.actions().count("get_channels") == 2


@pytest.mark.anyio("asyncio")
async def test_refresh_started_before_config_change_is_discarded() -> None:
    entered = asyncio.Event()
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        host = request.url.host
        if action == "handshake":
            return httpx.Response(200, json={"js": {"token": f"{host}-tok"}})
        if action == "get_all_channels":
            if host == "old.test":
                entered.set()
                await release.wait()
            channels = [{"id": 1, "name": f"{host}-ch", "cmd": f"ffmpeg http://{host}/1"}]
            return httpx.Response(200, json={"js": {"data": channels}})
        return httpx.Response(404)

    old_endpoint = "http://old.test/server/load.php"
    new_endpoint = "http://new.test/server/load.php"
    store = FakeStore(configured(portal_url=old_endpoint))
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        engine = make_engine(client, store)
        pending = asyncio.create_task(engine.list_catalog(None))
        await entered.wait()

        await engine.apply_config(configured(portal_url=new_endpoint))
        assert await engine.refresh_channels() is True
        release.set()
        stale = await pending
        metas = await engine.list_catalog(None)
        await engine.stop()

    assert stale == []
    assert [channel.name for channel in engine.channels.snapshot] == ["new.test-ch"]
    assert [meta["id"] for meta in metas] == [
        pack_composite_id(new_endpoint, MAC, "ffmpeg http://new.test/1")
    ]
