"""Entry point for the FastAPI-powered Stremio addon."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any
from urllib.parse import parse_qsl

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import ValidationError

from .config import settings
from .database import Database
from .errors import InvalidEndpoint, PortalError
from .models import PortalConfig
from .services.config_store import PortalConfigStore
from .services.engine import PortalEngine
from .services.portal import canonicalize_endpoint
from .web import render_config_page, render_landing_page

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    portal_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.portal_timeout_seconds, connect=10.0),
            follow_redirects=False,
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    config_store = PortalConfigStore(settings, database.session_factory)
    engine = PortalEngine(settings, portal_client, config_store)

    fastapi_app.state.engine = engine
    fastapi_app.state.database = database
    await engine.start()
    manifest = engine.manifest.document()
    logger.info(
        "Add-on manifest loaded: id=%s prefixes=%s resources=%s",
        manifest["id"],
        manifest["idPrefixes"],
        manifest["resources"],
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await engine.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Stremio add-on for Stalker/Ministra IPTV portals",
        version="1.9.1",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_engine(app: FastAPI) -> PortalEngine:
    engine = getattr(app.state, "engine", None)
    if not isinstance(engine, PortalEngine):
        raise RuntimeError("Portal engine not initialised")
    return engine


def _parse_extra(raw: str) -> dict[str, str]:
    """Parse Stremio path extras such as ``genre=News&skip=100``."""

    if not raw:
        return {}
    return {key: value for key, value in parse_qsl(raw, keep_blank_values=True)}


def _coerce_int(value: Any, *, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def register_routes(fastapi_app: FastAPI) -> None:
    async def _catalog_endpoint(
        request: Request,
        content_type: str,
        catalog_id: str,
        extra: dict[str, str],
    ) -> JSONResponse:
        if content_type != "tv":
            raise HTTPException(status_code=400, detail="Unsupported content type")
        engine = get_engine(fastapi_app)
        params = {**dict(request.query_params), **extra}
        metas = await engine.list_catalog(
            params.get("genre"),
            skip=max(_coerce_int(params.get("skip")), 0),
            limit=settings.catalog_page_size,
            catalog_id=catalog_id,
        )
        return JSONResponse({"metas": metas})

    async def _read_json(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        return payload

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/", response_class=HTMLResponse)
    async def landing(request: Request) -> HTMLResponse:
        _, base = _resolve_external_base(request)
        return HTMLResponse(render_landing_page(settings.app_name, base))

    @fastapi_app.get("/configure", response_class=HTMLResponse)
    async def configure_page(request: Request) -> HTMLResponse:
        engine = get_engine(fastapi_app)
        _, base = _resolve_external_base(request)
        return HTMLResponse(
            render_config_page(
                settings.app_name,
                engine.config,
                manifest_url=f"{base}/manifest.json",
            )
        )

    @fastapi_app.get("/manifest.json")
    async def manifest() -> Response:
        engine = get_engine(fastapi_app)
        return Response(content=engine.manifest.body, media_type="application/json")

    @fastapi_app.get("/catalog/{content_type}/{catalog_id}.json")
    async def catalog(
        request: Request, content_type: str, catalog_id: str
    ) -> JSONResponse:
        return await _catalog_endpoint(request, content_type, catalog_id, {})

    @fastapi_app.get("/catalog/{content_type}/{catalog_id}/{extra:path}.json")
    async def catalog_with_extra(
        request: Request, content_type: str, catalog_id: str, extra: str
    ) -> JSONResponse:
        return await _catalog_endpoint(
            request, content_type, catalog_id, _parse_extra(extra)
        )

    @fastapi_app.get("/meta/{content_type}/{meta_id:path}.json")
    async def meta(content_type: str, meta_id: str) -> JSONResponse:
        engine = get_engine(fastapi_app)
        logger.info("Meta request type=%s id=%s", content_type, meta_id)
        return JSONResponse({"meta": await engine.lookup_meta(meta_id)})

    @fastapi_app.get("/stream/{content_type}/{stream_id:path}.json")
    async def stream(content_type: str, stream_id: str) -> JSONResponse:
        engine = get_engine(fastapi_app)
        logger.info("Stream request type=%s id=%s", content_type, stream_id)
        url = await engine.resolve_stream(stream_id)
        streams = [{"url": url, "title": "Stalker Portal"}] if url else []
        return JSONResponse({"streams": streams})

    @fastapi_app.get("/api/config")
    async def read_config() -> dict[str, Any]:
        return get_engine(fastapi_app).config.model_dump()

    @fastapi_app.post("/api/config")
    async def save_config(request: Request) -> dict[str, Any]:
        engine = get_engine(fastapi_app)
        payload = await _read_json(request)
        try:
            submitted = PortalConfig.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        if not (submitted.portal_url and submitted.mac):
            raise HTTPException(status_code=400, detail="Missing portal_url or mac")

        update: dict[str, Any] = {
            "portal_url": submitted.portal_url,
            "mac": submitted.mac,
        }
        for key in ("stb_lang", "timezone", "user_agent", "accept_language"):
            value = getattr(submitted, key)
            if key in submitted.model_fields_set and value:
                update[key] = value
        # A blank prehash clears it; an omitted one keeps the stored value.
        if "prehash" in submitted.model_fields_set:
            update["prehash"] = submitted.prehash
        try:
            saved = await engine.apply_config(engine.config.model_copy(update=update))
        except InvalidEndpoint as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return saved.model_dump()

    @fastapi_app.post("/api/test")
    async def test_portal(request: Request) -> dict[str, Any]:
        engine = get_engine(fastapi_app)
        payload = await _read_json(request)
        portal_url = str(payload.get("portal_url") or "").strip()
        mac = str(payload.get("mac") or "").strip()
        if not (portal_url and mac):
            raise HTTPException(status_code=400, detail="Missing portal_url or mac")
        try:
            canonicalize_endpoint(portal_url)
        except InvalidEndpoint as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        try:
            return await engine.test_connection(portal_url, mac)
        except PortalError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @fastapi_app.post("/api/refresh")
    async def refresh() -> dict[str, str]:
        engine = get_engine(fastapi_app)
        if not engine.is_configured():
            raise HTTPException(status_code=409, detail="Portal is not configured")
        engine.request_refresh()
        return {"status": "scheduled"}


def _resolve_external_base(request: Request) -> tuple[str, str]:
    headers = request.headers
    scheme = _first_forwarded_value(headers.get("x-forwarded-proto")) or request.url.scheme

    host = _first_forwarded_value(headers.get("x-forwarded-host"))
    if not host:
        host_header = headers.get("host")
        host = _first_forwarded_value(host_header) if host_header else None
    if not host:
        host = request.url.netloc

    origin = f"{scheme}://{host}".rstrip("/")

    prefix = (
        _first_forwarded_value(headers.get("x-forwarded-prefix"))
        or request.scope.get("root_path")
        or ""
    )
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"
    prefix = prefix.rstrip("/")

    base = f"{origin}{prefix}" if prefix else origin
    return origin, base


def _first_forwarded_value(header_value: str | None) -> str | None:
    if not header_value:
        return None
    return header_value.split(",", 1)[0].strip()


app = create_app()
