"""
HTTP API поиска по медиа канала (FastAPI).

GET  /           — информация о сервисе
GET  /search     — поиск по кэшу (?q=...&forceUpdate=true)
GET  /movies     — весь снапшот
POST /forward    — переслать файл пользователю {fileId, userId}
GET  /_health    — состояние процесса, зеркало не трогает
GET  /debug      — решения классификатора по текущему окну (не в production)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters import ChannelMirror
from cache_manager import CacheManager, EmptyQueryError, utc_now
from config import AppConfig, parse_bool
from contracts import MediaEntry, decision_to_dict, iso_utc, media_entry_to_dict
from errors import MIRROR_NOT_CONFIGURED, VALIDATION_ERROR
from forwarder import ForwardValidationError, forward_file
from logging_setup import get_request_id, new_request_id, set_request_id

logger = logging.getLogger("media_search.api")

SERVICE_NAME = "Media Search API"
REQUEST_ID_HEADER = "X-Request-ID"


def _error(status_code: int, message: str, error_code: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": message}
    if error_code:
        body["errorCode"] = error_code
    return JSONResponse(status_code=status_code, content=body)


def _not_configured() -> JSONResponse:
    return _error(503, "Channel mirror is not configured", MIRROR_NOT_CONFIGURED)


def _entries_response(entries: List[MediaEntry], last_updated: Optional[datetime]) -> Dict[str, Any]:
    return {
        "success": True,
        "data": [media_entry_to_dict(e) for e in entries],
        "count": len(entries),
        "lastUpdated": iso_utc(last_updated),
    }


def build_mirror(config: AppConfig) -> Optional[ChannelMirror]:
    """Telethon-зеркало из конфига; None, если нет кредов или канала."""
    if not config.mirror_configured:
        return None
    from telegram_client import TelegramMirrorClient

    return TelegramMirrorClient(
        api_id=int(config.api_id),
        api_hash=str(config.api_hash),
        session_file=config.session_file,
        bot_token=config.bot_token,
        timeout_sec=config.mirror_timeout_sec,
        auth_state_dir=config.logs_dir,
    )


def create_app(
    config: AppConfig,
    mirror: Optional[ChannelMirror] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """Собрать приложение. Зеркало и часы можно подменить (тесты)."""
    if mirror is None:
        mirror = build_mirror(config)
    cache: Optional[CacheManager] = None
    if mirror is not None:
        cache = CacheManager(mirror, config.cache_settings(), clock=clock)
    else:
        logger.warning("Зеркало не настроено: /search, /movies, /forward отключены, /_health работает")

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if cache is not None and config.eager_refresh:
            result = await cache.ensure_fresh(force=True)
            if not result.ok:
                logger.warning("Начальная загрузка кэша не удалась, повторю на первом запросе")
        yield
        disconnect = getattr(mirror, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.config = config
    app.state.cache = cache
    app.state.mirror = mirror

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        # id из заголовка клиента переиспользуется, иначе генерируется новый
        incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:64]
        set_request_id(incoming or new_request_id())
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = get_request_id() or ""
        logger.debug("%s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    @app.get("/")
    async def index() -> Dict[str, Any]:
        return {
            "status": "running",
            "service": SERVICE_NAME,
            "endpoints": {
                "search": "/search?q=:query",
                "movies": "/movies",
                "forward": "POST /forward",
                "health": "/_health",
            },
        }

    @app.get("/search")
    async def search(q: Optional[str] = None, forceUpdate: Optional[str] = None):
        if cache is None:
            return _not_configured()
        if not (q or "").strip() and cache.settings.require_query:
            return _error(400, 'Query parameter "q" is required', VALIDATION_ERROR)
        try:
            force = parse_bool(forceUpdate, "forceUpdate")
        except ValueError as e:
            return _error(400, str(e), VALIDATION_ERROR)
        await cache.ensure_fresh(force=force)
        try:
            results = cache.search(q)
        except EmptyQueryError as e:
            return _error(400, str(e), VALIDATION_ERROR)
        logger.info("Поиск %r: %s результатов", q or "", len(results))
        return _entries_response(results, cache.captured_at)

    @app.get("/movies")
    async def movies():
        if cache is None:
            return _not_configured()
        await cache.ensure_fresh()
        return _entries_response(cache.list_entries(), cache.captured_at)

    @app.post("/forward")
    async def forward(request: Request):
        if cache is None or mirror is None:
            return _not_configured()
        try:
            payload = await request.json()
        except ValueError:
            return _error(400, "Request body must be JSON", VALIDATION_ERROR)
        if not isinstance(payload, dict):
            return _error(400, "Request body must be a JSON object", VALIDATION_ERROR)
        try:
            result = await forward_file(
                mirror,
                cache.settings.channel_id,
                payload.get("fileId"),
                payload.get("userId"),
            )
        except ForwardValidationError as e:
            return _error(400, str(e), e.error_code)
        if not result.success:
            return _error(500, result.error or "Forward failed", result.error_code)
        return {"success": True}

    @app.get("/_health")
    async def health() -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": "ok", "mirror": cache is not None}
        if cache is not None:
            body["cacheCount"] = len(cache.snapshot)
            body["lastUpdated"] = iso_utc(cache.captured_at)
        return body

    if not config.is_production:

        @app.get("/debug")
        async def debug():
            if cache is None:
                return _not_configured()
            return {
                "capturedAt": iso_utc(cache.captured_at),
                "decisions": [decision_to_dict(d) for d in cache.decisions],
            }

    return app
