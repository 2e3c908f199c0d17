"""HTTP surface: routes requests to the feed store and submission handler."""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, tokens
from .config import AppConfig
from .feeds import ATOM_CONTENT_TYPE
from .shutdown import ShutdownCoordinator
from .store import FeedStore
from .submissions import (
    MAX_POST_BODY,
    Fetcher,
    Reply,
    RequestError,
    SubmissionHandler,
    add_failure_reply,
    info_reply,
)
from .templating import get_environment

logger = logging.getLogger(__name__)

FEED_TOKEN_PLACEHOLDER = "LINKDROP_FEED_TOKEN"


def render_page(name: str, **context) -> str:
    return get_environment().get_template(name).render(**context)


def not_modified(modified: datetime, if_modified_since: str) -> bool:
    """Compare at one second resolution, the precision of HTTP dates."""
    try:
        since = parsedate_to_datetime(if_modified_since)
    except (TypeError, ValueError, IndexError):
        return False
    if since is None:
        return False
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return int(modified.timestamp()) <= int(since.timestamp())


def http_date(value: datetime) -> str:
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _remote(request: Request) -> str:
    if request.client is None:
        return "-"
    return f"{request.client.host}:{request.client.port}"


def _loggable_path(path: str) -> str:
    if path.startswith("/feed/"):
        return "/feed/..."
    return path


def _to_response(reply: Reply) -> Response:
    return Response(
        content=reply.body,
        status_code=reply.status,
        media_type=reply.media_type,
        headers=reply.headers,
    )


async def read_body(request: Request, limit: int = MAX_POST_BODY) -> bytes:
    """Read the request body, refusing to buffer more than ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise RequestError(413, "POST body exceeded maximum size")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise RequestError(413, "POST body exceeded maximum size")
    return bytes(body)


def create_app(
    store: FeedStore, config: AppConfig, fetcher: Optional[Fetcher] = None
) -> FastAPI:
    """Build the FastAPI application serving the feed."""
    handler = SubmissionHandler(store, config.private_token, fetcher)
    feed_token = config.feed_token

    app = FastAPI(
        title="linkdrop",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                '%s "%s %s" %d "%s"',
                _remote(request),
                request.method,
                _loggable_path(request.url.path),
                response.status_code,
                request.headers.get("user-agent", "-"),
            )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return HTMLResponse(render_page("404.html.j2"), status_code=404)
        return Response(
            f"{exc.detail}\n", status_code=exc.status_code, headers=exc.headers
        )

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception):
        logger.exception("Unhandled error serving %s", _loggable_path(request.url.path))
        return HTMLResponse(render_page("500.html.j2"), status_code=500)

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        host = request.headers.get("host") or f"{config.address}:{config.port}"
        return render_page(
            "index.html.j2",
            feed_url=f"http://{host}/feed/{FEED_TOKEN_PLACEHOLDER}",
            version=__version__,
        )

    @app.post("/add")
    async def add(request: Request):
        try:
            body = await read_body(request)
        except RequestError as exc:
            return _to_response(add_failure_reply(exc))
        reply = await run_in_threadpool(
            handler.handle, body, _remote(request), request.headers.get("content-type")
        )
        return _to_response(reply)

    @app.post("/info")
    async def info(request: Request):
        try:
            body = await read_body(request)
        except RequestError as exc:
            return _to_response(info_reply(exc.status, {"status": "error", "message": exc.message}))
        reply = await run_in_threadpool(
            handler.info, body, _remote(request), request.headers.get("content-type")
        )
        return _to_response(reply)

    @app.get("/feed/{token}")
    async def feed(token: str, request: Request):
        if not tokens.verify(token, feed_token):
            return HTMLResponse(render_page("404.html.j2"), status_code=404)

        snapshot = store.snapshot()
        headers = {"Last-Modified": http_date(snapshot.last_modified)}
        if_modified_since = request.headers.get("if-modified-since")
        if if_modified_since and not_modified(snapshot.last_modified, if_modified_since):
            return Response(status_code=304, headers=headers)
        return Response(snapshot.data, media_type=ATOM_CONTENT_TYPE, headers=headers)

    return app


class Server(uvicorn.Server):
    """uvicorn server whose signal handling goes through a ShutdownCoordinator.

    The first shutdown request stops accepting connections and lets in-flight
    requests finish within the configured grace period; a second one exits
    immediately.
    """

    def __init__(self, config: uvicorn.Config, coordinator: ShutdownCoordinator):
        super().__init__(config)
        self.coordinator = coordinator
        coordinator.subscribe(self._on_shutdown)

    def _on_shutdown(self, count: int) -> None:
        if count > 1:
            self.force_exit = True
        self.should_exit = True

    @contextlib.contextmanager
    def capture_signals(self):
        self.coordinator.install()
        try:
            yield
        finally:
            self.coordinator.restore()

    def install_signal_handlers(self) -> None:
        # Used by uvicorn releases that predate capture_signals.
        self.coordinator.install()


def build_server(
    app: FastAPI, config: AppConfig, coordinator: ShutdownCoordinator
) -> Server:
    uv_config = uvicorn.Config(
        app,
        host=config.address,
        port=config.port,
        log_config=None,
        access_log=False,
        timeout_graceful_shutdown=config.shutdown_grace,
    )
    return Server(uv_config, coordinator)


def serve(
    config: AppConfig,
    store: FeedStore,
    coordinator: Optional[ShutdownCoordinator] = None,
) -> None:
    """Serve until a shutdown is requested."""
    coordinator = coordinator or ShutdownCoordinator()
    app = create_app(store, config)
    server = build_server(app, config, coordinator)

    logger.info("HTTP server running on: http://%s:%d", config.address, config.port)
    logger.info(
        "Feed available at: http://%s:%d/feed/%s",
        config.address,
        config.port,
        FEED_TOKEN_PLACEHOLDER,
    )
    server.run()
    logger.info("Server stopped")
