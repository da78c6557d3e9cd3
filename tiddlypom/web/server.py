"""FastAPI application for the TiddlyWeb sync server."""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
import uvicorn

from .. import __version__
from ..core.config import ConfigManager, TiddlypomConfig
from ..core.models import ValidationError
from ..storage.database import DatabaseManager, NotFoundError, StorageError
from ..storage.migrations import migrate_database
from ..storage.tiddler_store import TiddlerStore
from ..storage.user_store import UserStore
from .api.routes import router, LoginRequired
from .cache import EtagSeedCache

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{duration_ms:.1f}ms"
        )
        return response


def _is_authenticated(request: Request) -> bool:
    return getattr(request.state, "user", None) is not None


def _register_error_handlers(app: FastAPI) -> None:
    """Map storage and protocol errors to HTTP responses."""

    @app.exception_handler(LoginRequired)
    async def handle_login_required(request: Request, exc: LoginRequired):
        return RedirectResponse("/login/", status_code=302)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        logger.debug(f"{request.url.path}: {exc}")
        return PlainTextResponse("Not Found", status_code=404)

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return PlainTextResponse(f"Bad Request: {exc}", status_code=400)

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)

        # Only a logged-in user gets to see what went wrong.
        message = "Internal Server Error"
        if _is_authenticated(request):
            message += f"\n{exc}"
        return PlainTextResponse(message, status_code=500)


def create_app(config: TiddlypomConfig,
               tiddler_store: TiddlerStore,
               user_store: UserStore,
               wiki_file: Path) -> FastAPI:
    """Create FastAPI application.

    Args:
        config: Effective configuration
        tiddler_store: Store for tiddlers
        user_store: Store for users and remember tokens
        wiki_file: HTML file served at the site root
    """
    etag_cache = EtagSeedCache(config.server.etag_refresh_seconds)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        etag_cache.start()
        yield
        etag_cache.stop()

    app = FastAPI(
        title="tiddlypom",
        description="TiddlyWeb sync server",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.add_middleware(LoggingMiddleware)
    app.include_router(router)
    _register_error_handlers(app)

    app.state.config = config
    app.state.tiddler_store = tiddler_store
    app.state.user_store = user_store
    app.state.wiki_file = wiki_file
    app.state.etag_cache = etag_cache
    app.state.templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

    return app


class TiddlyServer:
    """Wires configuration, storage and the web app together."""

    def __init__(self, config_manager: ConfigManager, config: TiddlypomConfig):
        """Initialize the server.

        Migrates the database before anything else touches it.

        Raises:
            MigrationError: If the database cannot be brought up to date
        """
        self.config = config

        storage = config.storage
        db_path = config_manager.resolve_path(storage.database_path)
        applied = migrate_database(db_path, storage.busy_timeout_ms)
        if applied:
            logger.info(f"Migrated {db_path} to version {applied[-1]}")

        self.tiddler_store = TiddlerStore(DatabaseManager(db_path, storage.busy_timeout_ms))
        self.user_store = UserStore(
            config_manager.resolve_path(storage.users_file),
            config_manager.resolve_path(storage.tokens_file),
            config.auth.pepper,
        )
        self.app = create_app(
            config,
            self.tiddler_store,
            self.user_store,
            config_manager.resolve_path(config.server.wiki_file),
        )

    def run(self, log_level: str = "info") -> None:
        """Start serving until interrupted."""
        host, port = self.config.server.host, self.config.server.port
        logger.info(f"tiddlypom listening on http://{host}:{port}")

        uvicorn.run(
            self.app,
            host=host,
            port=port,
            log_level=log_level,
        )
