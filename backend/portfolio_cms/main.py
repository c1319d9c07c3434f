"""
Portfolio CMS application factory and ASGI entry point
"""

import asyncio
import logging
import os
import signal
import sys
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from .api.middleware import LoggingMiddleware, SecurityHeadersMiddleware
from .api.routes import articles, editor, health, products, users
from .core.config import Settings, settings
from .core.dependencies import ServiceRegistry
from .core.exceptions import (
    PortfolioException,
    http_exception_handler,
    make_unhandled_exception_handler,
    portfolio_exception_handler,
    validation_exception_handler,
)
from .monitoring import AlertLog
from .monitoring.alerts import ALERT_LOGGER_NAME
from .repositories import RepositoryProvider, create_repository_provider
from .services.admin_bootstrap import ensure_default_admin
from .utils.logging_filter import setup_secure_logging

POOL_MANAGER_LOGGER_NAME = "portfolio_cms.pool_manager"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
STARTUP_TIMEOUT_SECONDS = 30
SHUTDOWN_TIMEOUT_SECONDS = 10

logger = logging.getLogger(__name__)


def _attach_file_handler(logger_name: str, filename: str, log_dir: str) -> None:
    """Route a dedicated logger to its own file under LOG_DIR"""
    target = logging.getLogger(logger_name)
    path = os.path.abspath(os.path.join(log_dir, filename))
    if any(getattr(handler, "baseFilename", None) == path for handler in target.handlers):
        return
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    target.addHandler(handler)


def configure_file_logging(config: Settings) -> None:
    try:
        os.makedirs(config.LOG_DIR, exist_ok=True)
        _attach_file_handler(ALERT_LOGGER_NAME, "alerts.log", config.LOG_DIR)
        _attach_file_handler(POOL_MANAGER_LOGGER_NAME, "pool_manager.log", config.LOG_DIR)
    except OSError as e:
        logging.getLogger(__name__).warning(f"File logging unavailable in {config.LOG_DIR}: {e}")


def configure_logging(config: Settings) -> None:
    """Console logging at LOG_LEVEL, alert and pool files under LOG_DIR, secrets masked everywhere"""
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO), format=LOG_FORMAT)
    configure_file_logging(config)
    setup_secure_logging()


configure_logging(settings)


class CrashHandler:
    """
    Reports uncaught exceptions to the alert log and stops the server

    Covers the main thread, worker threads and the event loop (callbacks and
    tasks whose exception was never retrieved). The first crash sends SIGTERM
    to this process so uvicorn runs the lifespan shutdown: monitors stop, the
    database pool closes and the process exits.
    """

    def __init__(self, alerts: AlertLog, shutdown_on_crash: bool = True, kill: Optional[Callable[[int, int], None]] = None):
        self.alerts = alerts
        self.shutdown_on_crash = shutdown_on_crash
        self.shutdown_requested = False
        self._kill = kill
        self._previous_excepthook = None
        self._previous_thread_excepthook = None

    def report(self, message: str, source: str) -> None:
        self.alerts.alert(message, level="critical", source=source)
        if not self.shutdown_on_crash or self.shutdown_requested:
            return
        self.shutdown_requested = True
        logger.critical(f"Shutting down after uncaught exception ({source})")
        (self._kill or os.kill)(os.getpid(), signal.SIGTERM)

    def excepthook(self, exc_type, exc, tb) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            self.report(f"Uncaught exception: {exc_type.__name__}: {exc}", source="process")
        if self._previous_excepthook:
            self._previous_excepthook(exc_type, exc, tb)

    def thread_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if issubclass(args.exc_type, SystemExit):
            return
        thread_name = args.thread.name if args.thread else "unknown"
        self.report(
            f"Uncaught exception in thread {thread_name}: {args.exc_type.__name__}: {args.exc_value}",
            source="thread",
        )

    def loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        loop.default_exception_handler(context)
        exc = context.get("exception")
        message = context.get("message", "Unhandled error in event loop")
        self.report(f"{message}: {exc!r}" if exc else message, source="event_loop")

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._previous_excepthook = sys.excepthook
        self._previous_thread_excepthook = threading.excepthook
        sys.excepthook = self.excepthook
        threading.excepthook = self.thread_excepthook
        if loop is not None:
            loop.set_exception_handler(self.loop_exception_handler)

    def uninstall(self) -> None:
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
        if self._previous_thread_excepthook is not None:
            threading.excepthook = self._previous_thread_excepthook


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the database, seed the admin account and run monitors for the life of the app"""
    services: ServiceRegistry = app.state.services
    config = services.settings

    logger.info(f"{config.APP_NAME} starting ({config.ENVIRONMENT}, {services.provider.backend} backend)")
    crash_handler = CrashHandler(services.alerts, shutdown_on_crash=config.SHUTDOWN_ON_UNCAUGHT_EXCEPTION)
    crash_handler.install(asyncio.get_running_loop())

    # A database that is unreachable at startup stops the process
    try:
        async with asyncio.timeout(STARTUP_TIMEOUT_SECONDS):
            await services.provider.initialize()
    except Exception as e:
        services.alerts.alert(f"Database initialization failed: {e}", level="critical", source="database")
        await services.provider.close()
        crash_handler.uninstall()
        raise
    logger.info(f"Database ready: {services.provider.describe()}")

    await ensure_default_admin(services.provider, config)

    services.start_monitors()
    logger.info(f"{config.APP_NAME} is serving requests")

    yield

    logger.info(f"{config.APP_NAME} stopping")
    try:
        async with asyncio.timeout(SHUTDOWN_TIMEOUT_SECONDS):
            await services.stop_monitors()
            await services.provider.close()
    except TimeoutError:
        logger.warning(f"Shutdown did not finish within {SHUTDOWN_TIMEOUT_SECONDS}s")
    else:
        logger.info(f"{config.APP_NAME} stopped")
    crash_handler.uninstall()


def create_app(config: Settings = settings, provider: Optional[RepositoryProvider] = None) -> FastAPI:
    """
    Build the application

    Args:
        config: Settings to run with
        provider: Repository provider; built from PERSISTENCE_BACKEND when omitted
    """
    services = ServiceRegistry.build(config, provider or create_repository_provider(config))

    app = FastAPI(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        debug=config.DEBUG,
        description="Portfolio content management API with connection pool monitoring",
        docs_url="/docs" if not config.is_production else None,
        redoc_url=None,
        lifespan=lifespan
    )
    app.state.services = services

    # CORS middleware
    allow_any = "*" in config.ALLOWED_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_any else config.ALLOWED_ORIGINS,
        allow_origin_regex=".*" if allow_any else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"]
    )
    app.add_middleware(LoggingMiddleware, expose_errors=config.is_development)
    app.add_middleware(SecurityHeadersMiddleware)

    handlers = {
        PortfolioException: portfolio_exception_handler,
        RequestValidationError: validation_exception_handler,
        StarletteHTTPException: http_exception_handler,
        Exception: make_unhandled_exception_handler(config.is_development),
    }
    for exc_class, handler in handlers.items():
        app.add_exception_handler(exc_class, handler)

    # API router registration
    app.include_router(health.router, tags=["health"])
    app.include_router(users.router, prefix=f"{config.API_PREFIX}/users", tags=["users"])
    app.include_router(products.router, prefix=f"{config.API_PREFIX}/products", tags=["products"])
    app.include_router(articles.router, prefix=f"{config.API_PREFIX}/articles", tags=["articles"])
    app.include_router(editor.router, prefix=f"{config.API_PREFIX}/editor", tags=["editor"])

    app.mount("/uploads", StaticFiles(directory=services.uploads.upload_dir), name="uploads")

    if config.FRONTEND_PATH and os.path.isdir(config.FRONTEND_PATH):
        app.mount("/", StaticFiles(directory=config.FRONTEND_PATH, html=True), name="frontend")
        logger.info(f"Serving frontend from {config.FRONTEND_PATH}")
    else:
        @app.get("/", include_in_schema=False)
        async def root():
            """API information when no frontend is deployed"""
            return {
                "message": f"Welcome to {config.APP_NAME} API",
                "version": config.APP_VERSION,
                "status": "running",
                "api_base": config.API_PREFIX,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "portfolio_cms.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
