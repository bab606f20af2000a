"""
WhatevrMe Site — FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() resolves the site directories, wires the note store,
       file trees and Dispatcher together, and registers middleware,
       exception handlers and the catch-all route.
Who:   Called by uvicorn in factory mode (`python -m whatevrme`, or
       `uvicorn whatevrme.main:create_app --factory`) and by the tests.

Application Architecture:
    ┌───────────────────────────────────────────────────────┐
    │                     FastAPI App                       │
    │                                                       │
    │  Middleware:  [Access Log]                            │
    │                                                       │
    │  Route:       /{path}  →  Dispatcher                  │
    │                 ├── shortlink → note view             │
    │                 ├── /api/     → NoteAPI → NotePad     │
    │                 ├── view      → TemplateComposer      │
    │                 ├── static    → FileResponse          │
    │                 └── 404                               │
    │                                                       │
    │  Exception Handlers:                                  │
    │  NotFound→404 │ BadRequest→400 │ everything else→500  │
    └───────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from whatevrme import __version__
from whatevrme.config import (
    data_dir,
    includes_dir,
    settings,
    static_dir,
    views_dir,
)
from whatevrme.error_reporting import report_error
from whatevrme.exceptions import NotFoundError, WhatevrError
from whatevrme.middleware.logging import AccessLogMiddleware
from whatevrme.routes import site
from whatevrme.routes.api import NoteAPI
from whatevrme.services.dispatcher import Dispatcher
from whatevrme.services.filesystem import FileTree
from whatevrme.services.notepad import NotePad

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during app startup, before anything else logs.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # whatevrme.access already logs every request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("WhatevrMe site %s starting up", __version__)
    logger.info("basedir = %r", str(app.state.base_dir))
    logger.info("Listening on http://%s:%d", settings.http_host, settings.http_port)

    yield

    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to responses.

    Handler hierarchy:
        NotFoundError  → 404, fixed body, no token (not an internal fault)
        WhatevrError   → exc.status_code via Error Reporting (token + log)
        Exception      → 500 via Error Reporting
    """

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        logger.debug("Not found: %s", exc.message)
        return JSONResponse(
            status_code=404,
            content={"error": "not_found", "message": exc.public_message},
        )

    @app.exception_handler(WhatevrError)
    async def handle_whatevr_error(request: Request, exc: WhatevrError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        return report_error(exc, exc.public_message, exc.status_code, level=level)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: only the token and a generic message reach the client."""
        return report_error(exc, "internal error", 500)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def build_dispatcher(base_dir: Path) -> Dispatcher:
    """Wire the note store, file trees and API handler for one base directory."""
    notepad = NotePad(data_dir(base_dir))
    return Dispatcher(
        notepad=notepad,
        views=FileTree(views_dir(base_dir)),
        includes=FileTree(includes_dir(base_dir)),
        static=FileTree(static_dir(base_dir)),
        api_handler=NoteAPI(notepad),
        note_view=settings.note_view,
        index_view=settings.index_view,
    )


def create_app(
    base_dir: Optional[Union[str, Path]] = None,
    dispatcher: Optional[Dispatcher] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        base_dir:   Site directory; defaults to settings (auto-detected when unset)
        dispatcher: Pre-built Dispatcher (tests); built from base_dir otherwise

    Raises:
        ConfigurationError: no base directory could be found
    """
    resolved = Path(base_dir).resolve() if base_dir is not None else settings.resolve_base_dir()

    app = FastAPI(
        title="WhatevrMe",
        version=__version__,
        # every path belongs to the site
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.base_dir = resolved
    app.state.dispatcher = dispatcher or build_dispatcher(resolved)

    app.add_middleware(AccessLogMiddleware)

    register_exception_handlers(app)

    app.include_router(site.router)

    return app
