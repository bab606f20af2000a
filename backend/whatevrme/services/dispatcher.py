"""
WhatevrMe Site — Request Dispatcher
=====================================

What:  Decides, per request, how a path is served, then serves it.
How:   One Route Decision is computed from the normalized path, first
       match wins:

    1. Normalize         "//a/./b/" → "/a/b"
    2. Shortlink probe   "/<id>" (≥5 chars, no ".", no further "/") naming an
                         existing note → path becomes the note view and the id
                         goes into the render context; otherwise fall through
    3. API probe         "/api/..." → NoteAPI, never reaches 4-6
    4. Root alias        "/" → index view
    5. View lookup       views/<path> is a file → compose + execute template
    6. Static lookup     static/<path> is a file → stream with conditional GET
    7. Not found         404

Who:   Called by the catch-all route in routes/site.py.
"""

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import FileResponse, Response, StreamingResponse
from starlette.staticfiles import NotModifiedResponse, StaticFiles

from whatevrme.exceptions import NotFoundError, TemplateParseError, UpstreamError
from whatevrme.services.content_types import guess_mime_type
from whatevrme.services.filesystem import FileTree, clean_path
from whatevrme.services.notepad import NotePad
from whatevrme.services.templates import RenderContext, TemplateComposer, execute

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"
SHORTLINK_MIN_LENGTH = 5
HTML_CONTENT_TYPE = "text/html; charset=UTF-8"

ApiHandler = Callable[[Request], Awaitable[Response]]


class RouteKind(enum.Enum):
    SHORTLINK = "shortlink"  # note id rewritten to the note view
    API = "api"
    VIEW = "view"
    STATIC = "static"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RouteDecision:
    """How one request is served. Computed fresh per request, never stored."""

    kind: RouteKind
    path: str
    context: RenderContext = field(default_factory=RenderContext)
    file: Optional[Path] = None
    stat: Optional[os.stat_result] = None


def shortlink_candidate(path: str) -> Optional[str]:
    """
    Note id a clean path could be a shortlink for, or None.

    A candidate has at least SHORTLINK_MIN_LENGTH characters including the
    leading slash, no "." anywhere and no "/" after the first character.
    """
    if len(path) < SHORTLINK_MIN_LENGTH or "." in path or "/" in path[1:]:
        return None
    return path[1:]


# Starlette's own conditional-GET rules; StaticFiles needs no directory for them.
_STARLETTE_STATIC = StaticFiles(check_dir=False)


def is_not_modified(response_headers: Headers, request_headers: Headers) -> bool:
    """
    Conditional-GET check against the ETag / Last-Modified of a file response.

    Delegates to StaticFiles.is_not_modified, adding `If-None-Match: *`,
    which matches any current representation.
    """
    if request_headers.get("if-none-match", "").strip() == "*" and "etag" in response_headers:
        return True
    return _STARLETTE_STATIC.is_not_modified(response_headers, request_headers)


class Dispatcher:
    """
    Routing policy plus the handlers for the non-API routes.

    Args:
        notepad:     Note store (shortlink probe)
        views:       Page templates, looked up by path
        includes:    Partials, looked up by template name
        static:      Static assets, looked up by path
        api_handler: Receives every /api/ request
        note_view:   View a shortlink is rewritten to
        index_view:  View served for "/"
    """

    def __init__(
        self,
        notepad: NotePad,
        views: FileTree,
        includes: FileTree,
        static: FileTree,
        api_handler: ApiHandler,
        note_view: str = "/note.html",
        index_view: str = "/index.html",
    ):
        self.notepad = notepad
        self.views = views
        self.static = static
        self.api_handler = api_handler
        self.composer = TemplateComposer(includes)
        self.note_view = note_view
        self.index_view = index_view

    async def dispatch(self, request: Request) -> Response:
        decision = await self.decide(request.url.path)
        logger.debug("%s %s → %s %s", request.method, request.url.path, decision.kind.value, decision.path)
        return await self.execute(decision, request)

    async def decide(self, raw_path: str) -> RouteDecision:
        path = clean_path(raw_path)
        context = RenderContext(path=path)
        shortlink = False

        note_id = shortlink_candidate(path)
        if note_id is not None and await self.notepad.exists(note_id):
            context = RenderContext(path=path, note_id=note_id)
            path = self.note_view
            shortlink = True

        if path.startswith(API_PREFIX):
            return RouteDecision(RouteKind.API, path, context)

        if path == "/":
            path = self.index_view

        view = await self._lookup(self.views, path)
        if view is not None:
            kind = RouteKind.SHORTLINK if shortlink else RouteKind.VIEW
            return RouteDecision(kind, path, context, file=view)

        asset = await self._lookup(self.static, path)
        if asset is not None:
            try:
                st = await self.static.stat(path)
            except OSError as e:
                raise UpstreamError(
                    message=f"stat of static file failed: {e}",
                    context={"path": path},
                )
            return RouteDecision(RouteKind.STATIC, path, context, file=asset, stat=st)

        return RouteDecision(RouteKind.NOT_FOUND, path, context)

    @staticmethod
    async def _lookup(tree: FileTree, path: str) -> Optional[Path]:
        """Regular file at `path`, None when absent or a directory."""
        try:
            return await tree.locate(path)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

    async def execute(self, decision: RouteDecision, request: Request) -> Response:
        if decision.kind is RouteKind.API:
            return await self.api_handler(request)
        if decision.kind in (RouteKind.SHORTLINK, RouteKind.VIEW):
            return await self.render_view(decision)
        if decision.kind is RouteKind.STATIC:
            return self.serve_static(decision, request)
        raise NotFoundError(resource="page", resource_id=decision.path)

    async def render_view(self, decision: RouteDecision) -> Response:
        try:
            source = await self.views.read_text(decision.path)
        except UnicodeDecodeError as e:
            raise TemplateParseError(decision.path, f"source is not UTF-8: {e}")
        except OSError as e:
            raise UpstreamError(
                message=f"reading view failed: {e}",
                context={"view": decision.path, "os_error": str(e)},
            )

        page = await self.composer.compose(decision.path, source)
        chunks = await execute(page, decision.context)
        return StreamingResponse(chunks, media_type=HTML_CONTENT_TYPE)

    @staticmethod
    def serve_static(decision: RouteDecision, request: Request) -> Response:
        content_type = guess_mime_type(decision.path)
        response = FileResponse(
            decision.file,
            stat_result=decision.stat,
            media_type=content_type or None,
        )
        if is_not_modified(response.headers, request.headers):
            return NotModifiedResponse(response.headers)
        return response
