"""
WhatevrMe Site — Note API Sub-Router
======================================

What:  Handles every request under /api/ that the Dispatcher hands over.
How:   Routes match on exact segment count and verb:

    GET         /api/note/{id}   → raw stored bytes (gzip JSON), 404 if absent
    POST        /api/note        → create under a fresh id, 201 + location
    POST | PUT  /api/note/{id}   → create-or-replace under {id}, 200
    DELETE      /api/note/{id}   → 204, 404 if absent
    anything else                → 404

Error policy:
    Malformed bodies, store failures and missing notes on GET go through
    Error Reporting, each with its own public message.
"""

import logging
from typing import List

from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import Response

from whatevrme.error_reporting import report_error
from whatevrme.exceptions import BadRequestError, NotFoundError
from whatevrme.schemas.note import Note, NoteCreated
from whatevrme.services.filesystem import clean_path
from whatevrme.services.notepad import NotePad, new_note_id

logger = logging.getLogger(__name__)


def path_segments(path: str) -> List[str]:
    """'/api/note/abc/' → ['api', 'note', 'abc']"""
    return clean_path(path).strip("/").split("/")


def decode_note(body: bytes) -> Note:
    """
    Decode a request body into a Note.

    Raises:
        BadRequestError: body is not a JSON note (details stay in the log)
    """
    try:
        return Note.model_validate_json(body)
    except PydanticValidationError as e:
        raise BadRequestError(
            message=f"decoding note payload failed: {e.error_count()} error(s)",
            context={"errors": e.errors(include_url=False, include_input=False)},
        )


class NoteAPI:
    """Callable API handler bound to one NotePad."""

    def __init__(self, notepad: NotePad):
        self.notepad = notepad

    async def __call__(self, request: Request) -> Response:
        parts = path_segments(request.url.path)
        method = request.method

        if parts[:2] == ["api", "note"]:
            if len(parts) == 3 and method == "GET":
                return await self.get_note(parts[2])
            if len(parts) == 2 and method == "POST":
                return await self.create_note(request)
            if len(parts) == 3 and method in ("POST", "PUT"):
                return await self.update_note(parts[2], request)
            if len(parts) == 3 and method == "DELETE":
                return await self.delete_note(parts[2])

        raise NotFoundError(resource="api route", resource_id=f"{method} {request.url.path}")

    async def get_note(self, note_id: str) -> Response:
        """
        Stream the stored bytes verbatim.

        The file is already gzip-compressed JSON, so it is labelled with
        `content-encoding: gzip` instead of being re-encoded.
        """
        try:
            raw = await self.notepad.read_raw(note_id)
        except NotFoundError as e:
            return report_error(e, "error getting note", 404, level=logging.WARNING)

        # TODO: only label as gzip when the client's accept-encoding allows it
        return Response(
            content=raw,
            media_type="application/json",
            headers={"content-encoding": "gzip"},
        )

    async def create_note(self, request: Request) -> Response:
        note = decode_note(await request.body())

        note_id = new_note_id()
        await self.notepad.write_note(note_id, note)
        logger.info("Note created: %s", note_id)

        return JSONResponse(
            status_code=201,
            content=NoteCreated(id=note_id).model_dump(),
            headers={"location": f"/api/note/{note_id}"},
        )

    async def update_note(self, note_id: str, request: Request) -> Response:
        note = decode_note(await request.body())

        await self.notepad.write_note(note_id, note)
        logger.info("Note written: %s", note_id)

        return JSONResponse(status_code=200, content=NoteCreated(id=note_id).model_dump())

    async def delete_note(self, note_id: str) -> Response:
        if not await self.notepad.exists(note_id):
            raise NotFoundError(resource="note", resource_id=note_id)

        await self.notepad.delete(note_id)
        return Response(status_code=204)
