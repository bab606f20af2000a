"""
WhatevrMe Site — Error Reporting
==================================

What:  Turns an internal failure into exactly one client response and
       exactly one log entry, linked by an opaque correlation token.
How:   A token is minted from the clock and process-local randomness,
       placed in both the response body and the `x-error-id` header, and
       logged next to the originating call site and the full internal
       error. Nothing but the public message and the token reaches the
       client.

Log line format:
    HTTPError: (id='5f0c2a9e13b7d4c1') /path/to/module.py:42 | NoteStoreError: writing note failed: ...

Response body:
    {
        "error": "internal_error",
        "message": "Error serving request (id=\"5f0c2a9e13b7d4c1\") error writing",
        "error_id": "5f0c2a9e13b7d4c1"
    }
"""

import logging
import random
import sys
import time
import traceback
from typing import Optional

from fastapi.responses import JSONResponse

from whatevrme.exceptions import WhatevrError

logger = logging.getLogger("whatevrme.errors")

ERROR_ID_HEADER = "x-error-id"

ERROR_CODES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    500: "internal_error",
}


def new_error_id() -> str:
    """Cheap, log-correlation-grade token (not cryptographically unique)."""
    return format(int(time.time()) ^ random.getrandbits(63), "x")


def _describe(exc: BaseException) -> str:
    detail = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, WhatevrError) and exc.context:
        detail = f"{detail} | context={exc.context}"
    return detail


def _call_site(exc: BaseException, depth: int) -> str:
    """Innermost frame the exception was raised from, else our caller."""
    if exc.__traceback__ is not None:
        frame = traceback.extract_tb(exc.__traceback__)[-1]
        return f"{frame.filename}:{frame.lineno}"
    caller = sys._getframe(depth)
    return f"{caller.f_code.co_filename}:{caller.f_lineno}"


def log_error(exc: BaseException, level: int = logging.ERROR, _depth: int = 1) -> str:
    """
    Log an internal error under a fresh correlation token and return it.

    The token is re-drawn until it does not occur in the error's own text,
    so a formatted error can never be mistaken for (or leak) the token.
    """
    detail = _describe(exc)
    error_id = new_error_id()
    while error_id in detail:
        error_id = new_error_id()

    logger.log(
        level,
        "HTTPError: (id=%r) %s | %s",
        error_id,
        _call_site(exc, _depth + 1),
        detail,
        exc_info=None if isinstance(exc, WhatevrError) else exc,
        extra={"error_id": error_id},
    )
    return error_id


def report_error(
    exc: Optional[BaseException],
    public_message: str,
    status_code: int,
    level: int = logging.ERROR,
) -> JSONResponse:
    """
    Build the client response for an internal error and log the detail.

    Args:
        exc:            The internal error (None → the public message is used)
        public_message: Client-safe description
        status_code:    HTTP status of the response
        level:          Log level of the entry (ERROR for faults)

    Returns:
        JSONResponse carrying the token in the body and `x-error-id` header.
    """
    if exc is None:
        exc = RuntimeError(public_message)

    error_id = log_error(exc, level=level, _depth=2)

    return JSONResponse(
        status_code=status_code,
        content={
            "error": ERROR_CODES.get(status_code, "error"),
            "message": f'Error serving request (id="{error_id}") {public_message}',
            "error_id": error_id,
        },
        headers={ERROR_ID_HEADER: error_id},
    )
