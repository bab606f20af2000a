"""
WhatevrMe Site — Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for every failure the site can report.
How:   Each exception carries an internal message plus an optional context dict
       (logged only) and a public message (the only text a client ever sees).
       Global exception handlers registered in main.py translate them into
       responses, most of them through error_reporting.report_error().
Who:   Raised by services (note store, template engine, dispatcher);
       caught by the handlers in main.py.

Exception Hierarchy:
    WhatevrError (base)
    ├── NotFoundError                → 404, no correlation token
    ├── BadRequestError              → 400 via Error Reporting
    │   └── InvalidNoteIDError       → 400 (404 when reading)
    ├── UpstreamError                → 500 via Error Reporting
    │   └── NoteStoreError           → note store I/O failure
    ├── TemplateResolutionError      → 500 via Error Reporting
    │   └── TemplateParseError       → a template source failed to parse
    ├── TemplateExecutionError       → 500 via Error Reporting
    └── ConfigurationError           → startup only, never served
"""

from typing import Any, Dict, Optional


class WhatevrError(Exception):
    """
    Base exception for all WhatevrMe site errors.

    Attributes:
        message:         Internal description (logged, never sent to the client)
        public_message:  Client-safe text placed in the error response
        status_code:     HTTP status the global handler responds with
        context:         Additional debug info (logged, never sent to the client)
    """

    status_code: int = 500
    public_message: str = "internal error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
        public_message: Optional[str] = None,
    ):
        self.message = message
        self.context = context or {}
        if public_message is not None:
            self.public_message = public_message
        super().__init__(self.message)


class NotFoundError(WhatevrError):
    """
    Raised when a requested resource does not exist.

    What:    Missing note, missing route, or no view/static file for a path.
    HTTP:    404 Not Found. Not an internal fault, so no correlation token
             is minted and nothing is logged at error level.
    """

    status_code = 404
    public_message = "404 page not found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


class BadRequestError(WhatevrError):
    """
    Raised when the client sent a payload that cannot be decoded.

    HTTP:    400 Bad Request, reported with a correlation token.
    """

    status_code = 400
    public_message = "error decoding"


class InvalidNoteIDError(BadRequestError):
    """
    Raised when a note identifier fails the character or length check.

    When:    Any note store operation on an id that does not match
             ^[A-Za-z0-9_-]+$ or is shorter than 4 characters.
    """

    public_message = "invalid note id"

    def __init__(self, note_id: str, reason: str):
        super().__init__(
            message=reason,
            context={"note_id": note_id},
        )
        self.note_id = note_id


class UpstreamError(WhatevrError):
    """
    Raised when store or filesystem I/O fails.

    HTTP:    500 Internal Server Error. The OS error stays in context.
    """

    status_code = 500
    public_message = "internal error"


class NoteStoreError(UpstreamError):
    """Raised when reading, writing or deleting a note file fails."""

    def __init__(
        self,
        message: str = "Note store operation failed",
        context: Optional[Dict[str, Any]] = None,
        public_message: Optional[str] = None,
    ):
        super().__init__(message=message, context=context, public_message=public_message)


class TemplateResolutionError(WhatevrError):
    """
    Raised when a page's template dependency set cannot be assembled.

    What:    A named reference has no source in the includes directory.
    Attributes:
        template_name: The reference that could not be resolved.
    """

    status_code = 500
    public_message = "internal error"

    def __init__(
        self,
        template_name: str,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["template"] = template_name
        super().__init__(
            message=message or f"template {template_name!r} could not be resolved",
            context=ctx,
        )
        self.template_name = template_name


class TemplateParseError(TemplateResolutionError):
    """Raised when a fetched template source fails to parse."""

    def __init__(
        self,
        template_name: str,
        detail: str,
        lineno: Optional[int] = None,
    ):
        context: Dict[str, Any] = {"detail": detail}
        if lineno is not None:
            context["lineno"] = lineno
        super().__init__(
            template_name,
            message=f"template {template_name!r} failed to parse: {detail}",
            context=context,
        )


class TemplateExecutionError(WhatevrError):
    """
    Raised when executing a composed template against a render context fails.

    When:    Before the first chunk of output has been produced. Later
             failures cannot change the status line and are only logged.
    """

    status_code = 500
    public_message = "internal error"


class ConfigurationError(WhatevrError):
    """Raised at startup when the site directories cannot be located."""
