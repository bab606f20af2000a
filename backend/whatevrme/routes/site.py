"""
WhatevrMe Site — Catch-all Site Route
=======================================

What:  The single route every request lands on.
How:   Hands the request to the Dispatcher stored on the application,
       which applies the routing policy (shortlinks, API, views, static).
"""

from fastapi import APIRouter, Depends, Request
from starlette.responses import Response

from whatevrme.services.dispatcher import Dispatcher

router = APIRouter(tags=["Site"])

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def get_dispatcher(request: Request) -> Dispatcher:
    """Dependency: the Dispatcher built by create_app()."""
    return request.app.state.dispatcher


@router.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
async def serve(
    request: Request,
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> Response:
    return await dispatcher.dispatch(request)
