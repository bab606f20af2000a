"""
WhatevrMe Site — Content-Type Resolution
==========================================

What:  Maps a request path's extension to a response content type.
How:   A small fixed table for stylesheet, script and markup extensions is
       consulted first; everything else falls back to the `mimetypes`
       registry. Platform mime tables disagree on exactly these three
       extensions (or lack them), hence the overrides.
"""

import mimetypes
import posixpath

CONTENT_TYPE_OVERRIDES = {
    ".css": "text/css",
    ".js": "application/javascript",
    ".html": "text/html",
}


def guess_mime_type(path: str) -> str:
    """
    Return a content type for `path`, or "" when nothing is known.

    >>> guess_mime_type("/site.css")
    'text/css'
    >>> guess_mime_type("/README")
    ''
    """
    ext = posixpath.splitext(path)[1]
    if not ext:
        return ""

    override = CONTENT_TYPE_OVERRIDES.get(ext)
    if override:
        return override

    content_type, _ = mimetypes.guess_type("file" + ext.lower(), strict=False)
    return content_type or ""
