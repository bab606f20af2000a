"""
WhatevrMe Site — Read-only File Trees
=======================================

What:  Path-addressed, read-only access to one directory (views, includes
       or static assets).
How:   Every lookup cleans the requested path into a rooted form, joins it
       below the root and refuses anything that resolves outside of it.
       Reads go through aiofiles so a slow disk only blocks the request
       that asked.
"""

import logging
import os
import posixpath
from pathlib import Path
from typing import Union

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


def clean_path(path: str) -> str:
    """
    Collapse a URL path into a rooted, clean path.

    Examples:
        ""             → "/"
        "a/../b"       → "/b"
        "//x/./y/"     → "/x/y"
        "/../../etc"   → "/etc"
    """
    cleaned = posixpath.normpath("/" + path)
    # normpath keeps a leading "//" (POSIX allows it); URLs do not.
    return "/" + cleaned.lstrip("/")


class FileTree:
    """
    A directory exposed by clean rooted paths, in the manner of a static
    file system: open-or-fail plus stat for modification time and the
    directory flag.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def __repr__(self) -> str:
        return f"FileTree({str(self.root)!r})"

    def _full_path(self, path: str) -> Path:
        try:
            full = (self.root / clean_path(path).lstrip("/")).resolve()
        except ValueError:
            # embedded NUL byte
            raise FileNotFoundError(path)
        if full != self.root and not full.is_relative_to(self.root):
            raise FileNotFoundError(path)
        return full

    async def stat(self, path: str) -> os.stat_result:
        """Stat a path. Raises FileNotFoundError when absent or outside the tree."""
        return await aiofiles.os.stat(self._full_path(path))

    async def locate(self, path: str) -> Path:
        """
        Return the absolute path of a regular file.

        Raises:
            FileNotFoundError:  nothing at this path
            IsADirectoryError:  the path is a directory
        """
        full = self._full_path(path)
        if await aiofiles.os.path.isdir(full):
            raise IsADirectoryError(path)
        if not await aiofiles.os.path.exists(full):
            raise FileNotFoundError(path)
        return full

    async def read_text(self, path: str) -> str:
        """Read a file as UTF-8 text."""
        full = await self.locate(path)
        async with aiofiles.open(full, "r", encoding="utf-8") as f:
            return await f.read()
