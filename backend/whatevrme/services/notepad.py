"""
WhatevrMe Site — Note Store (NotePad)
=======================================

What:  Notes stored in a folder, each note a gzip-compressed JSON document.
How:   Note ids map to a sharded path `<a>/<b>/<id>` (first and second
       character), so no single directory grows without bound. Writes go
       to a temporary file beside the target and are swapped in with
       os.replace(), so a reader sees either the old or the new note.
Who:   Used by the API routes (read/write/delete) and by the dispatcher's
       shortlink probe (exists).

Directory Structure:
    var/data/
    └── a/
        └── B/
            └── aBcD3f...   (gzip of {"timestamp": ..., "cipher_text": ...})
"""

import gzip
import logging
import os
import re
import secrets
import uuid
from pathlib import Path
from typing import Union

import aiofiles
import aiofiles.os
from pydantic import ValidationError as PydanticValidationError

from whatevrme.exceptions import InvalidNoteIDError, NotFoundError, NoteStoreError
from whatevrme.schemas.note import Note

logger = logging.getLogger(__name__)

NOTE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
NOTE_ID_MIN_LENGTH = 4

# 32 random bytes → 43 url-safe base64 characters
NOTE_ID_BYTES = 32

NOTE_DIR_MODE = 0o700
NOTE_FILE_MODE = 0o600


def _private_opener(path: Union[str, Path], flags: int) -> int:
    """`open()` opener creating files readable by the owner only."""
    return os.open(path, flags, NOTE_FILE_MODE)


def new_note_id() -> str:
    """Return a fresh note id (unpadded url-safe base64 of random bytes)."""
    return secrets.token_urlsafe(NOTE_ID_BYTES)


def check_valid_note_id(note_id: str) -> None:
    """
    Check an id for valid characters and length.

    Raises:
        InvalidNoteIDError: id has characters outside [A-Za-z0-9_-] or is
                            shorter than NOTE_ID_MIN_LENGTH.
    """
    if not NOTE_ID_PATTERN.fullmatch(note_id):
        raise InvalidNoteIDError(note_id, "invalid characters in note id")
    if len(note_id) < NOTE_ID_MIN_LENGTH:
        raise InvalidNoteIDError(note_id, "note id is too short")


def note_id_to_path(note_id: str) -> str:
    """Return the sharded relative path for a note id, e.g. 'a/B/aBcD'."""
    check_valid_note_id(note_id)
    return f"{note_id[0]}/{note_id[1]}/{note_id}"


class NotePad:
    """
    A bunch of notes stored in a folder.

    Every operation validates the id first, so an invalid id never reaches
    the filesystem.
    """

    def __init__(self, store_dir: Union[str, Path]):
        self.store_dir = Path(store_dir).resolve()
        self.store_dir.mkdir(parents=True, exist_ok=True)
        logger.info("NotePad initialized with store_dir=%s", self.store_dir)

    def _path(self, note_id: str) -> Path:
        return self.store_dir / note_id_to_path(note_id)

    async def exists(self, note_id: str) -> bool:
        """True if a note with this id exists on disk. Invalid ids → False."""
        try:
            path = self._path(note_id)
        except InvalidNoteIDError:
            return False
        return await aiofiles.os.path.isfile(path)

    async def read_raw(self, note_id: str) -> bytes:
        """
        Return the stored bytes of a note verbatim (still gzip-compressed).

        Raises:
            NotFoundError:  id is invalid or no such note exists
            NoteStoreError: the file exists but could not be read
        """
        try:
            path = self._path(note_id)
        except InvalidNoteIDError as e:
            raise NotFoundError(resource="note", resource_id=note_id, context={"reason": e.message})

        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise NotFoundError(resource="note", resource_id=note_id)
        except OSError as e:
            logger.error("Failed to read note %s: %s", note_id, str(e))
            raise NoteStoreError(
                message=f"reading note failed: {e}",
                context={"note_id": note_id, "os_error": str(e)},
                public_message="error getting note",
            )

    async def read_note(self, note_id: str) -> Note:
        """Read and decode a note."""
        raw = await self.read_raw(note_id)
        try:
            return Note.model_validate_json(gzip.decompress(raw))
        except (OSError, EOFError, PydanticValidationError) as e:
            raise NoteStoreError(
                message=f"decoding stored note failed: {e}",
                context={"note_id": note_id},
                public_message="error getting note",
            )

    async def write_note(self, note_id: str, note: Note) -> None:
        """
        Write the JSON form of a note, gzipped, to its sharded path.

        How:
            1. Validate the id (raises InvalidNoteIDError)
            2. Create the shard directories (mode 0700)
            3. Write gzip bytes to a temporary sibling file (mode 0600)
            4. os.replace() it over the target (create-or-replace)
        """
        path = self._path(note_id)
        payload = gzip.compress(note.model_dump_json().encode("utf-8") + b"\n")
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")

        try:
            # makedirs applies the mode to the leaf only; create each shard level
            for shard in (path.parent.parent, path.parent):
                await aiofiles.os.makedirs(shard, mode=NOTE_DIR_MODE, exist_ok=True)
            # "x": fails if the temp name already exists
            async with aiofiles.open(tmp_path, "xb", opener=_private_opener) as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            logger.error("Failed to write note %s: %s", note_id, str(e))
            try:
                await aiofiles.os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise NoteStoreError(
                message=f"writing note failed: {e}",
                context={"note_id": note_id, "os_error": str(e)},
                public_message="error writing",
            )

        logger.debug("Note written: %s (%d bytes)", note_id, len(payload))

    async def delete(self, note_id: str) -> None:
        """
        Remove a note.

        Raises:
            NotFoundError:  no such note
            NoteStoreError: removal failed
        """
        path = self._path(note_id)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise NotFoundError(resource="note", resource_id=note_id)
        except OSError as e:
            logger.error("Failed to delete note %s: %s", note_id, str(e))
            raise NoteStoreError(
                message=f"deleting note failed: {e}",
                context={"note_id": note_id, "os_error": str(e)},
            )

        logger.info("Note deleted: %s", note_id)
