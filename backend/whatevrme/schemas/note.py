"""
WhatevrMe Site — Pydantic Note Schemas
========================================

What:  Pydantic models defining the note payload and API responses.
How:   The API decodes request bodies into Note, the note store serializes
       Note to gzip-compressed JSON, and NoteCreated is the body of
       create/update responses.

JSON shape of a note:
    {"timestamp": <float, ms since epoch>, "cipher_text": <base64 string>}

cipher_text is opaque to the server: the browser encrypts before sending,
so the raw bytes are carried through standard (padded) base64 unchanged.
"""

import base64
import binascii
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator


class Note(BaseModel):
    """
    What:  One stored note.
    Who:   Decoded from POST/PUT bodies; persisted by NotePad.

    cipher_text may be null: an empty note is sent that way by the client.
    """

    timestamp: float = Field(default=0.0, description="Milliseconds since the epoch")
    cipher_text: Optional[bytes] = Field(
        default=None,
        description="Raw cipher text, base64 encoded in JSON",
    )

    @field_validator("cipher_text", mode="before")
    @classmethod
    def decode_cipher_text(cls, v: Any) -> Optional[bytes]:
        """Accept a base64 string (JSON) or raw bytes (Python callers)."""
        if v is None or isinstance(v, (bytes, bytearray)):
            return v
        if isinstance(v, str):
            try:
                return base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"cipher_text is not valid base64: {e}") from e
        raise ValueError("cipher_text must be a base64 string")

    @field_serializer("cipher_text", when_used="json")
    def encode_cipher_text(self, v: Optional[bytes]) -> Optional[str]:
        if v is None:
            return None
        return base64.b64encode(v).decode("ascii")


class NoteCreated(BaseModel):
    """Body of POST /api/note (201) and POST|PUT /api/note/{id} (200)."""

    id: str = Field(description="Note identifier")
