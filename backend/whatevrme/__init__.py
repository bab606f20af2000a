"""
WhatevrMe Site — Application Package
======================================

What: Web pages plus a small JSON API over file-stored, client-encrypted notes.

Architecture Note:
    ┌─────────────────────────────────────┐
    │   Routes (catch-all + note API)     │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Dispatcher (routing policy)       │  ← shortlink / api / view / static
    ├─────────────────────────────────────┤
    │   Services                          │  ← template composition, note store,
    │                                     │    file trees, content types
    ├─────────────────────────────────────┤
    │   Schemas (Pydantic)                │  ← note payload
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
