"""
WhatevrMe Site — Application Configuration
============================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads WHATEVRME_* environment variables (or a .env
       file), validates types/ranges, and provides a singleton `settings`.
Who:   Imported by the app factory and the `python -m whatevrme` entry point.
When:  Loaded once at module import time; the base directory is resolved
       when the application is created.

Directory layout below the base directory:
    <base_dir>/
    ├── views/      page templates, one per URL path
    ├── includes/   named partials referenced from views
    ├── static/     assets served as-is
    └── var/data/   note store
"""

from pathlib import Path
from typing import Sequence

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from whatevrme.exceptions import ConfigurationError

# Candidate base directories tried, in order, when none is configured.
BASE_DIR_CANDIDATES = (".", "backend", "/usr/local/whatevrme")


class Settings(BaseSettings):
    """
    Site settings loaded from environment variables.

    All settings have sensible defaults for development; an empty base_dir
    means "auto-detect" (see resolve_base_dir).
    """

    # ── Site Layout ───────────────────────────────────────────────────────
    base_dir: str = Field(
        default="",
        description="Directory of views, includes, static and var; empty to auto-detect",
    )

    # View the shortlink probe rewrites an existing note id to
    note_view: str = Field(default="/note.html")

    # View served for the bare root path
    index_view: str = Field(default="/index.html")

    # ── Server ────────────────────────────────────────────────────────────
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8880, ge=1, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("note_view", "index_view")
    @classmethod
    def validate_view_path(cls, v: str) -> str:
        """View names are rooted paths."""
        return "/" + v.lstrip("/")

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_prefix": "WHATEVRME_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    def resolve_base_dir(self, candidates: Sequence[str] = BASE_DIR_CANDIDATES) -> Path:
        """
        Return the absolute base directory.

        What:    Uses base_dir when set; otherwise the first candidate that
                 contains a `views` directory.
        Raises:  ConfigurationError when nothing matches.
        """
        if self.base_dir:
            return Path(self.base_dir).expanduser().resolve()

        for candidate in candidates:
            path = Path(candidate).resolve()
            if (path / "views").is_dir():
                return path

        raise ConfigurationError(
            message="Unable to detect basedir, please specify it (WHATEVRME_BASE_DIR).",
            context={"tried": list(candidates)},
        )


def views_dir(base_dir: Path) -> Path:
    return base_dir / "views"


def includes_dir(base_dir: Path) -> Path:
    return base_dir / "includes"


def static_dir(base_dir: Path) -> Path:
    return base_dir / "static"


def data_dir(base_dir: Path) -> Path:
    return base_dir / "var" / "data"


# Singleton instance, imported throughout the application
settings = Settings()
