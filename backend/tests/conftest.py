"""
WhatevrMe Site — Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test that needs a site gets a fresh one under tmp_path; apps
       are created with create_app(base_dir=...) and driven through
       httpx's ASGITransport (no server, no lifespan).

Fixture Hierarchy:
    site_dir      temporary base dir: views/, includes/, static/, var/data/
    notepad       NotePad over site_dir/var/data
    app           FastAPI app over site_dir
    test_client   httpx AsyncClient bound to app
    sample_note   Note payload used across tests
"""

import os
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings for testing BEFORE any app imports
os.environ["WHATEVRME_LOG_LEVEL"] = "WARNING"

from whatevrme.config import data_dir  # noqa: E402
from whatevrme.main import create_app  # noqa: E402
from whatevrme.schemas.note import Note  # noqa: E402
from whatevrme.services.notepad import NotePad  # noqa: E402


SITE_FILES = {
    "views/index.html": '{% include "header.html" %}<h1>index</h1>{% include "footer.html" %}',
    "views/note.html": (
        '{% include "header.html" %}'
        '{% if note_id %}<p id="note">{{ note_id }}</p>{% else %}<p>none</p>{% endif %}'
        '{% include "footer.html" %}'
    ),
    "views/about.html": "<p>about {{ path }}</p>",
    "views/broken.html": '{% include "missing.html" %}',
    "views/early_failure.html": "{{ 1 // nothing }}after",
    "views/docs/page.html": "<p>docs</p>",
    "views/fallbacks.html": (
        '{% include "sidebar.html" ignore missing %}'
        '{% include ["theme.html", "footer.html"] %}'
    ),
    # header.html ↔ nav.html form a cycle
    "includes/header.html": '<header>{% include "nav.html" %}</header>',
    "includes/nav.html": '<nav>{% if false %}{% include "header.html" %}{% endif %}</nav>',
    "includes/footer.html": "<footer>f</footer>",
    "static/site.css": "body { color: black; }",
    "static/app.js": "console.log('hi');",
    "static/report.csv": "a,b\n1,2\n",
    "static/about.html": "<p>static about</p>",
    "static/assets/logo.txt": "logo",
}


def write_site(base: Path, files: dict) -> Path:
    for rel, content in files.items():
        path = base / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return base


@pytest.fixture
def site_dir(tmp_path) -> Path:
    """A fresh site tree for each test."""
    base = write_site(tmp_path / "site", SITE_FILES)
    data_dir(base).mkdir(parents=True, exist_ok=True)
    return base


@pytest.fixture
def notepad(site_dir) -> NotePad:
    return NotePad(data_dir(site_dir))


@pytest.fixture
def sample_note() -> Note:
    return Note(timestamp=1000, cipher_text=b"\x00\x00")


@pytest.fixture
def app(site_dir):
    return create_app(base_dir=site_dir)


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient talking to the app in-process.

    Usage:
        async def test_index(test_client):
            response = await test_client.get("/")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
