"""Run the site: `python -m whatevrme`."""

import uvicorn

from whatevrme.config import settings


def main() -> None:
    uvicorn.run(
        "whatevrme.main:create_app",
        factory=True,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
