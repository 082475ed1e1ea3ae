"""CLI entrypoint for launching the FastAPI service with Uvicorn."""
from __future__ import annotations

import logging
import sys
import time

import uvicorn

from .api import create_app
from .config import Settings, get_settings

LOG_FORMAT = "[%(levelname)s] %(asctime)s %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def configure_logging(settings: Settings) -> None:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    formatter.converter = time.gmtime
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=settings.log_level.upper(), handlers=[handler], force=True)


def main() -> None:
    settings = get_settings()
    configure_logging(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        access_log=False,
    )


if __name__ == "__main__":
    main()
