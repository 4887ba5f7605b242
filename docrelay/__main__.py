"""Entry point: ``python -m docrelay``."""

from __future__ import annotations

import sys

import structlog
import uvicorn
from pydantic import ValidationError

from .app import create_app
from .config import Settings
from .logging import setup_logging

logger = structlog.get_logger()


def main() -> None:
    try:
        settings = Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        setup_logging(json=True, level="INFO")
        logger.error(
            "invalid_configuration",
            errors=[
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        )
        sys.exit(1)

    setup_logging(json=settings.log_json, level=settings.log_level)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
