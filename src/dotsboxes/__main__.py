"""Entry point for running the Dots & Boxes service via ``python -m dotsboxes``."""

from __future__ import annotations

import uvicorn

from .config import Settings, configure_logging


def main() -> None:
    """Start the FastAPI game API and rendezvous relay."""

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        "dotsboxes.server:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
