"""Runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .protocol import PEER_NAMESPACE

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    peer_namespace: str = PEER_NAMESPACE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.environ.get("DOTSBOXES_HOST", cls.host),
            port=int(os.environ.get("DOTSBOXES_PORT", str(cls.port))),
            peer_namespace=os.environ.get("DOTSBOXES_PEER_NAMESPACE", cls.peer_namespace),
            log_level=os.environ.get("DOTSBOXES_LOG_LEVEL", cls.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
