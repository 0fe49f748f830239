"""Tests for environment-driven settings."""

import logging

from dotsboxes.config import Settings, configure_logging


def test_defaults_without_environment(monkeypatch):
    for name in ("HOST", "PORT", "PEER_NAMESPACE", "LOG_LEVEL"):
        monkeypatch.delenv(f"DOTSBOXES_{name}", raising=False)
    settings = Settings.from_env()
    assert settings == Settings(host="0.0.0.0", port=8000, peer_namespace="db-game", log_level="INFO")


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DOTSBOXES_PORT", "9100")
    monkeypatch.setenv("DOTSBOXES_PEER_NAMESPACE", "lan-game")
    monkeypatch.setenv("DOTSBOXES_LOG_LEVEL", "debug")
    settings = Settings.from_env()
    assert settings.port == 9100
    assert settings.peer_namespace == "lan-game"
    assert settings.log_level == "DEBUG"


def test_configure_logging_accepts_unknown_level():
    configure_logging("NOT-A-LEVEL")
    assert logging.getLogger("dotsboxes").getEffectiveLevel() <= logging.CRITICAL
