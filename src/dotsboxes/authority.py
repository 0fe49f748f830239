"""Decides whether a locally originated move may be submitted."""

from __future__ import annotations

from .game import GameState
from .protocol import Mode, SessionConfig


def may_move(config: SessionConfig, state: GameState) -> bool:
    """Offline both players share one input, online only the player on turn may move.

    Moves received from the peer are never passed through here.
    """
    if config.mode is Mode.OFFLINE:
        return True
    return config.local_player is state.current_player
