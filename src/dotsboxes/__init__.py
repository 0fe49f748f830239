"""Dots & Boxes package exposing the rules engine, peer sessions and the web service."""

from .game import DRAW, GameState, Player, apply, new_game
from .geometry import Edge, Orientation
from .server import app
from .session import Session, SessionState

__all__ = [
    "DRAW",
    "Edge",
    "GameState",
    "Orientation",
    "Player",
    "Session",
    "SessionState",
    "apply",
    "new_game",
    "app",
]
