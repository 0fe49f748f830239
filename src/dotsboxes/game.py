"""Core rules for Dots & Boxes: board snapshots and deterministic move resolution."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .geometry import (
    Box,
    Edge,
    Orientation,
    adjacent_boxes,
    all_edges,
    box_count,
    box_edges,
)


class Player(str, Enum):
    FIRST = "First"
    SECOND = "Second"

    @property
    def other(self) -> "Player":
        return Player.SECOND if self is Player.FIRST else Player.FIRST


DRAW = "Draw"

Outcome = Union[Player, str]  # a Player or DRAW
Owner = Optional[Player]


def _grid(rows: int, cols: int, value: object) -> Tuple[Tuple, ...]:
    return tuple(tuple(value for _ in range(cols)) for _ in range(rows))


# ---------- State ----------


@dataclass(frozen=True)
class GameState:
    """Immutable snapshot of one match.

    ``h_lines[r][c]`` is the horizontal edge from dot (r, c) to (r, c+1);
    ``v_lines[r][c]`` the vertical edge from dot (r, c) to (r+1, c).
    ``boxes[r][c]`` is the owner of the box whose top-left dot is (r, c).
    """

    grid_size: int
    h_lines: Tuple[Tuple[bool, ...], ...]
    v_lines: Tuple[Tuple[bool, ...], ...]
    boxes: Tuple[Tuple[Owner, ...], ...]
    current_player: Player = Player.FIRST
    scores: Mapping[Player, int] = field(
        default_factory=lambda: {Player.FIRST: 0, Player.SECOND: 0}
    )
    winner: Optional[Outcome] = None
    move_count: int = 0
    move_history: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.scores, MappingProxyType):
            object.__setattr__(self, "scores", MappingProxyType(dict(self.scores)))

    def __hash__(self) -> int:
        return hash(
            (self.h_lines, self.v_lines, self.boxes, self.current_player, self.move_history)
        )

    def is_claimed(self, edge: Edge) -> bool:
        lines = self.h_lines if edge.orientation is Orientation.HORIZONTAL else self.v_lines
        return lines[edge.row][edge.col]

    @property
    def is_over(self) -> bool:
        return self.winner is not None

    def available_moves(self) -> List[Edge]:
        return [e for e in all_edges(self.grid_size) if not self.is_claimed(e)]

    def owned_boxes(self) -> int:
        return sum(1 for row in self.boxes for owner in row if owner is not None)

    def to_snapshot(self) -> Dict[str, object]:
        """JSON-friendly view handed to the rendering layer."""
        return {
            "gridSize": self.grid_size,
            "hLines": [list(row) for row in self.h_lines],
            "vLines": [list(row) for row in self.v_lines],
            "boxes": [
                [owner.value if owner else None for owner in row] for row in self.boxes
            ],
            "currentPlayer": self.current_player.value,
            "scores": {p.value: n for p, n in self.scores.items()},
            "winner": self.winner.value if isinstance(self.winner, Player) else self.winner,
            "moveCount": self.move_count,
        }


def check_grid_size(grid_size: int) -> None:
    if grid_size < 2:
        raise ValueError(f"Grid needs at least 2 dots per side, got {grid_size}")


def new_game(grid_size: int) -> GameState:
    check_grid_size(grid_size)
    return GameState(
        grid_size=grid_size,
        h_lines=_grid(grid_size, grid_size - 1, False),
        v_lines=_grid(grid_size - 1, grid_size, False),
        boxes=_grid(grid_size - 1, grid_size - 1, None),
    )


# ---------- Move resolution ----------


def apply(state: GameState, edge: Edge) -> GameState:
    """Claim ``edge`` for ``state.current_player`` and return the next snapshot.

    Claiming an edge that is already taken returns ``state`` itself. Bounds are
    not checked here; callers validate with ``geometry.edge_in_bounds``.
    """
    if state.is_claimed(edge):
        return state

    h_lines = [list(row) for row in state.h_lines]
    v_lines = [list(row) for row in state.v_lines]
    if edge.orientation is Orientation.HORIZONTAL:
        h_lines[edge.row][edge.col] = True
    else:
        v_lines[edge.row][edge.col] = True

    mover = state.current_player
    boxes = [list(row) for row in state.boxes]
    scores = dict(state.scores)
    completed = 0
    for box in adjacent_boxes(edge, state.grid_size):
        r, c = box
        if boxes[r][c] is None and _is_closed(box, h_lines, v_lines):
            boxes[r][c] = mover
            scores[mover] += 1
            completed += 1

    winner = state.winner
    if winner is None and sum(scores.values()) == box_count(state.grid_size):
        winner = _decide(scores)

    return replace(
        state,
        h_lines=tuple(tuple(row) for row in h_lines),
        v_lines=tuple(tuple(row) for row in v_lines),
        boxes=tuple(tuple(row) for row in boxes),
        # completing one or two boxes earns a single extra turn
        current_player=mover if completed else mover.other,
        scores=scores,
        winner=winner,
        move_count=state.move_count + 1,
        move_history=state.move_history + (edge.key,),
    )


def _is_closed(box: Box, h_lines: List[List[bool]], v_lines: List[List[bool]]) -> bool:
    top, bottom, left, right = box_edges(box)
    return (
        h_lines[top.row][top.col]
        and h_lines[bottom.row][bottom.col]
        and v_lines[left.row][left.col]
        and v_lines[right.row][right.col]
    )


def _decide(scores: Mapping[Player, int]) -> Outcome:
    first, second = scores[Player.FIRST], scores[Player.SECOND]
    if first == second:
        return DRAW
    return Player.FIRST if first > second else Player.SECOND
