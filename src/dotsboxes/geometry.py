"""Edge and box addressing for an N x N grid of dots."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, NamedTuple, Tuple

Box = Tuple[int, int]


class Orientation(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


@dataclass(frozen=True)
class Edge:
    orientation: Orientation
    row: int
    col: int

    @property
    def key(self) -> str:
        return f"{self.orientation.value[0]}:{self.row}:{self.col}"


class BoxEdges(NamedTuple):
    top: Edge
    bottom: Edge
    left: Edge
    right: Edge


def h(row: int, col: int) -> Edge:
    return Edge(Orientation.HORIZONTAL, row, col)


def v(row: int, col: int) -> Edge:
    return Edge(Orientation.VERTICAL, row, col)


def box_count(grid_size: int) -> int:
    return (grid_size - 1) ** 2


def edge_in_bounds(edge: Edge, grid_size: int) -> bool:
    """Horizontal edges span ``N x (N-1)``, vertical edges ``(N-1) x N``."""
    if edge.orientation is Orientation.HORIZONTAL:
        rows, cols = grid_size, grid_size - 1
    else:
        rows, cols = grid_size - 1, grid_size
    return 0 <= edge.row < rows and 0 <= edge.col < cols


def all_edges(grid_size: int) -> Iterator[Edge]:
    for r in range(grid_size):
        for c in range(grid_size - 1):
            yield h(r, c)
    for r in range(grid_size - 1):
        for c in range(grid_size):
            yield v(r, c)


def adjacent_boxes(edge: Edge, grid_size: int) -> List[Box]:
    """Boxes touched by ``edge``: above/below for horizontal, left/right for vertical."""
    r, c = edge.row, edge.col
    boxes: List[Box] = []
    if edge.orientation is Orientation.HORIZONTAL:
        if r > 0:
            boxes.append((r - 1, c))
        if r < grid_size - 1:
            boxes.append((r, c))
    else:
        if c > 0:
            boxes.append((r, c - 1))
        if c < grid_size - 1:
            boxes.append((r, c))
    return boxes


def box_edges(box: Box) -> BoxEdges:
    r, c = box
    return BoxEdges(top=h(r, c), bottom=h(r + 1, c), left=v(r, c), right=v(r, c + 1))
