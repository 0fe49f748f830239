"""Unit tests for edge and box addressing."""

from dotsboxes.geometry import (
    adjacent_boxes,
    all_edges,
    box_count,
    box_edges,
    edge_in_bounds,
    h,
    v,
)


def test_horizontal_edges_touch_boxes_above_and_below():
    assert adjacent_boxes(h(0, 0), 3) == [(0, 0)]
    assert adjacent_boxes(h(1, 0), 3) == [(0, 0), (1, 0)]
    assert adjacent_boxes(h(2, 1), 3) == [(1, 1)]


def test_vertical_edges_touch_boxes_left_and_right():
    assert adjacent_boxes(v(0, 0), 3) == [(0, 0)]
    assert adjacent_boxes(v(0, 1), 3) == [(0, 0), (0, 1)]
    assert adjacent_boxes(v(1, 2), 3) == [(1, 1)]


def test_box_is_bounded_by_four_edges():
    edges = box_edges((1, 0))
    assert edges.top == h(1, 0)
    assert edges.bottom == h(2, 0)
    assert edges.left == v(1, 0)
    assert edges.right == v(1, 1)


def test_bounds_differ_per_orientation():
    assert edge_in_bounds(h(2, 1), 3)
    assert not edge_in_bounds(h(2, 2), 3)
    assert edge_in_bounds(v(1, 2), 3)
    assert not edge_in_bounds(v(2, 0), 3)
    assert not edge_in_bounds(h(-1, 0), 3)


def test_every_edge_borders_a_box():
    edges = list(all_edges(4))
    assert len(edges) == 2 * 4 * 3
    assert len(set(edges)) == len(edges)
    assert all(1 <= len(adjacent_boxes(e, 4)) <= 2 for e in edges)
    assert box_count(4) == 9
