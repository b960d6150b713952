"""Tests for the canvas data model."""

import math

from troads_canvas.models import (
    Canvas,
    CanvasNode,
    Edge,
    EdgeLabel,
    NodeKind,
    Point,
    Rect,
    Side,
    Viewport,
    children_of,
    index_nodes,
    new_id,
)


def test_side_vectors_and_opposites() -> None:
    assert Side.RIGHT.vector == (1.0, 0.0)
    assert Side.TOP.vector == (0.0, -1.0)
    assert Side.LEFT.opposite is Side.RIGHT
    assert Side.BOTTOM.opposite is Side.TOP
    assert Side.LEFT.is_horizontal
    assert not Side.TOP.is_horizontal


def test_point_finite() -> None:
    assert Point(1, 2).is_finite
    assert not Point(math.nan, 2).is_finite
    assert not Point(1, math.inf).is_finite
    assert Point(1, 2).shifted(3, -1) == Point(4, 1)


def test_rect_from_bounds_with_padding() -> None:
    r = Rect.from_bounds(10, 20, 100, 50, padding=5)
    assert (r.left, r.right, r.top, r.bottom) == (5, 115, 15, 75)
    assert r.width == 110
    assert r.cx == 60


def test_rect_containment_is_strict() -> None:
    r = Rect(0, 100, 0, 100)
    assert r.contains_point(50, 50)
    assert not r.contains_point(100, 50)
    assert not r.contains_point(0, 0)


def test_rect_intersects_touching() -> None:
    a = Rect(0, 100, 0, 100)
    assert a.intersects(Rect(100, 200, 0, 100))
    assert not a.intersects(Rect(101, 200, 0, 100))


class TestCanvasNode:
    def test_defaults(self) -> None:
        n = CanvasNode("n1")
        assert n.kind is NodeKind.LEAF
        assert not n.is_group
        assert n.position == Point(0, 0)

    def test_dict_round_trip(self) -> None:
        n = CanvasNode(
            "n1", position=Point(20, 145.5), width=360, measured_height=88,
            parent_id="g1", is_last=True, question="Why?", answer="Because.",
        )
        assert CanvasNode.from_dict(n.to_dict()) == n

    def test_to_dict_omits_unset_fields(self) -> None:
        data = CanvasNode("g", NodeKind.GROUP).to_dict()
        assert data == {"id": "g", "kind": "group", "position": {"x": 0, "y": 0}}


class TestEdge:
    def test_manual_flag(self) -> None:
        e = Edge("e1", "a", "b")
        assert not e.is_manual
        assert e.with_waypoints([Point(1, 2)]).is_manual

    def test_touches(self) -> None:
        e = Edge("e1", "a", "b")
        assert e.touches("a") and e.touches("b")
        assert not e.touches("c")

    def test_dict_round_trip_with_labels(self) -> None:
        e = Edge(
            "e1", "a", "b", Side.BOTTOM, Side.TOP,
            waypoints=(Point(10, 20), Point(10, 40)),
            labels=(EdgeLabel("l1", "why", Point(3, -4), Point(50, 60), snapped=True),),
        )
        assert Edge.from_dict(e.to_dict()) == e


def test_viewport_round_trip() -> None:
    v = Viewport(-120, 40, 0.75)
    assert Viewport.from_dict(v.to_dict()) == v


def test_canvas_defaults() -> None:
    c = Canvas("c")
    assert c.nodes == () and c.edges == ()
    assert c.next_y == 50
    assert c.edge_history == {}


def test_helpers() -> None:
    nodes = (
        CanvasNode("g", NodeKind.GROUP),
        CanvasNode("a", parent_id="g"),
        CanvasNode("b", parent_id="g"),
        CanvasNode("c"),
    )
    assert set(index_nodes(nodes)) == {"g", "a", "b", "c"}
    assert [n.id for n in children_of(nodes, "g")] == ["a", "b"]
    assert new_id() != new_id()
