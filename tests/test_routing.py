"""Tests for the obstacle-avoiding edge router."""

import math

import pytest

from troads_canvas.editing import EdgeSnapshot
from troads_canvas.geometry import path_length
from troads_canvas.layout import compact_group
from troads_canvas.models import CanvasNode, Edge, NodeKind, Point, Rect, Side
from troads_canvas.routing import (
    EMPTY_ROUTE,
    PathCandidate,
    RouterConfig,
    anchor_point,
    default_target_side,
    generate_candidates,
    route_canvas_edges,
    route_edge,
    score_candidate,
)


BLOCKER = Rect(150, 250, 0, 200)


class TestCandidates:
    def test_direct_comes_first(self) -> None:
        cands = generate_candidates(Point(0, 100), Side.RIGHT, Point(200, 100), Side.LEFT)
        assert cands[0].kind == "direct"
        assert cands[0].points[0] == Point(0, 100)
        assert cands[0].points[1] == Point(20, 100)
        assert cands[0].points[-2] == Point(180, 100)

    def test_obstacle_adds_side_and_sky_ground_lines(self) -> None:
        cands = generate_candidates(
            Point(0, 100), Side.RIGHT, Point(400, 100), Side.LEFT, [BLOCKER],
        )
        kinds = [c.kind for c in cands]
        assert kinds == ["direct", "side", "side", "vertical", "sky", "ground", "detour", "detour"]
        sky = cands[kinds.index("sky")]
        assert sky.points[2].y == -55
        ground = cands[kinds.index("ground")]
        assert ground.points[2].y == 255

    def test_detours_follow_vertical_source_axis(self) -> None:
        cands = generate_candidates(Point(0, 0), Side.BOTTOM, Point(100, 200), Side.TOP)
        detours = [c for c in cands if c.kind == "detour"]
        assert len(detours) == 2
        # Outward past the source stub (down) and past the target stub (up)
        assert detours[0].points[2].y == 20 + 30
        assert detours[1].points[2].y == 180 - 30

    def test_default_target_side(self) -> None:
        assert default_target_side(Side.RIGHT) is Side.LEFT
        assert default_target_side(Side.LEFT) is Side.RIGHT


class TestScoring:
    def test_length_only(self) -> None:
        cand = PathCandidate("direct", [Point(0, 0), Point(20, 0), Point(100, 0)])
        score_candidate(cand, Side.RIGHT)
        assert cand.cost == 100
        assert cand.crossings == 0

    def test_backtrack_penalty(self) -> None:
        cand = PathCandidate("x", [
            Point(0, 0), Point(20, 0), Point(-40, 0), Point(-40, 50),
        ])
        score_candidate(cand, Side.RIGHT)
        assert cand.cost == path_length(cand.points) + 5000

    def test_crossing_penalty(self) -> None:
        cand = PathCandidate("x", [Point(0, 100), Point(400, 100)])
        score_candidate(cand, Side.RIGHT, [BLOCKER])
        assert cand.crossings == 1
        # 120 units inside the 10-padded rectangle
        assert cand.cost == pytest.approx(400 + 20000 + 120 * 1000)

    def test_overlap_with_placed_edges(self) -> None:
        cand = PathCandidate("x", [Point(0, 0), Point(100, 0)])
        score_candidate(cand, Side.RIGHT, placed=[(Point(50, 2), Point(150, 2))])
        assert cand.cost == 100 + 50 * 50

    def test_short_overlap_ignored(self) -> None:
        cand = PathCandidate("x", [Point(0, 0), Point(100, 0)])
        score_candidate(cand, Side.RIGHT, placed=[(Point(95, 0), Point(150, 0))])
        assert cand.cost == 100


class TestRouteEdge:
    def test_collinear_picks_direct_at_manhattan_cost(self) -> None:
        route = route_edge(Point(0, 100), Side.RIGHT, Point(200, 100), Side.LEFT)
        assert route.kind == "direct"
        assert route.cost == 200
        assert route.points == (Point(0, 100), Point(200, 100))
        assert route.path == "M 0 100 L 200 100"
        assert (route.label_x, route.label_y) == (100, 100)

    def test_blocked_corridor_takes_detour(self) -> None:
        route = route_edge(
            Point(0, 100), Side.RIGHT, Point(400, 100), Side.LEFT, obstacles=[BLOCKER],
        )
        assert route.kind == "sky"
        assert route.cost == 710
        assert route.cost > 400
        assert all(p.y <= 100 for p in route.points)

    def test_never_picks_crossing_when_clear_exists(self) -> None:
        obstacles = [BLOCKER, Rect(300, 360, 60, 140)]
        for target in (Point(400, 100), Point(500, 300), Point(600, -50)):
            cands = generate_candidates(
                Point(0, 100), Side.RIGHT, target, Side.LEFT, obstacles,
            )
            scored = [score_candidate(c, Side.RIGHT, obstacles) for c in cands]
            route = route_edge(Point(0, 100), Side.RIGHT, target, Side.LEFT, obstacles=obstacles)
            if any(c.crossings == 0 for c in scored):
                clear = min(c.cost for c in scored if c.crossings == 0)
                assert route.cost == clear

    def test_default_target_side_faces_back(self) -> None:
        route = route_edge(Point(0, 100), Side.RIGHT, Point(200, 100))
        assert route.kind == "direct"

    def test_lane_jitter_is_stable(self) -> None:
        a = route_edge(Point(0, 0), Side.RIGHT, Point(300, 200), Side.LEFT, edge_id="edge-7")
        b = route_edge(Point(0, 0), Side.RIGHT, Point(300, 200), Side.LEFT, edge_id="edge-7")
        assert a == b

    def test_non_finite_anchor_gives_empty_route(self) -> None:
        route = route_edge(Point(math.nan, 0), Side.RIGHT, Point(10, 10), Side.LEFT)
        assert route is EMPTY_ROUTE
        assert route.is_empty

    def test_to_dict(self) -> None:
        data = route_edge(Point(0, 100), Side.RIGHT, Point(200, 100), Side.LEFT).to_dict()
        assert data["path"] == "M 0 100 L 200 100"
        assert data["label"] == {"x": 100, "y": 100}
        assert data["kind"] == "direct"


def _two_groups():
    nodes = (
        CanvasNode("g", NodeKind.GROUP, Point(0, 0), width=400),
        CanvasNode("a", position=Point(20, 30), width=360, height=100, parent_id="g"),
        CanvasNode("h", NodeKind.GROUP, Point(600, 0), width=400),
        CanvasNode("c", position=Point(20, 30), width=360, height=100, parent_id="h"),
    )
    return compact_group(compact_group(nodes, "g"), "h")


class TestCanvasRouting:
    def test_anchor_point_uses_absolute_rect(self) -> None:
        nodes = _two_groups()
        by_id = {n.id: n for n in nodes}
        assert anchor_point(by_id["a"], Side.RIGHT, by_id) == Point(380, 80)
        assert anchor_point(by_id["c"], Side.LEFT, by_id) == Point(620, 80)
        assert anchor_point(by_id["c"], Side.TOP, by_id) == Point(800, 30)
        assert anchor_point(by_id["c"], Side.BOTTOM, by_id) == Point(800, 130)

    def test_routes_every_edge_and_records_history(self) -> None:
        nodes = _two_groups()
        edges = (Edge("e1", "a", "c"), Edge("e2", "a", "missing"))
        routes, history = route_canvas_edges(nodes, edges)
        assert set(routes) == {"e1"}
        assert not routes["e1"].is_empty
        assert routes["e1"].points[0] == Point(380, 80)
        assert routes["e1"].points[-1] == Point(620, 80)
        assert history["e1"] == EdgeSnapshot(Point(380, 80), Point(620, 80), ())

    def test_manual_edge_bypasses_router(self) -> None:
        nodes = _two_groups()
        waypoints = (Point(500, 80), Point(500, 300), Point(550, 300), Point(550, 80))
        edges = (Edge("e1", "a", "c", waypoints=waypoints),)
        routes, _ = route_canvas_edges(nodes, edges)
        assert routes["e1"].kind == "manual"
        assert Point(500, 300) in routes["e1"].points

    def test_endpoint_without_position_gets_empty_route(self) -> None:
        nodes = (
            CanvasNode("g", NodeKind.GROUP, Point(None, 0), width=400),
            CanvasNode("a", position=Point(20, 30), parent_id="g"),
            CanvasNode("c", position=Point(600, 0), width=100, height=100),
        )
        routes, history = route_canvas_edges(nodes, (Edge("e1", "a", "c"),))
        assert routes["e1"] == EMPTY_ROUTE
        assert "e1" not in history

    def test_later_edges_avoid_earlier_ones(self) -> None:
        # Top-level leaves are not obstacles, so only overlap decides
        nodes = (
            CanvasNode("a", position=Point(0, 0), width=100, height=100),
            CanvasNode("c", position=Point(300, 200), width=100, height=100),
        )
        edges = (Edge("e1", "a", "c"), Edge("e2", "a", "c"))
        routes, _ = route_canvas_edges(nodes, edges, config=RouterConfig(lane_spread=0))
        assert routes["e1"].kind == "direct"
        assert routes["e2"].kind == "vertical"
        assert routes["e1"].points != routes["e2"].points
