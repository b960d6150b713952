"""
Obstacle-avoiding orthogonal edge router.

Constrained multi-candidate search rather than a full graph search:

1. Stubs leave each anchor perpendicular to its node boundary
2. Z-shaped candidates through the midpoint of the stubs
3. Sky / ground candidates passing above or below every group in the corridor
4. Left / right candidates passing beside a group that sits on the midline
5. Outward detours extending past a stub, for anchors facing away from each other
6. Every candidate is scored (length, backtracking, group crossings, overlap
   with already placed edges) and the cheapest crossing-free one wins

The winner is normalized, rendered as a rounded SVG path, and given a
default label anchor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from troads_canvas.editing import EdgeSnapshot, EditConfig, reconcile_manual_path
from troads_canvas.geometry import (
    finalize_points,
    is_valid_point,
    label_anchor,
    lane_offset,
    path_length,
    points_to_path,
    segment_length_inside,
    segment_overlap_length,
)
from troads_canvas.layout import LayoutConfig, group_rects, node_rect
from troads_canvas.models import CanvasNode, Edge, Point, Rect, Side, index_nodes

logger = logging.getLogger(__name__)


@dataclass
class RouterConfig:
    """Tuning values for candidate generation and scoring."""
    stub_length: float = 20
    corridor_padding: float = 25      # Obstacle margin when looking for detours
    collision_padding: float = 10     # Obstacle margin when scoring crossings
    side_margin: float = 20           # Left/right detour distance past a padded obstacle
    sky_margin: float = 30            # Sky/ground distance past the padded corridor extremes
    lane_spread: int = 10

    # Outward detour distance past the stub; floored at min_detour_offset
    default_offset: float = 30
    min_detour_offset: float = 20

    # Scoring
    length_weight: float = 1
    backtrack_penalty: float = 5000
    backtrack_dot: float = -0.1
    crossing_penalty: float = 20000   # Per segment hitting a group
    crossing_length_penalty: float = 1000   # Per unit of length inside a group
    overlap_weight: float = 50
    overlap_min_length: float = 10

    corner_radius: float = 8


@dataclass
class PathCandidate:
    kind: str
    points: list[Point]
    cost: float = 0.0
    crossings: int = 0


@dataclass(frozen=True)
class RoutedEdge:
    """A renderable route: cleaned points, SVG path and default label anchor."""
    points: tuple[Point, ...] = ()
    path: str = ""
    label_x: float = 0.0
    label_y: float = 0.0
    cost: float = 0.0
    kind: str = "none"

    @property
    def is_empty(self) -> bool:
        return not self.path

    def to_dict(self) -> dict:
        return {
            "points": [p.to_dict() for p in self.points],
            "path": self.path,
            "label": {"x": self.label_x, "y": self.label_y},
            "kind": self.kind,
        }


EMPTY_ROUTE = RoutedEdge()


# ---------------------------------------------------------------------------
# Candidate generation
# ---------------------------------------------------------------------------

def default_target_side(source_side: Side) -> Side:
    return Side.LEFT if source_side is Side.RIGHT else Side.RIGHT


def generate_candidates(
    start: Point,
    source_side: Side,
    end: Point,
    target_side: Side,
    obstacles: Sequence[Rect] = (),
    offset: float = 30,
    lane: float = 0,
    config: Optional[RouterConfig] = None,
) -> list[PathCandidate]:
    """All candidate polylines, in generation order (which is the tie-break order)."""
    cfg = config or RouterConfig()
    sdx, sdy = source_side.vector
    tdx, tdy = target_side.vector

    buf_s = Point(start.x + sdx * cfg.stub_length, start.y + sdy * cfg.stub_length)
    buf_t = Point(end.x + tdx * cfg.stub_length, end.y + tdy * cfg.stub_length)

    mid_x = (buf_s.x + buf_t.x) / 2 + lane
    mid_y = (buf_s.y + buf_t.y) / 2 + lane

    x_lines: list[tuple[str, float]] = [("direct", mid_x)]
    y_lines: list[tuple[str, float]] = []

    x_min, x_max = sorted((buf_s.x, buf_t.x))
    y_min, y_max = sorted((buf_s.y, buf_t.y))
    min_top = float("inf")
    max_bottom = float("-inf")
    for obstacle in obstacles:
        rect = obstacle.expanded(cfg.corridor_padding)
        if rect.right > x_min and rect.left < x_max:
            min_top = min(min_top, rect.top)
            max_bottom = max(max_bottom, rect.bottom)
        if rect.bottom > y_min and rect.top < y_max and rect.left < mid_x < rect.right:
            x_lines.append(("side", rect.left - cfg.side_margin))
            x_lines.append(("side", rect.right + cfg.side_margin))
    if min_top != float("inf"):
        y_lines.append(("sky", min_top - cfg.sky_margin))
        y_lines.append(("ground", max_bottom + cfg.sky_margin))

    candidates: list[PathCandidate] = []
    for kind, mx in x_lines:
        candidates.append(PathCandidate(kind, [
            start, buf_s, Point(mx, buf_s.y), Point(mx, buf_t.y), buf_t, end,
        ]))

    candidates.append(PathCandidate("vertical", [
        start, buf_s, Point(buf_s.x, mid_y), Point(buf_t.x, mid_y), buf_t, end,
    ]))
    for kind, my in y_lines:
        if my == mid_y:
            continue
        candidates.append(PathCandidate(kind, [
            start, buf_s, Point(buf_s.x, my), Point(buf_t.x, my), buf_t, end,
        ]))

    reach = offset + lane
    if source_side.is_horizontal:
        for dx, base in ((sdx, buf_s.x), (tdx, buf_t.x)):
            line = base + dx * reach
            candidates.append(PathCandidate("detour", [
                start, buf_s, Point(line, buf_s.y), Point(line, buf_t.y), buf_t, end,
            ]))
    else:
        for dy, base in ((sdy, buf_s.y), (tdy, buf_t.y)):
            line = base + dy * reach
            candidates.append(PathCandidate("detour", [
                start, buf_s, Point(buf_s.x, line), Point(buf_t.x, line), buf_t, end,
            ]))
    return candidates


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def _segment_hits(p1: Point, p2: Point, rect: Rect) -> bool:
    return not (
        max(p1.x, p2.x) < rect.left or min(p1.x, p2.x) > rect.right
        or max(p1.y, p2.y) < rect.top or min(p1.y, p2.y) > rect.bottom
    )


def score_candidate(
    candidate: PathCandidate,
    source_side: Side,
    obstacles: Sequence[Rect] = (),
    placed: Sequence[Sequence[Point]] = (),
    config: Optional[RouterConfig] = None,
) -> PathCandidate:
    """Fill in ``cost`` and ``crossings`` on *candidate* and return it."""
    cfg = config or RouterConfig()
    pts = candidate.points
    cost = path_length(pts) * cfg.length_weight

    if len(pts) > 3:
        sdx, sdy = source_side.vector
        dot = sdx * (pts[2].x - pts[1].x) + sdy * (pts[2].y - pts[1].y)
        if dot < cfg.backtrack_dot:
            cost += cfg.backtrack_penalty

    crossings = 0
    inside = 0.0
    rects = [o.expanded(cfg.collision_padding) for o in obstacles]
    for p1, p2 in zip(pts, pts[1:]):
        for rect in rects:
            if _segment_hits(p1, p2, rect):
                crossings += 1
                inside += segment_length_inside(p1, p2, rect)
    cost += crossings * cfg.crossing_penalty + inside * cfg.crossing_length_penalty

    overlap = 0.0
    for p1, p2 in zip(pts, pts[1:]):
        for other in placed:
            for q1, q2 in zip(other, other[1:]):
                shared = segment_overlap_length(p1, p2, q1, q2)
                if shared > cfg.overlap_min_length:
                    overlap += shared
    cost += overlap * cfg.overlap_weight

    candidate.cost = cost
    candidate.crossings = crossings
    return candidate


def _select(candidates: list[PathCandidate]) -> PathCandidate:
    # Crossing-free candidates always beat crossing ones; then cost; then generation order
    best_index = min(
        range(len(candidates)),
        key=lambda i: (candidates[i].crossings > 0, candidates[i].cost, i),
    )
    return candidates[best_index]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def finish_route(
    points: Sequence[Optional[Point]],
    kind: str,
    cost: Optional[float] = None,
    config: Optional[RouterConfig] = None,
) -> RoutedEdge:
    """Normalize a raw polyline and derive its path string and label anchor."""
    cfg = config or RouterConfig()
    clean = finalize_points(points)
    path = points_to_path(clean, cfg.corner_radius)
    if not path:
        return EMPTY_ROUTE
    lx, ly = label_anchor(clean)
    return RoutedEdge(
        points=tuple(clean),
        path=path,
        label_x=lx,
        label_y=ly,
        cost=path_length(clean) if cost is None else cost,
        kind=kind,
    )


def route_edge(
    source: Point,
    source_side: Side,
    target: Point,
    target_side: Optional[Side] = None,
    *,
    obstacles: Sequence[Rect] = (),
    placed: Sequence[Sequence[Point]] = (),
    edge_id: Optional[str] = None,
    offset: Optional[float] = None,
    config: Optional[RouterConfig] = None,
) -> RoutedEdge:
    """Route one edge between two anchors.

    Args:
        source: Source anchor in canvas coordinates.
        source_side: Side the source anchor faces.
        target: Target anchor in canvas coordinates.
        target_side: Side the target anchor faces; defaults to facing back
            toward a horizontal source.
        obstacles: Group rectangles to avoid (unpadded).
        placed: Polylines of edges routed earlier in the same pass.
        edge_id: Seeds the per-edge lane jitter.
        offset: Outward detour distance, floored at ``min_detour_offset``.

    Returns:
        The chosen route, or an empty route if an anchor is not finite.
    """
    cfg = config or RouterConfig()
    if not is_valid_point(source) or not is_valid_point(target):
        return EMPTY_ROUTE

    target_side = target_side or default_target_side(source_side)
    reach = max(cfg.min_detour_offset, cfg.default_offset if offset is None else offset)
    lane = lane_offset(edge_id, cfg.lane_spread)

    candidates = generate_candidates(
        source, source_side, target, target_side, obstacles, reach, lane, cfg,
    )
    for candidate in candidates:
        score_candidate(candidate, source_side, obstacles, placed, cfg)
    best = _select(candidates)
    if best.crossings:
        logger.debug(
            "No crossing-free route for edge %s; using %s (cost %.0f)",
            edge_id, best.kind, best.cost,
        )
    return finish_route(best.points, best.kind, best.cost, cfg)


def anchor_point(
    node: CanvasNode,
    side: Side,
    by_id: dict[str, CanvasNode],
    layout_config: Optional[LayoutConfig] = None,
) -> Point:
    """Midpoint of *side* on the node's absolute rectangle."""
    rect = node_rect(node, by_id, layout_config)
    if side is Side.LEFT:
        return Point(rect.left, rect.cy)
    if side is Side.RIGHT:
        return Point(rect.right, rect.cy)
    if side is Side.TOP:
        return Point(rect.cx, rect.top)
    return Point(rect.cx, rect.bottom)


def route_canvas_edges(
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    *,
    config: Optional[RouterConfig] = None,
    layout_config: Optional[LayoutConfig] = None,
    edit_config: Optional[EditConfig] = None,
    history: Optional[dict[str, EdgeSnapshot]] = None,
) -> tuple[dict[str, RoutedEdge], dict[str, EdgeSnapshot]]:
    """Route every edge of a canvas in collection order.

    Manual edges go through the reconciler using the snapshot recorded at
    the previous pass; automatic edges are routed around every group and
    penalized for overlapping edges placed before them. Edges with a
    missing endpoint get no route.

    Returns:
        ``(routes, history)``; feed *history* back into the next call.
    """
    cfg = config or RouterConfig()
    history = history or {}
    by_id = index_nodes(nodes)
    obstacles = group_rects(nodes, layout_config)

    routes: dict[str, RoutedEdge] = {}
    new_history: dict[str, EdgeSnapshot] = {}
    placed: list[tuple[Point, ...]] = []

    for edge in edges:
        source = by_id.get(edge.source)
        target = by_id.get(edge.target)
        if source is None or target is None:
            logger.debug("Edge %s has a missing endpoint; not routed", edge.id)
            continue
        start = anchor_point(source, edge.source_side, by_id, layout_config)
        end = anchor_point(target, edge.target_side, by_id, layout_config)
        if not start.is_finite or not end.is_finite:
            logger.debug("Edge %s has an endpoint without a position", edge.id)
            routes[edge.id] = EMPTY_ROUTE
            continue

        if edge.is_manual:
            raw = reconcile_manual_path(
                start, edge.source_side, end, edge.target_side,
                edge.waypoints, history.get(edge.id), edit_config,
            )
            route = finish_route(raw, "manual", config=cfg)
        else:
            route = route_edge(
                start, edge.source_side, end, edge.target_side,
                obstacles=obstacles, placed=placed, edge_id=edge.id,
                offset=edge.offset, config=cfg,
            )

        routes[edge.id] = route
        new_history[edge.id] = EdgeSnapshot(start, end, edge.waypoints)
        if route.points:
            placed.append(route.points)

    return routes, new_history
