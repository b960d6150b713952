"""
Geometry kernel for the canvas.

Pure functions over points, axis-aligned segments and rectangles:
- Segment/rectangle clipping and overlap measures used by the edge router
- Deterministic string hashing for per-edge lane jitter
- Orthogonal polyline normalization (snap, dedupe, merge collinear, add corners)
- Rounded SVG path rendering and label anchor placement

Nothing here raises on bad coordinates: non-finite or missing points are
filtered out and the neutral result (empty list, empty path, origin) is
returned instead.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence

from troads_canvas.models import Point, Rect


# Coordinates closer than this snap onto the previous point's line
SNAP_EPSILON = 1.0
# Points closer than this on both axes are duplicates
DUPLICATE_EPSILON = 0.1
# Two parallel segments further apart than this never overlap
OVERLAP_LINE_TOLERANCE = 5.0


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

def is_valid_point(p: Optional[Point]) -> bool:
    return p is not None and isinstance(p, Point) and p.is_finite


def valid_points(points: Optional[Iterable[Optional[Point]]]) -> list[Point]:
    """Drop missing and non-finite points."""
    if not points:
        return []
    return [p for p in points if is_valid_point(p)]


def manhattan(a: Point, b: Point) -> float:
    return abs(a.x - b.x) + abs(a.y - b.y)


def path_length(points: Sequence[Point]) -> float:
    return sum(manhattan(points[i], points[i + 1]) for i in range(len(points) - 1))


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def deterministic_hash(text: str) -> int:
    """Hash a string to a signed 32-bit integer (``h * 31 + c`` per code unit).

    Iterates UTF-16 code units so the value matches hashes persisted by
    other clients of the same project files.
    """
    h = 0
    raw = text.encode("utf-16-le")
    for i in range(0, len(raw), 2):
        unit = raw[i] | (raw[i + 1] << 8)
        h = _to_int32((h << 5) - h + unit)
    return h


def lane_offset(edge_id: Optional[str], spread: int = 10) -> int:
    """Small stable jitter in ``[-spread/2, spread/2)`` derived from an edge id."""
    if not edge_id or spread <= 0:
        return 0
    return abs(deterministic_hash(edge_id)) % spread - spread // 2


# ---------------------------------------------------------------------------
# Segment tests
# ---------------------------------------------------------------------------

def is_vertical(a: Point, b: Point, tolerance: float = SNAP_EPSILON) -> bool:
    return abs(a.x - b.x) < tolerance


def is_horizontal(a: Point, b: Point, tolerance: float = SNAP_EPSILON) -> bool:
    return abs(a.y - b.y) < tolerance


def segment_overlap_length(
    a1: Optional[Point], a2: Optional[Point],
    b1: Optional[Point], b2: Optional[Point],
    line_tolerance: float = OVERLAP_LINE_TOLERANCE,
) -> float:
    """Length shared by two collinear axis-aligned segments.

    Only defined for segments of the same orientation lying within
    *line_tolerance* of the same line; everything else overlaps by 0.
    """
    if not all(is_valid_point(p) for p in (a1, a2, b1, b2)):
        return 0.0
    a_vert = is_vertical(a1, a2)
    b_vert = is_vertical(b1, b2)
    if a_vert != b_vert:
        return 0.0
    if a_vert:
        if abs(a1.x - b1.x) > line_tolerance:
            return 0.0
        start = max(min(a1.y, a2.y), min(b1.y, b2.y))
        end = min(max(a1.y, a2.y), max(b1.y, b2.y))
    else:
        if abs(a1.y - b1.y) > line_tolerance:
            return 0.0
        start = max(min(a1.x, a2.x), min(b1.x, b2.x))
        end = min(max(a1.x, a2.x), max(b1.x, b2.x))
    return max(0.0, end - start)


def segments_cross(
    a1: Optional[Point], a2: Optional[Point],
    b1: Optional[Point], b2: Optional[Point],
) -> bool:
    """True when one horizontal and one vertical segment cross in their interiors."""
    if not all(is_valid_point(p) for p in (a1, a2, b1, b2)):
        return False
    a_vert = is_vertical(a1, a2)
    b_vert = is_vertical(b1, b2)
    if a_vert == b_vert:
        return False
    vert, horiz = ((a1, a2), (b1, b2)) if a_vert else ((b1, b2), (a1, a2))
    vx = vert[0].x
    vy_min, vy_max = sorted((vert[0].y, vert[1].y))
    hy = horiz[0].y
    hx_min, hx_max = sorted((horiz[0].x, horiz[1].x))
    return hx_min < vx < hx_max and vy_min < hy < vy_max


def segment_length_inside(p1: Optional[Point], p2: Optional[Point], rect: Rect) -> float:
    """Length of segment p1-p2 strictly inside *rect* (Liang-Barsky clipping).

    A segment running exactly along a border is outside.
    """
    if not is_valid_point(p1) or not is_valid_point(p2):
        return 0.0
    dx = p2.x - p1.x
    dy = p2.y - p1.y
    t0, t1 = 0.0, 1.0
    for edge_p, edge_q in (
        (-dx, p1.x - rect.left),
        (dx, rect.right - p1.x),
        (-dy, p1.y - rect.top),
        (dy, rect.bottom - p1.y),
    ):
        if abs(edge_p) < 1e-9:
            if edge_q <= 0:
                return 0.0
        else:
            t = edge_q / edge_p
            if edge_p < 0:
                t0 = max(t0, t)
            else:
                t1 = min(t1, t)
    if t0 >= t1:
        return 0.0
    return (t1 - t0) * math.hypot(dx, dy)


def closest_point_on_segment(p: Point, a: Point, b: Point) -> tuple[Point, float]:
    """Project *p* onto segment a-b; return the projection and its distance."""
    cx = b.x - a.x
    cy = b.y - a.y
    len_sq = cx * cx + cy * cy
    param = -1.0
    if len_sq != 0:
        param = ((p.x - a.x) * cx + (p.y - a.y) * cy) / len_sq
    if param < 0:
        q = a
    elif param > 1:
        q = b
    else:
        q = Point(a.x + param * cx, a.y + param * cy)
    return q, math.hypot(p.x - q.x, p.y - q.y)


# ---------------------------------------------------------------------------
# Polyline normalization
# ---------------------------------------------------------------------------

def simplify_orthogonal_points(points: Optional[Iterable[Optional[Point]]]) -> list[Point]:
    """Snap near-equal coordinates, drop zero-length segments, merge collinear runs."""
    valid = valid_points(points)
    if len(valid) < 2:
        return valid

    snapped: list[Point] = [valid[0]]
    for p in valid[1:]:
        prev = snapped[-1]
        x = prev.x if abs(p.x - prev.x) < SNAP_EPSILON else p.x
        y = prev.y if abs(p.y - prev.y) < SNAP_EPSILON else p.y
        snapped.append(Point(x, y))

    unique: list[Point] = [snapped[0]]
    for i, p in enumerate(snapped[1:], start=1):
        prev = unique[-1]
        if abs(p.x - prev.x) > DUPLICATE_EPSILON or abs(p.y - prev.y) > DUPLICATE_EPSILON:
            unique.append(p)
        elif i == len(snapped) - 1:
            # keep the exact end point
            unique[-1] = p

    if len(unique) < 2:
        return valid

    merged: list[Point] = [unique[0]]
    for i in range(1, len(unique) - 1):
        prev = merged[-1]
        curr = unique[i]
        nxt = unique[i + 1]
        same_row = prev.y == curr.y == nxt.y
        same_col = prev.x == curr.x == nxt.x
        if same_row or same_col:
            continue
        merged.append(curr)
    merged.append(unique[-1])
    return merged


def orthogonalize(points: Sequence[Point]) -> list[Point]:
    """Insert an explicit corner wherever two consecutive points are not axis-aligned."""
    if not points:
        return []
    result: list[Point] = [points[0]]
    for curr, nxt in zip(points, points[1:]):
        if not is_vertical(curr, nxt) and not is_horizontal(curr, nxt):
            result.append(Point(nxt.x, curr.y))
        result.append(nxt)
    return result


def finalize_points(points: Optional[Iterable[Optional[Point]]]) -> list[Point]:
    """Full cleanup applied to every polyline before it is rendered."""
    return simplify_orthogonal_points(orthogonalize(simplify_orthogonal_points(points)))


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------

def _fmt(value: float) -> str:
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def points_to_path(points: Optional[Iterable[Optional[Point]]], radius: float = 8) -> str:
    """Render a polyline as an SVG path with rounded corners.

    The corner radius is clamped to half the length of either adjoining
    segment so short segments never overshoot.
    """
    valid = valid_points(points)
    if len(valid) < 2:
        return ""

    parts = [f"M {_fmt(valid[0].x)} {_fmt(valid[0].y)}"]
    for i in range(1, len(valid) - 1):
        p0, p1, p2 = valid[i - 1], valid[i], valid[i + 1]
        r = min(radius, manhattan(p0, p1) / 2, manhattan(p1, p2) / 2)
        if r <= 0.5:
            parts.append(f"L {_fmt(p1.x)} {_fmt(p1.y)}")
            continue
        stop_x = p1.x - _sign(p1.x - p0.x) * r
        stop_y = p1.y - _sign(p1.y - p0.y) * r
        end_x = p1.x + _sign(p2.x - p1.x) * r
        end_y = p1.y + _sign(p2.y - p1.y) * r
        parts.append(f"L {_fmt(stop_x)} {_fmt(stop_y)}")
        parts.append(f"Q {_fmt(p1.x)} {_fmt(p1.y)} {_fmt(end_x)} {_fmt(end_y)}")
    last = valid[-1]
    parts.append(f"L {_fmt(last.x)} {_fmt(last.y)}")
    return " ".join(parts)


def label_anchor(points: Optional[Iterable[Optional[Point]]]) -> tuple[float, float]:
    """Midpoint of the longest segment; ``(0, 0)`` for degenerate input."""
    valid = valid_points(points)
    if len(valid) < 2:
        return 0.0, 0.0
    best = 0
    best_len = 0.0
    for i in range(len(valid) - 1):
        seg = manhattan(valid[i], valid[i + 1])
        if seg > best_len:
            best_len = seg
            best = i
    a, b = valid[best], valid[best + 1]
    return (a.x + b.x) / 2, (a.y + b.y) / 2
