"""
Manual edge editing.

Keeps user-placed waypoints attached and orthogonal while the anchors they
hang from move, and implements the segment-drag gesture that produces
those waypoints in the first place.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Protocol, Sequence

from troads_canvas.geometry import (
    is_horizontal,
    is_valid_point,
    is_vertical,
    simplify_orthogonal_points,
    valid_points,
)
from troads_canvas.models import Point, Side

logger = logging.getLogger(__name__)


@dataclass
class EditConfig:
    """Tolerances for manual path repair and segment dragging."""
    repair_threshold: float = 3       # Max misalignment before an end segment is repaired
    stub_length: float = 20
    move_tolerance: float = 0.1       # Anchor displacement that counts as a node move
    propagation_threshold: float = 3  # Collinearity tolerance for dragging a whole run
    snap_threshold: float = 12        # Screen pixels; divided by zoom


@dataclass(frozen=True)
class EdgeSnapshot:
    """Anchors and waypoints of an edge as seen at the previous routing pass."""
    source: Point
    target: Point
    waypoints: tuple[Point, ...] = ()


class Orientation(Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


def segment_orientation(a: Point, b: Point) -> Orientation:
    return Orientation.HORIZONTAL if is_horizontal(a, b) else Orientation.VERTICAL


# ---------------------------------------------------------------------------
# Head / tail repair
# ---------------------------------------------------------------------------

def _moved(a: Point, b: Point, tolerance: float) -> bool:
    return abs(a.x - b.x) > tolerance or abs(a.y - b.y) > tolerance


def reconcile_manual_path(
    source: Point,
    source_side: Side,
    target: Point,
    target_side: Side,
    waypoints: Sequence[Point],
    previous: Optional[EdgeSnapshot] = None,
    config: Optional[EditConfig] = None,
) -> list[Point]:
    """Full polyline for a manually routed edge, repaired at both ends.

    When the segment next to an anchor no longer leaves the node along the
    anchor's axis, the nearest waypoint slides along its own segment if that
    segment is perpendicular to the anchor axis and the change came from a
    node move (or from nothing at all). Otherwise a stub and an elbow are
    inserted so the path still leaves the node orthogonally.

    Returns an empty list if either anchor is not finite.
    """
    cfg = config or EditConfig()
    if not is_valid_point(source) or not is_valid_point(target):
        return []
    inner = valid_points(waypoints)
    points = [source, *inner, target]

    prev = previous or EdgeSnapshot(source, target, tuple(inner))
    node_moved = (
        _moved(source, prev.source, cfg.move_tolerance)
        or _moved(target, prev.target, cfg.move_tolerance)
    )
    path_edited = tuple(inner) != tuple(prev.waypoints)
    prefer_slide = node_moved or not path_edited

    # Head
    p0, p1 = points[0], points[1]
    horiz = source_side.is_horizontal
    aligned = (
        abs(p0.y - p1.y) < cfg.repair_threshold if horiz
        else abs(p0.x - p1.x) < cfg.repair_threshold
    )
    if not aligned:
        slid = False
        if prefer_slide and len(points) > 2:
            p2 = points[2]
            if horiz and is_vertical(p1, p2):
                points[1] = Point(p1.x, p0.y)
                slid = True
            elif not horiz and is_horizontal(p1, p2):
                points[1] = Point(p0.x, p1.y)
                slid = True
        if not slid:
            dx, dy = source_side.vector
            stub = Point(p0.x + dx * cfg.stub_length, p0.y + dy * cfg.stub_length)
            bridge = Point(stub.x, p1.y) if horiz else Point(p1.x, stub.y)
            points[1:1] = [stub, bridge]

    # Tail
    last = len(points) - 1
    end, pn1 = points[last], points[last - 1]
    horiz = target_side.is_horizontal
    aligned = (
        abs(end.y - pn1.y) < cfg.repair_threshold if horiz
        else abs(end.x - pn1.x) < cfg.repair_threshold
    )
    if not aligned:
        slid = False
        if prefer_slide and last >= 2:
            pn2 = points[last - 2]
            if horiz and is_vertical(pn1, pn2):
                points[last - 1] = Point(pn1.x, end.y)
                slid = True
            elif not horiz and is_horizontal(pn1, pn2):
                points[last - 1] = Point(end.x, pn1.y)
                slid = True
        if not slid:
            dx, dy = target_side.vector
            stub = Point(end.x + dx * cfg.stub_length, end.y + dy * cfg.stub_length)
            bridge = Point(stub.x, pn1.y) if horiz else Point(pn1.x, stub.y)
            points[last:last] = [bridge, stub]

    return points


# ---------------------------------------------------------------------------
# Gestures
# ---------------------------------------------------------------------------

class Gesture(Protocol):
    def close(self) -> None: ...


class GestureRegistry:
    """Tracks the pointer gestures currently in flight.

    A gesture registers itself for its lifetime and must be removed on
    release; ``teardown()`` closes whatever is still registered when the
    owning surface goes away.
    """

    def __init__(self) -> None:
        self._active: dict[str, Gesture] = {}
        self._lock = threading.Lock()

    def register(self, key: str, gesture: Gesture) -> None:
        with self._lock:
            stale = self._active.pop(key, None)
            self._active[key] = gesture
        if stale is not None and stale is not gesture:
            logger.debug("Gesture %s replaced before release", key)
            stale.close()

    def unregister(self, key: str, gesture: Optional[Gesture] = None) -> bool:
        with self._lock:
            current = self._active.get(key)
            if current is None or (gesture is not None and current is not gesture):
                return False
            del self._active[key]
            return True

    def teardown(self) -> int:
        """Close every registered gesture; returns how many were still active."""
        with self._lock:
            leftovers = list(self._active.values())
            self._active.clear()
        for gesture in leftovers:
            gesture.close()
        if leftovers:
            logger.debug("Tore down %d active gesture(s)", len(leftovers))
        return len(leftovers)

    def __contains__(self, key: str) -> bool:
        return key in self._active

    def __len__(self) -> int:
        return len(self._active)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._active))


class SegmentDrag:
    """Dragging one segment of a rendered edge perpendicular to itself.

    *points* is the full rendered polyline (anchors included) and *index*
    the segment being dragged. The anchors never move: dragging the first
    or last segment splits it so the path grows a bridge instead. The
    dragged segment carries along the contiguous run of segments that were
    collinear with it, and the run snaps to the anchors' coordinates or to
    any untouched point on the drag axis.

    Usable as a context manager; leaving the block without ``release()``
    abandons the gesture.
    """

    def __init__(
        self,
        points: Sequence[Point],
        index: int,
        orientation: Optional[Orientation] = None,
        zoom: float = 1.0,
        config: Optional[EditConfig] = None,
        registry: Optional[GestureRegistry] = None,
        key: str = "",
    ) -> None:
        self._cfg = config or EditConfig()
        pts = valid_points(points)
        if len(pts) < 2 or not 0 <= index < len(pts) - 1:
            raise ValueError(f"segment index {index} out of range for {len(pts)} point(s)")

        self.orientation = orientation or segment_orientation(pts[index], pts[index + 1])
        self.zoom = zoom if zoom > 0 else 1.0
        self.source = pts[0]
        self.target = pts[-1]
        self._registry = registry
        self._key = key
        self.active = True

        index = self._split_ends(pts, index)
        self._initial = pts
        self.indices = self._collinear_run(pts, index)
        self.snap_candidates = self._snap_candidates(pts)
        self.waypoints: tuple[Point, ...] = tuple(pts[1:-1])

        if registry is not None:
            registry.register(key, self)

    @staticmethod
    def _split_ends(pts: list[Point], index: int) -> int:
        if index == 0:
            pts[1:1] = [pts[0], pts[1]]
            return 1
        if index == len(pts) - 2:
            pts[index + 1:index + 1] = [pts[index], pts[index + 1]]
            return index + 1
        if len(pts) == 4:
            p1, p2 = pts[1], pts[2]
            if is_vertical(p1, p2) or is_horizontal(p1, p2):
                mid = Point((p1.x + p2.x) / 2, (p1.y + p2.y) / 2)
                pts[2:2] = [mid, mid]
                return 2
        return index

    def _aligned(self, a: Point, b: Point) -> bool:
        if self.orientation is Orientation.HORIZONTAL:
            return abs(a.y - b.y) < self._cfg.propagation_threshold
        return abs(a.x - b.x) < self._cfg.propagation_threshold

    def _collinear_run(self, pts: list[Point], index: int) -> list[int]:
        indices = [index, index + 1]
        for i in range(index - 1, 0, -1):
            if not self._aligned(pts[i], pts[i + 1]):
                break
            indices.append(i)
        for i in range(index + 2, len(pts) - 1):
            if not self._aligned(pts[i - 1], pts[i]):
                break
            indices.append(i)
        return indices

    def _axis(self, p: Point) -> float:
        return p.y if self.orientation is Orientation.HORIZONTAL else p.x

    def _snap_candidates(self, pts: list[Point]) -> list[float]:
        candidates = [self._axis(self.source), self._axis(self.target)]
        moving = set(self.indices)
        for i, p in enumerate(pts):
            if i in moving:
                continue
            value = self._axis(p)
            if value not in candidates:
                candidates.append(value)
        return candidates

    def move(self, dx: float, dy: float, snap_disabled: bool = False) -> tuple[Point, ...]:
        """Apply a pointer displacement (screen pixels, from the gesture start).

        Returns the new interior waypoints. Once the gesture has ended this
        is a no-op returning the last waypoints.
        """
        if not self.active:
            return self.waypoints
        horizontal = self.orientation is Orientation.HORIZONTAL
        base = self._axis(self._initial[self.indices[0]])
        wanted = base + (dy if horizontal else dx) / self.zoom
        if not snap_disabled:
            threshold = self._cfg.snap_threshold / self.zoom
            for candidate in self.snap_candidates:
                if abs(wanted - candidate) < threshold:
                    wanted = candidate
                    break
        delta = wanted - base

        pts = list(self._initial)
        for i in self.indices:
            p = pts[i]
            pts[i] = Point(p.x, p.y + delta) if horizontal else Point(p.x + delta, p.y)
        pts[0] = self.source
        pts[-1] = self.target
        self.waypoints = tuple(pts[1:-1])
        return self.waypoints

    def release(self) -> tuple[Point, ...]:
        """End the gesture and return the simplified waypoints to commit."""
        full = [self.source, *self.waypoints, self.target]
        self.waypoints = tuple(simplify_orthogonal_points(full)[1:-1])
        self.close()
        return self.waypoints

    def close(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._registry is not None:
            self._registry.unregister(self._key, self)

    def __enter__(self) -> SegmentDrag:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
