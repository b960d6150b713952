"""
Edge label operations.

Labels live on their edge. Until a label is dragged it follows the edge's
default anchor at a fixed offset; once dragged its absolute position wins.
While dragging, a label snaps onto the nearest point of the rendered path
when it comes close enough.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from troads_canvas.editing import GestureRegistry
from troads_canvas.geometry import closest_point_on_segment, is_valid_point, valid_points
from troads_canvas.models import Edge, EdgeLabel, Point, new_id


@dataclass
class LabelConfig:
    snap_threshold: float = 20
    default_text: str = "relation"


def label_position(label: EdgeLabel, anchor_x: float, anchor_y: float) -> Point:
    """Where a label is drawn given the edge's current default anchor."""
    if label.absolute is not None and label.absolute.is_finite:
        return label.absolute
    return Point(anchor_x + label.offset.x, anchor_y + label.offset.y)


def snap_to_path(
    x: float,
    y: float,
    points: Sequence[Point],
    config: Optional[LabelConfig] = None,
) -> tuple[Point, bool]:
    """Closest point on the polyline if it is within the snap threshold."""
    cfg = config or LabelConfig()
    raw = Point(x, y)
    pts = valid_points(points)
    best: Optional[Point] = None
    best_distance = float("inf")
    for a, b in zip(pts, pts[1:]):
        q, distance = closest_point_on_segment(raw, a, b)
        if distance < best_distance:
            best_distance = distance
            best = q
    if best is not None and best_distance < cfg.snap_threshold:
        return best, True
    return raw, False


def _update_edge(
    edges: Sequence[Edge], edge_id: str, change: Callable[[Edge], Edge],
) -> tuple[Edge, ...]:
    return tuple(change(e) if e.id == edge_id else e for e in edges)


def _find_label(edges: Sequence[Edge], edge_id: str, label_id: str) -> Optional[EdgeLabel]:
    for edge in edges:
        if edge.id == edge_id:
            return next((lbl for lbl in edge.labels if lbl.id == label_id), None)
    return None


def add_label(
    edges: Sequence[Edge],
    edge_id: str,
    x: float,
    y: float,
    anchor: tuple[float, float],
    text: Optional[str] = None,
    config: Optional[LabelConfig] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> tuple[tuple[Edge, ...], Optional[str]]:
    """Create a label at (x, y) on an edge.

    Returns the new edge collection and the label id, or the unchanged
    collection and ``None`` when the edge is unknown.
    """
    cfg = config or LabelConfig()
    edges = tuple(edges)
    if not any(e.id == edge_id for e in edges) or not is_valid_point(Point(x, y)):
        return edges, None
    label = EdgeLabel(
        id=(id_factory or new_id)(),
        text=cfg.default_text if text is None else text,
        offset=Point(x - anchor[0], y - anchor[1]),
        absolute=Point(x, y),
    )
    return _update_edge(edges, edge_id, lambda e: replace(e, labels=e.labels + (label,))), label.id


def move_label(
    edges: Sequence[Edge],
    edge_id: str,
    label_id: str,
    x: float,
    y: float,
    anchor: tuple[float, float],
    points: Sequence[Point] = (),
    config: Optional[LabelConfig] = None,
) -> tuple[Edge, ...]:
    """Move a label, snapping it onto *points* (the rendered path) when close."""
    edges = tuple(edges)
    if _find_label(edges, edge_id, label_id) is None or not is_valid_point(Point(x, y)):
        return edges
    pos, snapped = snap_to_path(x, y, points, config)

    def change(edge: Edge) -> Edge:
        return replace(edge, labels=tuple(
            replace(
                lbl,
                absolute=pos,
                offset=Point(pos.x - anchor[0], pos.y - anchor[1]),
                snapped=snapped,
            ) if lbl.id == label_id else lbl
            for lbl in edge.labels
        ))

    return _update_edge(edges, edge_id, change)


def retext_label(
    edges: Sequence[Edge], edge_id: str, label_id: str, text: str,
) -> tuple[Edge, ...]:
    edges = tuple(edges)
    if _find_label(edges, edge_id, label_id) is None:
        return edges
    return _update_edge(edges, edge_id, lambda e: replace(e, labels=tuple(
        replace(lbl, text=text) if lbl.id == label_id else lbl for lbl in e.labels
    )))


def delete_label(edges: Sequence[Edge], edge_id: str, label_id: str) -> tuple[Edge, ...]:
    edges = tuple(edges)
    if _find_label(edges, edge_id, label_id) is None:
        return edges
    return _update_edge(edges, edge_id, lambda e: replace(
        e, labels=tuple(lbl for lbl in e.labels if lbl.id != label_id),
    ))


class LabelDrag:
    """Dragging a label; positions are recomputed from the gesture start.

    Registers with *registry* for its lifetime like ``SegmentDrag``.
    """

    def __init__(
        self,
        label: EdgeLabel,
        anchor: tuple[float, float],
        points: Sequence[Point] = (),
        zoom: float = 1.0,
        config: Optional[LabelConfig] = None,
        registry: Optional[GestureRegistry] = None,
    ) -> None:
        self._cfg = config or LabelConfig()
        self._points = valid_points(points)
        self._registry = registry
        self.label_id = label.id
        self.zoom = zoom if zoom > 0 else 1.0
        self.start = label_position(label, anchor[0], anchor[1])
        self.position = self.start
        self.snapped = label.snapped
        self.active = True
        if registry is not None:
            registry.register(label.id, self)

    def move(self, dx: float, dy: float) -> tuple[Point, bool]:
        """Apply a pointer displacement in screen pixels."""
        if not self.active:
            return self.position, self.snapped
        self.position, self.snapped = snap_to_path(
            self.start.x + dx / self.zoom,
            self.start.y + dy / self.zoom,
            self._points,
            self._cfg,
        )
        return self.position, self.snapped

    def release(self) -> tuple[Point, bool]:
        self.close()
        return self.position, self.snapped

    def close(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._registry is not None:
            self._registry.unregister(self.label_id, self)

    def __enter__(self) -> LabelDrag:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
