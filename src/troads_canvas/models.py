"""
Core data model for the conversation canvas.

Provides immutable node / edge / label records that the layout engine,
drag mutator and edge router transform from one collection to the next,
plus the mutable ``Canvas`` holder owned by the interaction layer.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Side(Enum):
    """Anchor side of a node; each side faces outward along one axis."""
    LEFT = "left"
    RIGHT = "right"
    TOP = "top"
    BOTTOM = "bottom"

    @property
    def vector(self) -> tuple[float, float]:
        return _SIDE_VECTORS[self]

    @property
    def is_horizontal(self) -> bool:
        return self in (Side.LEFT, Side.RIGHT)

    @property
    def opposite(self) -> Side:
        return _SIDE_OPPOSITES[self]


_SIDE_VECTORS: dict[Side, tuple[float, float]] = {
    Side.LEFT: (-1.0, 0.0),
    Side.RIGHT: (1.0, 0.0),
    Side.TOP: (0.0, -1.0),
    Side.BOTTOM: (0.0, 1.0),
}

_SIDE_OPPOSITES: dict[Side, Side] = {
    Side.LEFT: Side.RIGHT,
    Side.RIGHT: Side.LEFT,
    Side.TOP: Side.BOTTOM,
    Side.BOTTOM: Side.TOP,
}


class NodeKind(Enum):
    LEAF = "leaf"
    GROUP = "group"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Point:
    """A 2-D coordinate in canvas-logical space."""
    x: float
    y: float

    @property
    def is_finite(self) -> bool:
        return is_number(self.x) and is_number(self.y)

    def shifted(self, dx: float, dy: float) -> Point:
        return Point(self.x + dx, self.y + dy)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Point:
        return cls(data["x"], data["y"])


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle used only for collision tests."""
    left: float
    right: float
    top: float
    bottom: float

    @classmethod
    def from_bounds(
        cls, x: float, y: float, width: float, height: float, padding: float = 0,
    ) -> Rect:
        return cls(x - padding, x + width + padding, y - padding, y + height + padding)

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def cx(self) -> float:
        return (self.left + self.right) / 2

    @property
    def cy(self) -> float:
        return (self.top + self.bottom) / 2

    def expanded(self, padding: float) -> Rect:
        return Rect(
            self.left - padding, self.right + padding,
            self.top - padding, self.bottom + padding,
        )

    def contains_point(self, px: float, py: float, margin: float = 0) -> bool:
        """Strict containment; points on the border are outside."""
        return (
            self.left - margin < px < self.right + margin
            and self.top - margin < py < self.bottom + margin
        )

    def intersects(self, other: Rect, margin: float = 0) -> bool:
        """Check if two rectangles overlap; touching borders count as overlap."""
        return not (
            self.right + margin < other.left
            or other.right + margin < self.left
            or self.bottom + margin < other.top
            or other.bottom + margin < self.top
        )


@dataclass(frozen=True)
class CanvasNode:
    """A leaf (question/answer block) or a group stacking leaves vertically.

    Size resolution: the explicit ``width``/``height`` override wins over the
    last render-measured size, which wins over the layout defaults.
    ``parent_id`` is a lookup key into the collection, never an owner.
    """
    id: str
    kind: NodeKind = NodeKind.LEAF
    position: Point = field(default_factory=lambda: Point(0, 0))
    width: Optional[float] = None
    height: Optional[float] = None
    measured_width: Optional[float] = None
    measured_height: Optional[float] = None
    parent_id: Optional[str] = None
    is_last: bool = False
    # Child opted out of tracking its group's width
    custom_width: bool = False
    label: str = ""
    question: str = ""
    answer: str = ""

    @property
    def is_group(self) -> bool:
        return self.kind is NodeKind.GROUP

    def moved_to(self, x: float, y: float) -> CanvasNode:
        return replace(self, position=Point(x, y))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind.value,
            "position": self.position.to_dict(),
        }
        for key in ("width", "height", "measured_width", "measured_height", "parent_id"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.is_last:
            data["is_last"] = True
        if self.custom_width:
            data["custom_width"] = True
        for key in ("label", "question", "answer"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CanvasNode:
        return cls(
            id=str(data["id"]),
            kind=NodeKind(data.get("kind", NodeKind.LEAF.value)),
            position=Point.from_dict(data.get("position", {"x": 0, "y": 0})),
            width=data.get("width"),
            height=data.get("height"),
            measured_width=data.get("measured_width"),
            measured_height=data.get("measured_height"),
            parent_id=data.get("parent_id"),
            is_last=bool(data.get("is_last", False)),
            custom_width=bool(data.get("custom_width", False)),
            label=data.get("label", ""),
            question=data.get("question", ""),
            answer=data.get("answer", ""),
        )


@dataclass(frozen=True)
class EdgeLabel:
    """Movable text attached to an edge.

    ``offset`` is relative to the edge's default label anchor; ``absolute``
    is set once the label has been dragged and then takes precedence.
    """
    id: str
    text: str = ""
    offset: Point = field(default_factory=lambda: Point(0, 0))
    absolute: Optional[Point] = None
    snapped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "offset": self.offset.to_dict(),
        }
        if self.absolute is not None:
            data["absolute"] = self.absolute.to_dict()
        if self.snapped:
            data["snapped"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EdgeLabel:
        absolute = data.get("absolute")
        return cls(
            id=str(data["id"]),
            text=data.get("text", ""),
            offset=Point.from_dict(data.get("offset", {"x": 0, "y": 0})),
            absolute=Point.from_dict(absolute) if absolute is not None else None,
            snapped=bool(data.get("snapped", False)),
        )


@dataclass(frozen=True)
class Edge:
    """A connection between two node anchors.

    A non-empty ``waypoints`` tuple marks the edge as manually routed and
    overrides the automatic router.
    """
    id: str
    source: str
    target: str
    source_side: Side = Side.RIGHT
    target_side: Side = Side.LEFT
    waypoints: tuple[Point, ...] = ()
    labels: tuple[EdgeLabel, ...] = ()
    offset: float = 30

    @property
    def is_manual(self) -> bool:
        return len(self.waypoints) > 0

    def touches(self, node_id: str) -> bool:
        return self.source == node_id or self.target == node_id

    def with_waypoints(self, waypoints) -> Edge:
        return replace(self, waypoints=tuple(waypoints))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "source_side": self.source_side.value,
            "target_side": self.target_side.value,
            "offset": self.offset,
        }
        if self.waypoints:
            data["waypoints"] = [p.to_dict() for p in self.waypoints]
        if self.labels:
            data["labels"] = [lbl.to_dict() for lbl in self.labels]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        return cls(
            id=str(data["id"]),
            source=str(data["source"]),
            target=str(data["target"]),
            source_side=Side(data.get("source_side", Side.RIGHT.value)),
            target_side=Side(data.get("target_side", Side.LEFT.value)),
            waypoints=tuple(Point.from_dict(p) for p in data.get("waypoints", [])),
            labels=tuple(EdgeLabel.from_dict(lbl) for lbl in data.get("labels", [])),
            offset=data.get("offset", 30),
        )


@dataclass(frozen=True)
class Viewport:
    x: float = 0
    y: float = 0
    zoom: float = 1

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "zoom": self.zoom}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Viewport:
        return cls(data.get("x", 0), data.get("y", 0), data.get("zoom", 1))


@dataclass
class Canvas:
    """Mutable holder for one canvas, owned by the interaction layer.

    Collections are swapped wholesale; ``next_y`` is the free position for
    the next top-level conversation group.
    """
    name: str
    nodes: tuple[CanvasNode, ...] = ()
    edges: tuple[Edge, ...] = ()
    next_y: float = 50
    viewport: Optional[Viewport] = None
    # edge id -> snapshot of the anchors/waypoints seen at the last routing pass
    edge_history: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def new_id() -> str:
    return str(uuid.uuid4())


def is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def index_nodes(nodes: tuple[CanvasNode, ...] | list[CanvasNode]) -> dict[str, CanvasNode]:
    """Map node id to node (last occurrence wins)."""
    return {n.id: n for n in nodes}


def children_of(
    nodes: tuple[CanvasNode, ...] | list[CanvasNode], group_id: str,
) -> list[CanvasNode]:
    return [n for n in nodes if n.parent_id == group_id]
