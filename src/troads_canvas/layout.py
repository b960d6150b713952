"""
Layout engine for conversation groups.

Groups stack their children top-to-bottom:
- New children are appended below the lowest sibling
- Compaction re-stacks children in their current visual order and sizes
  the group around them
- Size reports trigger a synchronous local compaction of the reporting
  node's own group, and a debounced global pass re-propagates group widths
  and compacts every group once a burst of reports has settled
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional, Sequence

from troads_canvas.models import (
    CanvasNode,
    Point,
    Rect,
    children_of,
    index_nodes,
    is_number,
)

logger = logging.getLogger(__name__)

Nodes = tuple[CanvasNode, ...]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class LayoutConfig:
    """Configuration for group stacking and placement."""
    # Group interior
    group_padding_top: float = 30
    group_padding_bottom: float = 15
    node_gap: float = 15
    child_offset_x: float = 20      # Horizontal inset of children on each side

    # Dimensions
    group_width: float = 400
    default_node_height: float = 150
    default_group_height: float = 300
    min_group_height: float = 150

    # Placement of new conversations / branches
    init_x: float = 250
    init_y: float = 50
    offset_y: float = 300
    branch_offset_x: float = 60

    # Global relayout coalescing window
    debounce_seconds: float = 0.2

    @property
    def child_width(self) -> float:
        return self.group_width - 2 * self.child_offset_x


# ---------------------------------------------------------------------------
# Size / position helpers
# ---------------------------------------------------------------------------

def _usable(value: Optional[float]) -> bool:
    return is_number(value) and value > 0


def node_height(node: CanvasNode, config: Optional[LayoutConfig] = None) -> float:
    """Effective height: explicit override, then measured size, then default."""
    cfg = config or LayoutConfig()
    if _usable(node.height):
        return node.height
    if _usable(node.measured_height):
        return node.measured_height
    return cfg.default_group_height if node.is_group else cfg.default_node_height


def node_width(node: CanvasNode, config: Optional[LayoutConfig] = None) -> float:
    """Effective width: explicit override, then measured size, then default."""
    cfg = config or LayoutConfig()
    if _usable(node.width):
        return node.width
    if _usable(node.measured_width):
        return node.measured_width
    return cfg.group_width if node.is_group else cfg.child_width


def absolute_position(node: CanvasNode, by_id: dict[str, CanvasNode]) -> Point:
    """Walk the parent chain to get canvas coordinates.

    A dangling parent reference contributes nothing; a non-numeric
    coordinate anywhere on the chain gives a non-finite point.
    """
    if not node.position.is_finite:
        return Point(math.nan, math.nan)
    x, y = node.position.x, node.position.y
    seen = {node.id}
    parent_id = node.parent_id
    while parent_id and parent_id not in seen:
        parent = by_id.get(parent_id)
        if parent is None:
            break
        if not parent.position.is_finite:
            return Point(math.nan, math.nan)
        seen.add(parent_id)
        x += parent.position.x
        y += parent.position.y
        parent_id = parent.parent_id
    return Point(x, y)


def node_rect(
    node: CanvasNode,
    by_id: dict[str, CanvasNode],
    config: Optional[LayoutConfig] = None,
    padding: float = 0,
) -> Rect:
    pos = absolute_position(node, by_id)
    return Rect.from_bounds(
        pos.x, pos.y, node_width(node, config), node_height(node, config), padding,
    )


def group_rects(
    nodes: Sequence[CanvasNode], config: Optional[LayoutConfig] = None,
) -> list[Rect]:
    """Absolute rectangles of every group, in collection order."""
    by_id = index_nodes(nodes)
    rects = (node_rect(n, by_id, config) for n in nodes if n.is_group)
    return [r for r in rects if math.isfinite(r.left) and math.isfinite(r.top)]


# ---------------------------------------------------------------------------
# Stacking
# ---------------------------------------------------------------------------

def next_stack_y(siblings: Iterable[CanvasNode], config: Optional[LayoutConfig] = None) -> float:
    """Y for a new item appended to a group.

    Top padding for an empty group, otherwise the lowest sibling's bottom
    edge plus the gap.
    """
    cfg = config or LayoutConfig()
    placed = [n for n in siblings if n.position.is_finite]
    if not placed:
        return cfg.group_padding_top
    lowest = max(placed, key=lambda n: n.position.y)
    return lowest.position.y + node_height(lowest, cfg) + cfg.node_gap


def _stack_order(node: CanvasNode) -> float:
    # Children without a usable Y go to the bottom of the stack
    return node.position.y if is_number(node.position.y) else math.inf


def compact_group(
    nodes: Sequence[CanvasNode],
    group_id: str,
    config: Optional[LayoutConfig] = None,
) -> Nodes:
    """Re-stack a group's children and resize the group around them.

    Children keep their current visual order (sorted by Y, stable for
    ties) so nothing jumps when a height changes. The group's height
    becomes the stacked bottom plus bottom padding, floored at the minimum.
    Unknown or empty groups leave the collection unchanged.
    """
    cfg = config or LayoutConfig()
    nodes = tuple(nodes)
    group = index_nodes(nodes).get(group_id)
    siblings = children_of(nodes, group_id)
    if group is None or not siblings:
        return nodes

    siblings.sort(key=_stack_order)

    updates: dict[str, CanvasNode] = {}
    current_y = cfg.group_padding_top
    last_index = len(siblings) - 1
    for i, child in enumerate(siblings):
        updates[child.id] = replace(
            child,
            position=Point(cfg.child_offset_x, current_y),
            is_last=(i == last_index),
        )
        current_y += node_height(child, cfg) + cfg.node_gap

    new_height = max(
        current_y - cfg.node_gap + cfg.group_padding_bottom,
        cfg.min_group_height,
    )
    updates[group_id] = replace(group, height=new_height)

    return tuple(updates.get(n.id, n) for n in nodes)


def propagate_child_width(
    nodes: Sequence[CanvasNode],
    group_id: str,
    config: Optional[LayoutConfig] = None,
) -> Nodes:
    """Make every tracking child as wide as its group minus the side insets."""
    cfg = config or LayoutConfig()
    nodes = tuple(nodes)
    group = index_nodes(nodes).get(group_id)
    if group is None:
        return nodes
    target = node_width(group, cfg) - 2 * cfg.child_offset_x
    return tuple(
        replace(n, width=target)
        if n.parent_id == group_id and not n.custom_width and n.width != target
        else n
        for n in nodes
    )


def _width_out_of_sync(
    nodes: Sequence[CanvasNode], group: CanvasNode, cfg: LayoutConfig,
) -> bool:
    target = node_width(group, cfg) - 2 * cfg.child_offset_x
    return any(
        n.parent_id == group.id and not n.custom_width and n.width != target
        for n in nodes
    )


# ---------------------------------------------------------------------------
# Resize cascade
# ---------------------------------------------------------------------------

def apply_size_report(
    nodes: Sequence[CanvasNode],
    node_id: str,
    width: float,
    height: float,
    config: Optional[LayoutConfig] = None,
) -> Nodes:
    """Local reaction to a render-measured size change.

    Stores the measured size on the node, then compacts only the node's
    own group. Stale ids and unusable sizes are ignored.
    """
    cfg = config or LayoutConfig()
    nodes = tuple(nodes)
    node = index_nodes(nodes).get(node_id)
    if node is None or not _usable(width) or not _usable(height):
        return nodes
    if node.measured_width == width and node.measured_height == height:
        return nodes

    updated = replace(node, measured_width=width, measured_height=height)
    nodes = tuple(updated if n.id == node_id else n for n in nodes)
    if updated.parent_id:
        nodes = compact_group(nodes, updated.parent_id, cfg)
    return nodes


def resize_group(
    nodes: Sequence[CanvasNode],
    group_id: str,
    width: float,
    config: Optional[LayoutConfig] = None,
) -> Nodes:
    """Set a group's authoritative width; children follow on the next global pass."""
    nodes = tuple(nodes)
    group = index_nodes(nodes).get(group_id)
    if group is None or not group.is_group or not _usable(width):
        return nodes
    return tuple(replace(n, width=width) if n.id == group_id else n for n in nodes)


def relayout_all(
    nodes: Sequence[CanvasNode], config: Optional[LayoutConfig] = None,
) -> Nodes:
    """Global pass: width propagation (where a group's width changed) then compaction."""
    cfg = config or LayoutConfig()
    nodes = tuple(nodes)
    group_ids = [n.id for n in nodes if n.is_group]
    for group_id in group_ids:
        group = index_nodes(nodes).get(group_id)
        if group is None:
            continue
        if _width_out_of_sync(nodes, group, cfg):
            nodes = propagate_child_width(nodes, group_id, cfg)
        nodes = compact_group(nodes, group_id, cfg)
    logger.debug("Global relayout over %d group(s)", len(group_ids))
    return nodes


# ---------------------------------------------------------------------------
# Debounced global pass
# ---------------------------------------------------------------------------

class LayoutScheduler:
    """Coalesces bursts of size reports into one global relayout.

    Every report is applied locally right away; the global pass runs once
    after ``debounce_seconds`` without further reports. Canvas state is
    reached only through the injected ``get_nodes`` / ``set_nodes``
    capabilities.
    """

    def __init__(
        self,
        get_nodes: Callable[[], Nodes],
        set_nodes: Callable[[Nodes], None],
        config: Optional[LayoutConfig] = None,
        lock: Optional[threading.RLock] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self._get_nodes = get_nodes
        self._set_nodes = set_nodes
        self._cfg = config or LayoutConfig()
        self._lock = lock or threading.RLock()
        self._timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self.passes = 0

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def report_size(self, node_id: str, width: float, height: float) -> None:
        with self._lock:
            nodes = self._get_nodes()
            self._set_nodes(apply_size_report(nodes, node_id, width, height, self._cfg))
            self._arm()

    def request_relayout(self) -> None:
        """Schedule a global pass without a size change (e.g. after a group resize)."""
        with self._lock:
            self._arm()

    def flush(self) -> bool:
        """Run a pending global pass now; returns whether one was pending."""
        with self._lock:
            if self._timer is None:
                return False
            self._timer.cancel()
            self._timer = None
            self._run_pass()
            return True

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        timer = self._timer_factory(
            self._cfg.debounce_seconds, self._on_timer, args=(self._generation,),
        )
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            # A superseded timer that fired anyway must not run the pass early
            if self._timer is None or generation != self._generation:
                return
            self._timer = None
            self._run_pass()

    def _run_pass(self) -> None:
        self._set_nodes(relayout_all(self._get_nodes(), self._cfg))
        self.passes += 1
