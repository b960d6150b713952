"""
Drag classification and mutation for conversation nodes.

A drag is evaluated once, on release, against the pre-drag snapshot of the
node collection. The outcome is one of:

- CLICK: displacement below the click threshold; nothing moves
- SNAP: dropped on the border of its own group; position reverts
- MERGE: dropped inside a group (its own group means a reorder)
- SPLIT: dropped outside every group; the node gets a new group

Leaf nodes inside a group are the only draggable kind; anything else is
IGNORED and the collections come back unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Sequence

from troads_canvas.layout import (
    LayoutConfig,
    absolute_position,
    compact_group,
    node_height,
    node_rect,
    node_width,
    propagate_child_width,
)
from troads_canvas.models import (
    CanvasNode,
    Edge,
    NodeKind,
    Point,
    Rect,
    children_of,
    index_nodes,
    new_id,
)

logger = logging.getLogger(__name__)


class DragAction(Enum):
    CLICK = "click"
    SNAP = "snap"
    MERGE = "merge"
    SPLIT = "split"
    IGNORED = "ignored"


@dataclass
class DragConfig:
    """Thresholds for drag release handling."""
    click_threshold: float = 5
    split_margin: float = 30          # Gap kept right of a colliding group when nudging
    max_nudge_iterations: int = 50


@dataclass(frozen=True)
class DragResult:
    action: DragAction
    nodes: tuple[CanvasNode, ...]
    edges: tuple[Edge, ...]
    target_group_id: Optional[str] = None
    new_group_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _drop_center(
    node: CanvasNode, group: CanvasNode, by_id: dict[str, CanvasNode],
    end: Point, cfg: LayoutConfig,
) -> Point:
    origin = absolute_position(group, by_id)
    return Point(
        origin.x + end.x + node_width(node, cfg) / 2,
        origin.y + end.y + node_height(node, cfg) / 2,
    )


def _classify(
    nodes: Sequence[CanvasNode],
    node_id: str,
    start: Point,
    end: Point,
    config: Optional[DragConfig],
    layout_config: Optional[LayoutConfig],
) -> tuple[DragAction, Optional[CanvasNode]]:
    cfg = config or DragConfig()
    lcfg = layout_config or LayoutConfig()
    by_id = index_nodes(nodes)

    node = by_id.get(node_id)
    if node is None or node.is_group or not node.parent_id:
        return DragAction.IGNORED, None
    source_group = by_id.get(node.parent_id)
    if source_group is None:
        return DragAction.IGNORED, None

    if (abs(end.x - start.x) < cfg.click_threshold
            and abs(end.y - start.y) < cfg.click_threshold):
        return DragAction.CLICK, None

    center = _drop_center(node, source_group, by_id, end, lcfg)

    # First containing group in collection order wins
    for candidate in nodes:
        if not candidate.is_group:
            continue
        if node_rect(candidate, by_id, lcfg).contains_point(center.x, center.y):
            return DragAction.MERGE, candidate

    home = node_rect(source_group, by_id, lcfg)
    outside = (
        center.x < home.left or center.x > home.right
        or center.y < home.top or center.y > home.bottom
    )
    return (DragAction.SPLIT if outside else DragAction.SNAP), None


def classify_drag(
    nodes: Sequence[CanvasNode],
    node_id: str,
    start: Point,
    end: Point,
    config: Optional[DragConfig] = None,
    layout_config: Optional[LayoutConfig] = None,
) -> DragAction:
    """Decide what a drag release means without changing anything.

    *start* and *end* are the node's parent-relative positions before and
    after the drag.
    """
    action, _ = _classify(nodes, node_id, start, end, config, layout_config)
    return action


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------

def _restore(nodes: tuple[CanvasNode, ...], node_id: str, start: Point) -> tuple[CanvasNode, ...]:
    return tuple(n.moved_to(start.x, start.y) if n.id == node_id else n for n in nodes)


def _settle_group(
    nodes: tuple[CanvasNode, ...], group_id: str, cfg: LayoutConfig,
) -> tuple[CanvasNode, ...]:
    """Width-sync and compact a group, or remove it once it has no children."""
    if not children_of(nodes, group_id):
        return tuple(n for n in nodes if n.id != group_id)
    nodes = propagate_child_width(nodes, group_id, cfg)
    return compact_group(nodes, group_id, cfg)


def _detach(edges: tuple[Edge, ...], node_id: str) -> tuple[Edge, ...]:
    return tuple(e for e in edges if not e.touches(node_id))


def _nudge_right(
    candidate: Rect,
    nodes: Sequence[CanvasNode],
    cfg: DragConfig,
    lcfg: LayoutConfig,
) -> Rect:
    """Shift *candidate* right past colliding groups, bounded by the iteration cap."""
    by_id = index_nodes(nodes)
    obstacles = [node_rect(n, by_id, lcfg) for n in nodes if n.is_group]
    for _ in range(cfg.max_nudge_iterations):
        hit = next((r for r in obstacles if candidate.intersects(r)), None)
        if hit is None:
            return candidate
        shift = hit.right + cfg.split_margin - candidate.left
        candidate = Rect(
            candidate.left + shift, candidate.right + shift,
            candidate.top, candidate.bottom,
        )
    if any(candidate.intersects(r) for r in obstacles):
        logger.debug(
            "Split placement still overlaps after %d nudges; keeping best effort",
            cfg.max_nudge_iterations,
        )
    return candidate


def apply_drag(
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    node_id: str,
    start: Point,
    end: Point,
    config: Optional[DragConfig] = None,
    layout_config: Optional[LayoutConfig] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> DragResult:
    """Classify a drag release and produce the resulting collections.

    Pure: the input collections are never modified and identical inputs
    (with the same *id_factory*) give identical results.
    """
    cfg = config or DragConfig()
    lcfg = layout_config or LayoutConfig()
    make_id = id_factory or new_id
    nodes = tuple(nodes)
    edges = tuple(edges)

    action, target = _classify(nodes, node_id, start, end, cfg, lcfg)
    logger.debug("Drag of %s classified as %s", node_id, action.value)

    if action is DragAction.IGNORED:
        return DragResult(action, nodes, edges)
    if action in (DragAction.CLICK, DragAction.SNAP):
        return DragResult(action, _restore(nodes, node_id, start), edges)

    by_id = index_nodes(nodes)
    node = by_id[node_id]
    source_id = node.parent_id
    source_group = by_id[source_id]
    source_origin = absolute_position(source_group, by_id)
    abs_x = source_origin.x + end.x
    abs_y = source_origin.y + end.y

    if action is DragAction.MERGE:
        target_origin = absolute_position(target, by_id)
        moved = replace(
            node,
            parent_id=target.id,
            position=Point(lcfg.child_offset_x, abs_y - target_origin.y),
        )
        result = tuple(moved if n.id == node_id else n for n in nodes)
        if target.id != source_id:
            edges = _detach(edges, node_id)
            result = _settle_group(result, source_id, lcfg)
        result = _settle_group(result, target.id, lcfg)
        return DragResult(action, result, edges, target_group_id=target.id)

    # SPLIT
    edges = _detach(edges, node_id)
    remaining = tuple(n for n in nodes if n.id != node_id)
    remaining = _settle_group(remaining, source_id, lcfg)

    group_h = max(
        lcfg.group_padding_top + node_height(node, lcfg) + lcfg.group_padding_bottom,
        lcfg.min_group_height,
    )
    placed = _nudge_right(
        Rect.from_bounds(
            abs_x - lcfg.child_offset_x, abs_y - lcfg.group_padding_top,
            lcfg.group_width, group_h,
        ),
        remaining, cfg, lcfg,
    )

    group_id = make_id()
    new_group = CanvasNode(
        id=group_id,
        kind=NodeKind.GROUP,
        position=Point(placed.left, placed.top),
        width=lcfg.group_width,
        height=group_h,
        label="Split topic",
    )
    moved = replace(
        node,
        parent_id=group_id,
        position=Point(lcfg.child_offset_x, lcfg.group_padding_top),
        is_last=True,
    )
    result = remaining + (new_group, moved)
    result = _settle_group(result, group_id, lcfg)
    return DragResult(action, result, edges, new_group_id=group_id)
