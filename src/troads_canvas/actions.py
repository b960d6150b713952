"""
Interaction operations on canvas entities.

Each operation maps the current collections to new ones. The free Y for
the next top-level conversation is an explicit value passed in and handed
back, never module state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional, Sequence

from troads_canvas.layout import (
    LayoutConfig,
    absolute_position,
    compact_group,
    next_stack_y,
    node_width,
    propagate_child_width,
)
from troads_canvas.models import (
    CanvasNode,
    Edge,
    NodeKind,
    Point,
    Side,
    children_of,
    index_nodes,
    is_number,
    new_id,
)

logger = logging.getLogger(__name__)

NEW_CONVERSATION_TITLE = "New conversation"
BRANCH_TITLE = "New branch"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of an interaction operation.

    ``edges`` is ``None`` when the operation leaves edges untouched;
    ``next_y`` is only set by operations that consume top-level space.
    """
    nodes: tuple[CanvasNode, ...]
    edges: Optional[tuple[Edge, ...]] = None
    next_y: Optional[float] = None
    created: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.created or self.removed or self.updated)


def _new_group(
    group_id: str, x: float, y: float, title: str, cfg: LayoutConfig,
) -> CanvasNode:
    return CanvasNode(
        id=group_id,
        kind=NodeKind.GROUP,
        position=Point(x, y),
        width=cfg.group_width,
        label=title,
    )


def _new_leaf(
    leaf_id: str, group_id: str, y: float, width: float, cfg: LayoutConfig,
) -> CanvasNode:
    return CanvasNode(
        id=leaf_id,
        position=Point(cfg.child_offset_x, y),
        width=width,
        parent_id=group_id,
        is_last=True,
    )


def new_conversation(
    nodes: Sequence[CanvasNode],
    next_y: float,
    config: Optional[LayoutConfig] = None,
    id_factory: Optional[Callable[[], str]] = None,
    title: str = NEW_CONVERSATION_TITLE,
) -> ActionResult:
    """Add a top-level group with its first leaf at (init_x, next_y)."""
    cfg = config or LayoutConfig()
    make_id = id_factory or new_id
    group_id = make_id()
    leaf_id = make_id()

    group = _new_group(group_id, cfg.init_x, next_y, title, cfg)
    leaf = _new_leaf(leaf_id, group_id, cfg.group_padding_top, cfg.child_width, cfg)
    result = compact_group(tuple(nodes) + (group, leaf), group_id, cfg)
    return ActionResult(
        nodes=result,
        next_y=next_y + cfg.offset_y,
        created=(group_id, leaf_id),
    )


def extend(
    nodes: Sequence[CanvasNode],
    parent_node_id: str,
    config: Optional[LayoutConfig] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> ActionResult:
    """Append a follow-up leaf below the others in *parent_node_id*'s group."""
    cfg = config or LayoutConfig()
    nodes = tuple(nodes)
    by_id = index_nodes(nodes)
    parent = by_id.get(parent_node_id)
    if parent is None or parent.is_group or parent.parent_id not in by_id:
        logger.debug("Cannot extend from %s; not a grouped leaf", parent_node_id)
        return ActionResult(nodes)

    group_id = parent.parent_id
    group = by_id[group_id]
    leaf_id = (id_factory or new_id)()
    leaf = _new_leaf(
        leaf_id, group_id,
        next_stack_y(children_of(nodes, group_id), cfg),
        node_width(group, cfg) - 2 * cfg.child_offset_x,
        cfg,
    )
    result = tuple(
        replace(n, is_last=False) if n.id == parent_node_id else n for n in nodes
    ) + (leaf,)
    return ActionResult(nodes=compact_group(result, group_id, cfg), created=(leaf_id,))


def branch(
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    parent_node_id: str,
    side: Side,
    config: Optional[LayoutConfig] = None,
    id_factory: Optional[Callable[[], str]] = None,
    title: str = BRANCH_TITLE,
) -> ActionResult:
    """Open a new group beside the parent's group, linked from the parent leaf.

    Only left and right branches exist; other sides leave everything unchanged.
    """
    cfg = config or LayoutConfig()
    make_id = id_factory or new_id
    nodes = tuple(nodes)
    edges = tuple(edges)
    by_id = index_nodes(nodes)
    parent = by_id.get(parent_node_id)
    if parent is None or not side.is_horizontal:
        return ActionResult(nodes, edges)

    group = by_id.get(parent.parent_id) if parent.parent_id else None
    if group is not None:
        base = absolute_position(group, by_id)
        base_width = node_width(group, cfg)
    else:
        base = absolute_position(parent, by_id)
        base_width = node_width(parent, cfg)

    if side is Side.RIGHT:
        x = base.x + base_width + cfg.branch_offset_x
    else:
        x = base.x - cfg.group_width - cfg.branch_offset_x

    group_id = make_id()
    leaf_id = make_id()
    edge_id = make_id()
    new_group = _new_group(group_id, x, base.y, title, cfg)
    leaf = _new_leaf(leaf_id, group_id, cfg.group_padding_top, cfg.child_width, cfg)
    edge = Edge(
        id=edge_id,
        source=parent_node_id,
        target=leaf_id,
        source_side=side,
        target_side=side.opposite,
    )
    result = compact_group(nodes + (new_group, leaf), group_id, cfg)
    return ActionResult(
        nodes=result,
        edges=edges + (edge,),
        created=(group_id, leaf_id, edge_id),
    )


def connect(
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    source: str,
    source_side: Side,
    target: str,
    target_side: Side,
    id_factory: Optional[Callable[[], str]] = None,
) -> ActionResult:
    """Add an edge between two existing, distinct nodes."""
    nodes = tuple(nodes)
    edges = tuple(edges)
    by_id = index_nodes(nodes)
    if source == target or source not in by_id or target not in by_id:
        logger.debug("Refusing edge %s -> %s", source, target)
        return ActionResult(nodes, edges)
    edge = Edge(
        id=(id_factory or new_id)(),
        source=source,
        target=target,
        source_side=source_side,
        target_side=target_side,
    )
    return ActionResult(nodes, edges + (edge,), created=(edge.id,))

def update_node(
    nodes: Sequence[CanvasNode],
    node_id: str,
    *,
    label: Optional[str] = None,
    question: Optional[str] = None,
    answer: Optional[str] = None,
    width: Optional[float] = None,
) -> ActionResult:
    """Patch a node's content; ``None`` leaves a field as it is.

    A width given for a leaf becomes its own override, so the leaf stops
    following its group's width. A group's width is set as is; its children
    catch up on the next global relayout.
    """
    nodes = tuple(nodes)
    node = index_nodes(nodes).get(node_id)
    if node is None:
        logger.debug("Cannot update %s; no such node", node_id)
        return ActionResult(nodes)

    patch: dict[str, object] = {
        key: value
        for key, value in (("label", label), ("question", question), ("answer", answer))
        if value is not None
    }
    if width is not None and is_number(width) and width > 0:
        patch["width"] = width
        if not node.is_group:
            patch["custom_width"] = True
    if not patch:
        return ActionResult(nodes)

    updated = replace(node, **patch)
    return ActionResult(
        tuple(updated if n.id == node_id else n for n in nodes),
        updated=(node_id,),
    )



def delete_nodes(
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    node_ids: Iterable[str] = (),
    edge_ids: Iterable[str] = (),
    config: Optional[LayoutConfig] = None,
) -> ActionResult:
    """Deletion cascade.

    Deleting a group deletes its children. Groups that lose children are
    re-stacked, or removed once empty. Edges touching any removed node
    go too, along with their labels.
    """
    cfg = config or LayoutConfig()
    nodes = tuple(nodes)
    edges = tuple(edges)
    by_id = index_nodes(nodes)

    doomed = {nid for nid in node_ids if nid in by_id}
    for nid in list(doomed):
        if by_id[nid].is_group:
            doomed.update(c.id for c in children_of(nodes, nid))

    affected = []
    for nid in doomed:
        parent_id = by_id[nid].parent_id
        if parent_id and parent_id in by_id and parent_id not in doomed and parent_id not in affected:
            affected.append(parent_id)

    result = tuple(n for n in nodes if n.id not in doomed)
    order = {n.id: i for i, n in enumerate(nodes)}
    for group_id in sorted(affected, key=order.__getitem__):
        if not children_of(result, group_id):
            doomed.add(group_id)
            result = tuple(n for n in result if n.id != group_id)
            continue
        result = propagate_child_width(result, group_id, cfg)
        result = compact_group(result, group_id, cfg)

    drop_edges = set(edge_ids)
    kept = tuple(
        e for e in edges
        if e.id not in drop_edges and e.source not in doomed and e.target not in doomed
    )
    kept_ids = {e.id for e in kept}
    removed = tuple(n.id for n in nodes if n.id in doomed) + tuple(
        e.id for e in edges if e.id not in kept_ids
    )
    return ActionResult(result, kept, removed=removed)
