"""
troads-canvas MCP Server: drive a branching Q/A conversation canvas via
Model Context Protocol.

Exposes 4 tools that let a client build conversation groups, drag nodes
between them, route edges and annotate them, without a browser.

Tools:
  1. canvas — lifecycle: create, list, export_json, import_json, relayout, routes
  2. node   — content:   new_conversation, extend, branch, report_size,
                          resize_group, drag, update, delete
  3. edge   — links:     connect, set_waypoints, clear_waypoints, drag_segment, delete
  4. label  — notes:     add, move, retext, delete
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from troads_canvas.actions import (
    ActionResult,
    branch,
    connect,
    delete_nodes,
    extend,
    new_conversation,
    update_node,
)
from troads_canvas.drag import apply_drag
from troads_canvas.editing import GestureRegistry, SegmentDrag
from troads_canvas.labels import (
    add_label,
    delete_label,
    label_position,
    move_label,
    retext_label,
)
from troads_canvas.layout import LayoutConfig, LayoutScheduler, relayout_all, resize_group
from troads_canvas.models import Canvas, Point, index_nodes
from troads_canvas.persistence import (
    ProjectFormatError,
    dumps_project,
    load_project,
    loads_project,
    save_project,
)
from troads_canvas.routing import EMPTY_ROUTE, RoutedEdge, route_canvas_edges
from troads_canvas.validation import (
    ValidationError,
    validate_action,
    validate_bool,
    validate_file_path,
    validate_id_list,
    validate_int,
    validate_non_empty_string,
    validate_number,
    validate_positive_number,
    validate_side,
    validate_string,
    validate_waypoints,
    validate_zoom,
    _CANVAS_ACTIONS,
    _EDGE_ACTIONS,
    _LABEL_ACTIONS,
    _NODE_ACTIONS,
)

# ---------------------------------------------------------------------------
# Logging: keep routine FastMCP INFO messages off stderr
# ---------------------------------------------------------------------------
logging.getLogger("mcp.server").setLevel(logging.WARNING)
logger = logging.getLogger("troads-canvas")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "troads-canvas",
    instructions=(
        "MCP server for branching question/answer conversation canvases.\n\n"
        "=== ONLY 4 TOOLS: use the 'action' parameter to pick the operation ===\n\n"
        "1. canvas(action, ...): create, list, export_json, import_json,\n"
        "   relayout, routes.\n"
        "2. node(action, ...): new_conversation, extend, branch, report_size,\n"
        "   resize_group, drag, update, delete.\n"
        "3. edge(action, ...): connect, set_waypoints, clear_waypoints,\n"
        "   drag_segment, delete.\n"
        "4. label(action, ...): add, move, retext, delete.\n\n"
        "=== RULES ===\n"
        "- Group positions are absolute; leaf positions are relative to their group.\n"
        "- Leaves stack top-to-bottom inside a group; report rendered sizes with\n"
        "  node(action='report_size') and the group re-stacks itself.\n"
        "- Dragging a leaf onto another group merges it there; dropping it on\n"
        "  empty canvas splits it into a new group.\n"
        "- Edges are routed automatically around groups unless they carry\n"
        "  waypoints. canvas(action='routes') returns the SVG path of every edge.\n"
    ),
)

# In-memory canvas registry: name -> Canvas
# Guarded by _canvases_lock, which is also held by the debounced relayout timers.
_canvases: dict[str, Canvas] = {}
_schedulers: dict[str, LayoutScheduler] = {}
_canvases_lock = threading.RLock()
_gestures = GestureRegistry()

_layout_config = LayoutConfig()


def _reset_registry() -> None:
    """Drop every canvas and cancel pending relayouts."""
    with _canvases_lock:
        for scheduler in _schedulers.values():
            scheduler.cancel()
        _schedulers.clear()
        _canvases.clear()
    _gestures.teardown()


def _create_canvas(name: str) -> Canvas:
    cv = Canvas(name=name, next_y=_layout_config.init_y)

    def get_nodes():
        return cv.nodes

    def set_nodes(nodes):
        cv.nodes = nodes

    with _canvases_lock:
        old = _schedulers.pop(name, None)
        if old is not None:
            old.cancel()
        _canvases[name] = cv
        _schedulers[name] = LayoutScheduler(
            get_nodes, set_nodes, _layout_config, lock=_canvases_lock,
        )
    return cv


def _get_canvas(name: str) -> Canvas | None:
    with _canvases_lock:
        return _canvases.get(name)


def _apply(canvas: Canvas, result: ActionResult) -> None:
    canvas.nodes = result.nodes
    if result.edges is not None:
        canvas.edges = result.edges
    if result.next_y is not None:
        canvas.next_y = result.next_y


def _compute_routes(canvas: Canvas) -> dict[str, RoutedEdge]:
    routes, canvas.edge_history = route_canvas_edges(
        canvas.nodes, canvas.edges,
        layout_config=_layout_config,
        history=canvas.edge_history,
    )
    return routes


def _not_found(kind: str, item_id: str) -> str:
    logger.warning("Stale %s id '%s'", kind, item_id)
    return f"Error: {kind} '{item_id}' not found."


def _summary(cv: Canvas) -> dict[str, Any]:
    groups = sum(1 for n in cv.nodes if n.is_group)
    return {
        "name": cv.name,
        "groups": groups,
        "leaves": len(cv.nodes) - groups,
        "edges": len(cv.edges),
        "next_y": cv.next_y,
        "relayout_pending": _schedulers[cv.name].pending,
    }


# ===================================================================
# TOOL 1: canvas — lifecycle
# ===================================================================

@mcp.tool()
def canvas(
    action: str,
    name: str = "",
    file_path: str = "",
    json_content: str = "",
    append: bool = False,
) -> str:
    """Canvas lifecycle management.

    Actions:
      create      — Create a new empty canvas. Params: name.
      list        — List all in-memory canvases. No params needed.
      export_json — Project JSON; written to file_path when given. Params: name, file_path.
      import_json — Load project JSON from json_content or file_path.
                    append=True adds it to the right of the existing content.
      relayout    — Run the global layout pass now. Params: name.
      routes      — Route every edge. Params: name.

    Args:
        action: One of: create, list, export_json, import_json, relayout, routes.
        name: Canvas name (used as key in memory).
        file_path: Absolute path for export/import.
        json_content: Project JSON string for import_json.
        append: Append instead of replacing on import_json.

    Returns:
        Result string or JSON depending on action.
    """
    try:
        action = validate_action(action, "canvas", _CANVAS_ACTIONS)
    except ValidationError as exc:
        return f"Error: {exc.message}"

    if action == "list":
        with _canvases_lock:
            return json.dumps([_summary(c) for c in _canvases.values()], indent=2)

    try:
        name = validate_non_empty_string(name, "name")
    except ValidationError as exc:
        return f"Error: {exc.message}"

    if action == "create":
        _create_canvas(name)
        return f"Canvas '{name}' created."

    cv = _get_canvas(name)
    if cv is None:
        return f"Error: canvas '{name}' not found."

    if action == "export_json":
        with _canvases_lock:
            _schedulers[name].flush()
            if not file_path:
                return dumps_project(cv.nodes, cv.edges, cv.viewport)
            try:
                path = Path(validate_file_path(file_path, "file_path"))
            except ValidationError as exc:
                return f"Error: {exc.message}"
            saved = save_project(path, cv.nodes, cv.edges, cv.viewport)
        return f"Canvas saved to {saved}"

    elif action == "import_json":
        try:
            validate_bool(append, "append")
            with _canvases_lock:
                if json_content:
                    project = loads_project(
                        json_content, cv.nodes, cv.edges, append, _layout_config,
                    )
                elif file_path:
                    path = Path(validate_file_path(file_path, "file_path"))
                    if not path.exists():
                        return f"Error: file '{file_path}' not found."
                    project = load_project(
                        path, existing_nodes=cv.nodes, existing_edges=cv.edges,
                        append=append, config=_layout_config,
                    )
                else:
                    return "Error: import_json needs 'json_content' or 'file_path'."
                cv.nodes = project.nodes
                cv.edges = project.edges
                if not append:
                    cv.viewport = project.viewport
                    cv.edge_history = {}
                _schedulers[name].request_relayout()
        except ValidationError as exc:
            return f"Error: {exc.message}"
        except ProjectFormatError as exc:
            return f"Error: {exc}"
        return f"Imported {len(project.nodes)} node(s) and {len(project.edges)} edge(s) into '{name}'."

    elif action == "relayout":
        with _canvases_lock:
            if not _schedulers[name].flush():
                cv.nodes = relayout_all(cv.nodes, _layout_config)
            return json.dumps({"nodes": [n.to_dict() for n in cv.nodes]}, indent=2)

    elif action == "routes":
        with _canvases_lock:
            _schedulers[name].flush()
            routes = _compute_routes(cv)
            result: dict[str, Any] = {}
            for e in cv.edges:
                route = routes.get(e.id, EMPTY_ROUTE)
                entry = route.to_dict()
                entry["labels"] = [
                    {
                        "id": lbl.id,
                        "text": lbl.text,
                        "position": label_position(lbl, route.label_x, route.label_y).to_dict(),
                        "snapped": lbl.snapped,
                    }
                    for lbl in e.labels
                ]
                result[e.id] = entry
        return json.dumps(result, indent=2)

    else:
        return f"Error: unknown canvas action '{action}'."


# ===================================================================
# TOOL 2: node — conversation content
# ===================================================================

@mcp.tool()
def node(
    action: str,
    canvas_name: str,
    node_id: str = "",
    side: str = "right",
    x: float = 0.0,
    y: float = 0.0,
    width: float = 0.0,
    height: float = 0.0,
    title: Optional[str] = None,
    question: Optional[str] = None,
    answer: Optional[str] = None,
    node_ids: Optional[list[str]] = None,
    edge_ids: Optional[list[str]] = None,
) -> str:
    """Conversation node operations.

    Actions:
      new_conversation — New top-level group with its first leaf. Params: title.
      extend           — Follow-up leaf below node_id in its group.
      branch           — New group beside node_id's group, linked to it. Params: side (left|right).
      report_size      — Rendered size of node_id changed. Params: width, height.
                         The group re-stacks now; a global pass follows shortly.
      resize_group     — Set group node_id's width; children follow. Params: width.
      drag             — Release leaf node_id at group-relative (x, y).
      update           — Edit node_id. Params: title, question, answer, width (0 keeps it).
                         A leaf given a width stops following its group.
      delete           — Delete node_ids (groups take their children) and edge_ids.

    Args:
        action: One of the actions above.
        canvas_name: Target canvas.
        node_id: Node to act on.
        side: Branch side.
        x: Drop X relative to the node's current group (drag).
        y: Drop Y relative to the node's current group (drag).
        width: Width for report_size, resize_group or update.
        height: Height for report_size.
        title: Group title for new_conversation or update.
        question: Leaf question for update.
        answer: Leaf answer for update.
        node_ids: Nodes to delete.
        edge_ids: Edges to delete.

    Returns:
        JSON describing what changed, or an error string.
    """
    try:
        action = validate_action(action, "node", _NODE_ACTIONS)
        canvas_name = validate_non_empty_string(canvas_name, "canvas_name")
    except ValidationError as exc:
        return f"Error: {exc.message}"
    cv = _get_canvas(canvas_name)
    if cv is None:
        return f"Error: canvas '{canvas_name}' not found."

    if action == "new_conversation":
        try:
            title = validate_string(title or "", "title")
        except ValidationError as exc:
            return f"Error: {exc.message}"
        with _canvases_lock:
            kwargs = {"title": title} if title.strip() else {}
            result = new_conversation(cv.nodes, cv.next_y, _layout_config, **kwargs)
            _apply(cv, result)
        return json.dumps({"group_id": result.created[0], "node_id": result.created[1]})

    elif action == "delete":
        try:
            ids = validate_id_list(node_ids or [], "node_ids")
            eids = validate_id_list(edge_ids or [], "edge_ids")
        except ValidationError as exc:
            return f"Error: {exc.message}"
        with _canvases_lock:
            result = delete_nodes(cv.nodes, cv.edges, ids, eids, _layout_config)
            _apply(cv, result)
        return json.dumps({"removed": list(result.removed)})

    try:
        node_id = validate_non_empty_string(node_id, "node_id")
    except ValidationError as exc:
        return f"Error: {exc.message}"

    with _canvases_lock:
        target = index_nodes(cv.nodes).get(node_id)
        if target is None:
            return _not_found("node", node_id)

        if action == "extend":
            result = extend(cv.nodes, node_id, _layout_config)
            if not result.created:
                return f"Error: node '{node_id}' is not a leaf inside a group."
            _apply(cv, result)
            return json.dumps({"node_id": result.created[0]})

        elif action == "branch":
            try:
                branch_side = validate_side(side)
            except ValidationError as exc:
                return f"Error: {exc.message}"
            if not branch_side.is_horizontal:
                return "Error: 'side' must be left or right for branch."
            result = branch(cv.nodes, cv.edges, node_id, branch_side, _layout_config)
            _apply(cv, result)
            group_id, leaf_id, edge_id = result.created
            return json.dumps({"group_id": group_id, "node_id": leaf_id, "edge_id": edge_id})

        elif action == "report_size":
            try:
                width = validate_positive_number(width, "width")
                height = validate_positive_number(height, "height")
            except ValidationError as exc:
                return f"Error: {exc.message}"
            _schedulers[canvas_name].report_size(node_id, width, height)
            return json.dumps({"node_id": node_id, "relayout_pending": True})

        elif action == "resize_group":
            if not target.is_group:
                return f"Error: node '{node_id}' is not a group."
            try:
                width = validate_positive_number(width, "width")
            except ValidationError as exc:
                return f"Error: {exc.message}"
            cv.nodes = resize_group(cv.nodes, node_id, width, _layout_config)
            _schedulers[canvas_name].request_relayout()
            return json.dumps({"group_id": node_id, "width": width, "relayout_pending": True})

        elif action == "drag":
            try:
                end = Point(validate_number(x, "x"), validate_number(y, "y"))
            except ValidationError as exc:
                return f"Error: {exc.message}"
            outcome = apply_drag(
                cv.nodes, cv.edges, node_id, target.position, end,
                layout_config=_layout_config,
            )
            cv.nodes = outcome.nodes
            cv.edges = outcome.edges
            return json.dumps({
                "action": outcome.action.value,
                "target_group_id": outcome.target_group_id,
                "new_group_id": outcome.new_group_id,
            })

        elif action == "update":
            try:
                fields = {
                    key: validate_string(value, key)
                    for key, value in (
                        ("title", title), ("question", question), ("answer", answer),
                    )
                    if value is not None
                }
                new_width = validate_positive_number(width, "width") if width else None
            except ValidationError as exc:
                return f"Error: {exc.message}"
            result = update_node(
                cv.nodes, node_id,
                label=fields.get("title"),
                question=fields.get("question"),
                answer=fields.get("answer"),
                width=new_width,
            )
            if not result.changed:
                return "Error: update needs title, question, answer or width."
            cv.nodes = result.nodes
            if new_width is not None:
                _schedulers[canvas_name].request_relayout()
            return json.dumps({"node": index_nodes(cv.nodes)[node_id].to_dict()})

    return f"Error: unknown node action '{action}'."


# ===================================================================
# TOOL 3: edge — connections
# ===================================================================

@mcp.tool()
def edge(
    action: str,
    canvas_name: str,
    edge_id: str = "",
    source: str = "",
    target: str = "",
    source_side: str = "right",
    target_side: str = "left",
    waypoints: Optional[list[dict]] = None,
    segment_index: int = 0,
    dx: float = 0.0,
    dy: float = 0.0,
    zoom: float = 1.0,
    snap: bool = True,
) -> str:
    """Edge operations.

    Actions:
      connect         — New edge source -> target. Params: source, target, source_side, target_side.
      set_waypoints   — Route edge_id manually through waypoints [{"x":..,"y":..}, ...].
      clear_waypoints — Return edge_id to automatic routing.
      drag_segment    — Drag segment segment_index of edge_id's current route by (dx, dy)
                        screen pixels at the given zoom; snap=False disables snapping.
      delete          — Delete edge_id and its labels.

    Returns:
        JSON describing the edge, or an error string.
    """
    try:
        action = validate_action(action, "edge", _EDGE_ACTIONS)
        canvas_name = validate_non_empty_string(canvas_name, "canvas_name")
    except ValidationError as exc:
        return f"Error: {exc.message}"
    cv = _get_canvas(canvas_name)
    if cv is None:
        return f"Error: canvas '{canvas_name}' not found."

    if action == "connect":
        try:
            source = validate_non_empty_string(source, "source")
            target = validate_non_empty_string(target, "target")
            s_side = validate_side(source_side, "source_side")
            t_side = validate_side(target_side, "target_side")
        except ValidationError as exc:
            return f"Error: {exc.message}"
        if source == target:
            return "Error: 'source' and 'target' must be different (self-loops not supported)."
        with _canvases_lock:
            result = connect(cv.nodes, cv.edges, source, s_side, target, t_side)
            if not result.created:
                missing = source if source not in index_nodes(cv.nodes) else target
                return _not_found("node", missing)
            _apply(cv, result)
        return json.dumps({"edge_id": result.created[0]})

    try:
        edge_id = validate_non_empty_string(edge_id, "edge_id")
    except ValidationError as exc:
        return f"Error: {exc.message}"

    with _canvases_lock:
        current = next((e for e in cv.edges if e.id == edge_id), None)
        if current is None:
            return _not_found("edge", edge_id)

        if action == "set_waypoints":
            try:
                points = validate_waypoints(waypoints)
            except ValidationError as exc:
                return f"Error: {exc.message}"
            cv.edges = tuple(e.with_waypoints(points) if e.id == edge_id else e for e in cv.edges)
            return json.dumps({"edge_id": edge_id, "waypoints": [p.to_dict() for p in points]})

        elif action == "clear_waypoints":
            cv.edges = tuple(e.with_waypoints(()) if e.id == edge_id else e for e in cv.edges)
            return json.dumps({"edge_id": edge_id, "waypoints": []})

        elif action == "drag_segment":
            try:
                segment_index = validate_int(segment_index, "segment_index", min_val=0)
                dx = validate_number(dx, "dx")
                dy = validate_number(dy, "dy")
                zoom = validate_zoom(zoom)
                validate_bool(snap, "snap")
            except ValidationError as exc:
                return f"Error: {exc.message}"
            route = _compute_routes(cv).get(edge_id, EMPTY_ROUTE)
            if segment_index >= len(route.points) - 1:
                return (
                    f"Error: 'segment_index' {segment_index} out of range "
                    f"(route has {max(len(route.points) - 1, 0)} segment(s))."
                )
            with SegmentDrag(
                route.points, segment_index, zoom=zoom, registry=_gestures, key=edge_id,
            ) as gesture:
                gesture.move(dx, dy, snap_disabled=not snap)
                new_points = gesture.release()
            cv.edges = tuple(
                e.with_waypoints(new_points) if e.id == edge_id else e for e in cv.edges
            )
            return json.dumps({
                "edge_id": edge_id,
                "orientation": gesture.orientation.value,
                "waypoints": [p.to_dict() for p in new_points],
            })

        elif action == "delete":
            result = delete_nodes(cv.nodes, cv.edges, edge_ids=[edge_id], config=_layout_config)
            _apply(cv, result)
            cv.edge_history.pop(edge_id, None)
            return json.dumps({"removed": list(result.removed)})

    return f"Error: unknown edge action '{action}'."


# ===================================================================
# TOOL 4: label — edge annotations
# ===================================================================

@mcp.tool()
def label(
    action: str,
    canvas_name: str,
    edge_id: str,
    label_id: str = "",
    text: str = "",
    x: float = 0.0,
    y: float = 0.0,
    snap: bool = True,
) -> str:
    """Edge label operations.

    Actions:
      add    — New label on edge_id at canvas position (x, y). Params: text (optional).
      move   — Move label_id to (x, y); snaps onto the edge path when close unless snap=False.
      retext — Replace label_id's text.
      delete — Remove label_id.

    Returns:
        JSON describing the label, or an error string.
    """
    try:
        action = validate_action(action, "label", _LABEL_ACTIONS)
        canvas_name = validate_non_empty_string(canvas_name, "canvas_name")
        edge_id = validate_non_empty_string(edge_id, "edge_id")
        text = validate_string(text, "text")
    except ValidationError as exc:
        return f"Error: {exc.message}"
    cv = _get_canvas(canvas_name)
    if cv is None:
        return f"Error: canvas '{canvas_name}' not found."

    with _canvases_lock:
        current = next((e for e in cv.edges if e.id == edge_id), None)
        if current is None:
            return _not_found("edge", edge_id)

        if action == "add":
            try:
                px = validate_number(x, "x")
                py = validate_number(y, "y")
            except ValidationError as exc:
                return f"Error: {exc.message}"
            route = _compute_routes(cv).get(edge_id, EMPTY_ROUTE)
            cv.edges, new_label_id = add_label(
                cv.edges, edge_id, px, py, (route.label_x, route.label_y),
                text=text or None,
            )
            return json.dumps({"edge_id": edge_id, "label_id": new_label_id})

        try:
            label_id = validate_non_empty_string(label_id, "label_id")
        except ValidationError as exc:
            return f"Error: {exc.message}"
        existing = next((lbl for lbl in current.labels if lbl.id == label_id), None)
        if existing is None:
            return _not_found("label", label_id)

        if action == "move":
            try:
                px = validate_number(x, "x")
                py = validate_number(y, "y")
                validate_bool(snap, "snap")
            except ValidationError as exc:
                return f"Error: {exc.message}"
            route = _compute_routes(cv).get(edge_id, EMPTY_ROUTE)
            cv.edges = move_label(
                cv.edges, edge_id, label_id, px, py,
                (route.label_x, route.label_y),
                route.points if snap else (),
            )
            moved = next(
                lbl for e in cv.edges if e.id == edge_id for lbl in e.labels if lbl.id == label_id
            )
            return json.dumps({"label": moved.to_dict()})

        elif action == "retext":
            cv.edges = retext_label(cv.edges, edge_id, label_id, text)
            return json.dumps({"label_id": label_id, "text": text})

        elif action == "delete":
            cv.edges = delete_label(cv.edges, edge_id, label_id)
            return json.dumps({"removed": [label_id]})

    return f"Error: unknown label action '{action}'."


# ===================================================================
# Entry point
# ===================================================================

def main() -> None:
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
