"""
JSON project files.

A project is ``{"version", "nodes", "edges", "viewport"}`` where nodes and
edges use the ``to_dict`` shapes of the model classes, so positions, sizes,
waypoints and labels round-trip exactly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from troads_canvas.layout import LayoutConfig, node_width
from troads_canvas.models import CanvasNode, Edge, Point, Viewport, is_number, new_id

PROJECT_VERSION = "1.0.0"
# Horizontal gap between existing content and appended content
APPEND_GAP = 100


class ProjectFormatError(ValueError):
    """Raised when project data cannot be read."""


@dataclass
class Project:
    nodes: tuple[CanvasNode, ...] = ()
    edges: tuple[Edge, ...] = ()
    viewport: Optional[Viewport] = None
    version: str = PROJECT_VERSION


def export_project(
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    viewport: Optional[Viewport] = None,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "version": PROJECT_VERSION,
        "nodes": [n.to_dict() for n in nodes],
        "edges": [e.to_dict() for e in edges],
    }
    if viewport is not None:
        data["viewport"] = viewport.to_dict()
    return data


def dumps_project(
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    viewport: Optional[Viewport] = None,
) -> str:
    return json.dumps(export_project(nodes, edges, viewport), indent=2, ensure_ascii=False)


def _require_point(point: Point, where: str) -> None:
    for axis in ("x", "y"):
        if not is_number(getattr(point, axis)):
            raise ProjectFormatError(f"{where}.{axis} must be a finite number")


def _check_numbers(nodes: Sequence[CanvasNode], edges: Sequence[Edge]) -> None:
    """Reject coordinates and sizes that are not finite numbers."""
    for n in nodes:
        _require_point(n.position, f"node '{n.id}' position")
        for key in ("width", "height", "measured_width", "measured_height"):
            value = getattr(n, key)
            if value is not None and not is_number(value):
                raise ProjectFormatError(f"node '{n.id}' {key} must be a number or null")
    for e in edges:
        if not is_number(e.offset):
            raise ProjectFormatError(f"edge '{e.id}' offset must be a finite number")
        for i, p in enumerate(e.waypoints):
            _require_point(p, f"edge '{e.id}' waypoints[{i}]")
        for lbl in e.labels:
            _require_point(lbl.offset, f"label '{lbl.id}' offset")
            if lbl.absolute is not None:
                _require_point(lbl.absolute, f"label '{lbl.id}' absolute")


def _parse(data: Any) -> Project:
    if not isinstance(data, dict):
        raise ProjectFormatError("project data must be a JSON object")
    raw_nodes = data.get("nodes")
    if not isinstance(raw_nodes, list):
        raise ProjectFormatError("project data is missing a 'nodes' list")
    raw_edges = data.get("edges") or []
    if not isinstance(raw_edges, list):
        raise ProjectFormatError("'edges' must be a list")
    raw_viewport = data.get("viewport")
    try:
        nodes = tuple(CanvasNode.from_dict(n) for n in raw_nodes)
        edges = tuple(Edge.from_dict(e) for e in raw_edges)
        viewport = Viewport.from_dict(raw_viewport) if isinstance(raw_viewport, dict) else None
    except (KeyError, TypeError, ValueError) as exc:
        raise ProjectFormatError(f"invalid project entry: {exc}") from exc
    _check_numbers(nodes, edges)
    if viewport is not None and not all(
        is_number(v) for v in (viewport.x, viewport.y, viewport.zoom)
    ):
        raise ProjectFormatError("viewport x, y and zoom must be finite numbers")
    return Project(nodes, edges, viewport, str(data.get("version", PROJECT_VERSION)))


def _shift_right(
    incoming: Sequence[CanvasNode],
    existing: Sequence[CanvasNode],
    config: Optional[LayoutConfig],
) -> tuple[CanvasNode, ...]:
    top_level = [n for n in existing if not n.parent_id]
    if not top_level:
        return tuple(incoming)
    max_right = max(n.position.x + node_width(n, config) for n in top_level)
    offset = max_right + APPEND_GAP
    return tuple(
        n if n.parent_id else n.moved_to(n.position.x + offset, n.position.y)
        for n in incoming
    )


def _remap_collisions(
    project: Project,
    existing_nodes: Sequence[CanvasNode],
    existing_edges: Sequence[Edge],
    id_factory: Optional[Callable[[], str]],
) -> tuple[tuple[CanvasNode, ...], tuple[Edge, ...]]:
    """Give incoming nodes and edges fresh ids where they clash with the canvas."""
    taken = {n.id for n in existing_nodes} | {e.id for e in existing_edges}
    make_id = id_factory or new_id
    mapping = {
        item.id: make_id()
        for item in (*project.nodes, *project.edges)
        if item.id in taken
    }
    if not mapping:
        return project.nodes, project.edges

    def ref(value: Optional[str]) -> Optional[str]:
        return mapping.get(value, value) if value else value

    nodes = tuple(
        replace(n, id=ref(n.id), parent_id=ref(n.parent_id)) for n in project.nodes
    )
    edges = tuple(
        replace(e, id=ref(e.id), source=ref(e.source), target=ref(e.target))
        for e in project.edges
    )
    return nodes, edges


def import_project(
    data: Any,
    existing_nodes: Sequence[CanvasNode] = (),
    existing_edges: Sequence[Edge] = (),
    append: bool = False,
    config: Optional[LayoutConfig] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> Project:
    """Build the canvas content after loading *data*.

    Replace mode returns the loaded project as is. Append mode keeps the
    existing content and adds the loaded nodes to its right (only top-level
    nodes move; children are group-relative), keeping the existing viewport.
    Appended nodes and edges whose ids are already on the canvas get fresh ids.

    Raises:
        ProjectFormatError: If *data* lacks a ``nodes`` list or an entry is malformed.
    """
    project = _parse(data)
    if not append:
        return project
    nodes, edges = _remap_collisions(project, existing_nodes, existing_edges, id_factory)
    shifted = _shift_right(nodes, existing_nodes, config)
    return Project(
        nodes=tuple(existing_nodes) + shifted,
        edges=tuple(existing_edges) + edges,
        viewport=None,
        version=project.version,
    )


def loads_project(
    text: str,
    existing_nodes: Sequence[CanvasNode] = (),
    existing_edges: Sequence[Edge] = (),
    append: bool = False,
    config: Optional[LayoutConfig] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> Project:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProjectFormatError(f"invalid JSON: {exc.msg} (line {exc.lineno})") from exc
    return import_project(data, existing_nodes, existing_edges, append, config, id_factory)


def save_project(
    path: Path,
    nodes: Sequence[CanvasNode],
    edges: Sequence[Edge],
    viewport: Optional[Viewport] = None,
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_project(nodes, edges, viewport), encoding="utf-8")
    return path.resolve()


def load_project(path: Path, **kwargs: Any) -> Project:
    return loads_project(path.read_text(encoding="utf-8"), **kwargs)
