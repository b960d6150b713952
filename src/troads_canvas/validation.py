"""
Input validation for troads-canvas MCP server tool parameters.

Provides reusable validators that produce clear error messages for all
parameters received from MCP clients.
"""

from __future__ import annotations

import math
from typing import Any

from troads_canvas.models import Point, Side


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------

def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Ensure *value* is a non-empty string after stripping whitespace."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field_name}' must be a non-empty string.")
    return value.strip()


def validate_string(value: Any, field_name: str, *, allow_empty: bool = True) -> str:
    """Ensure *value* is a string (optionally non-empty)."""
    if not isinstance(value, str):
        raise ValidationError(f"'{field_name}' must be a string, got {type(value).__name__}.")
    if not allow_empty and not value.strip():
        raise ValidationError(f"'{field_name}' must not be empty.")
    return value


def validate_number(
    value: Any,
    field_name: str,
    *,
    min_val: float | None = None,
    max_val: float | None = None,
) -> float:
    """Validate a finite numeric value and optional range."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be a number, got {type(value).__name__}."
        )
    val = float(value)
    if not math.isfinite(val):
        raise ValidationError(f"'{field_name}' must be finite, got {val}.")
    if min_val is not None and val < min_val:
        raise ValidationError(
            f"'{field_name}' must be >= {min_val}, got {val}."
        )
    if max_val is not None and val > max_val:
        raise ValidationError(
            f"'{field_name}' must be <= {max_val}, got {val}."
        )
    return val


def validate_int(
    value: Any,
    field_name: str,
    *,
    min_val: int | None = None,
    max_val: int | None = None,
) -> int:
    """Validate an integer value and optional range."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be an integer, got {type(value).__name__}."
        )
    if min_val is not None and value < min_val:
        raise ValidationError(
            f"'{field_name}' must be >= {min_val}, got {value}."
        )
    if max_val is not None and value > max_val:
        raise ValidationError(
            f"'{field_name}' must be <= {max_val}, got {value}."
        )
    return value


def validate_bool(value: Any, field_name: str) -> bool:
    """Ensure *value* is a boolean."""
    if not isinstance(value, bool):
        raise ValidationError(
            f"'{field_name}' must be a boolean, got {type(value).__name__}."
        )
    return value


def validate_list(value: Any, field_name: str, *, min_length: int = 0) -> list:
    """Ensure *value* is a list with at least *min_length* items."""
    if not isinstance(value, list):
        raise ValidationError(
            f"'{field_name}' must be a list, got {type(value).__name__}."
        )
    if len(value) < min_length:
        raise ValidationError(
            f"'{field_name}' must have at least {min_length} item(s), got {len(value)}."
        )
    return value


def validate_file_path(value: Any, field_name: str) -> str:
    """Validate that a file path is a non-empty string."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field_name}' must be a non-empty file path string.")
    return value.strip()


def validate_positive_number(value: Any, field_name: str) -> float:
    """Validate that a number is positive (> 0)."""
    return validate_number(value, field_name, min_val=0.001)


# ---------------------------------------------------------------------------
# Composite / domain validators
# ---------------------------------------------------------------------------

_CANVAS_ACTIONS = {"CREATE", "LIST", "EXPORT_JSON", "IMPORT_JSON", "RELAYOUT", "ROUTES"}
_NODE_ACTIONS = {
    "NEW_CONVERSATION", "EXTEND", "BRANCH", "REPORT_SIZE",
    "RESIZE_GROUP", "DRAG", "UPDATE", "DELETE",
}
_EDGE_ACTIONS = {"CONNECT", "SET_WAYPOINTS", "CLEAR_WAYPOINTS", "DRAG_SEGMENT", "DELETE"}
_LABEL_ACTIONS = {"ADD", "MOVE", "RETEXT", "DELETE"}


def validate_action(value: Any, tool_name: str, allowed: set[str]) -> str:
    """Validate the action parameter for a tool."""
    if not isinstance(value, str) or not value.strip():
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"'{tool_name}' requires an 'action' parameter. Valid actions: {choices}."
        )
    normalized = value.strip().upper()
    if normalized not in allowed:
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"Unknown {tool_name} action '{value}'. Valid actions: {choices}."
        )
    return value.strip().lower()


def validate_side(value: Any, field_name: str = "side") -> Side:
    """Validate an anchor side (left, right, top, bottom)."""
    if not isinstance(value, str):
        raise ValidationError(
            f"'{field_name}' must be a string, got {type(value).__name__}."
        )
    try:
        return Side(value.strip().lower())
    except ValueError:
        choices = ", ".join(s.value for s in Side)
        raise ValidationError(
            f"'{field_name}' must be one of [{choices}], got '{value}'."
        ) from None


def validate_point(value: Any, field_name: str) -> Point:
    """Validate a ``{"x": .., "y": ..}`` dict with finite coordinates."""
    if not isinstance(value, dict):
        raise ValidationError(
            f"'{field_name}' must be a dict with 'x' and 'y', got {type(value).__name__}."
        )
    for key in ("x", "y"):
        if key not in value:
            raise ValidationError(f"'{field_name}' missing required key '{key}'.")
    return Point(
        validate_number(value["x"], f"{field_name}.x"),
        validate_number(value["y"], f"{field_name}.y"),
    )


def validate_waypoints(value: Any) -> tuple[Point, ...]:
    """Validate a list of waypoint dicts."""
    items = validate_list(value, "waypoints", min_length=1)
    return tuple(validate_point(p, f"waypoints[{i}]") for i, p in enumerate(items))


def validate_id_list(value: Any, field_name: str) -> list[str]:
    """Validate a list of non-empty id strings."""
    items = validate_list(value, field_name)
    return [validate_non_empty_string(v, f"{field_name}[{i}]") for i, v in enumerate(items)]


def validate_zoom(value: Any) -> float:
    """Validate a viewport zoom factor (> 0)."""
    return validate_positive_number(value, "zoom")
