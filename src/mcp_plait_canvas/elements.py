"""
Element Model
=============

Elements travel between the canvas server, the browser clients and the tool
bridge as plain JSON objects. Keys the core does not know about (rendering
toolkit fields such as ``angle`` or ``autoSize``) are carried through
untouched.

Two levels of checking exist:

- ``validate_element``: the repository check. Only ``type`` and ``shape`` are
  required, because browser clients send whatever the drawing toolkit
  produced.
- ``parse_tool_element``: the tool bridge check. The payload is validated
  against the variant of the ``type``-tagged union, so every kind enforces
  its own required fields before anything leaves the process.
"""

import random
import re
import string
import time
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


class ElementType(str, Enum):
    GEOMETRY = "geometry"
    ARROW_LINE = "arrow-line"
    FREEHAND = "freehand"


class GeometryShape(str, Enum):
    RECTANGLE = "rectangle"
    ELLIPSE = "ellipse"
    DIAMOND = "diamond"
    TEXT = "text"


class ArrowLineShape(str, Enum):
    STRAIGHT = "straight"
    CURVE = "curve"
    ELBOW = "elbow"


class FreehandShape(str, Enum):
    FELT_TIP_PEN = "feltTipPen"


class StrokeStyle(str, Enum):
    SOLID = "solid"
    DASHED = "dashed"
    DOTTED = "dotted"


class TextAlign(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class ArrowLineMarker(str, Enum):
    ARROW = "arrow"
    NONE = "none"
    OPEN_TRIANGLE = "open-triangle"
    SOLID_TRIANGLE = "solid-triangle"
    SHARP_ARROW = "sharp-arrow"
    ONE_SIDE_UP = "one-side-up"
    ONE_SIDE_DOWN = "one-side-down"
    HOLLOW_TRIANGLE = "hollow-triangle"
    SINGLE_SLASH = "single-slash"


ELEMENT_TYPES = frozenset(t.value for t in ElementType)

# Added by the canvas server, never sent by a creator and never handed to a
# renderer or an agent.
BOOKKEEPING_FIELDS = ("createdAt", "updatedAt", "version", "syncedAt", "source", "syncTimestamp")

ORIGIN_TAGS = ("websocket", "http", "mcp")

# Alphabet without look-alikes (no 0/O, 1/l/I, 9/g/q, u/v...)
SHORT_ID_ALPHABET = "ABCDEFGHJKMNPQRSTWXYZabcdefhijkmnprstwxyz"
SHORT_ID_LENGTH = 5
SHORT_ID_PATTERN = f"^[{SHORT_ID_ALPHABET}]{{{SHORT_ID_LENGTH}}}$"

CONNECTION_ANCHORS = (0, 0.5, 1)

Point = Tuple[float, float]


# ============================================================================
# Identifiers
# ============================================================================

def _base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_id() -> str:
    """Mint a repository id: base36 millisecond clock plus a random tail."""
    suffix = "".join(random.choices(string.digits + string.ascii_lowercase, k=10))
    return _base36(int(time.time() * 1000)) + suffix


def generate_short_id() -> str:
    """Mint an id in the agent-facing 5 character grammar."""
    return "".join(random.choices(SHORT_ID_ALPHABET, k=SHORT_ID_LENGTH))


def is_short_id(value: Any) -> bool:
    return isinstance(value, str) and re.fullmatch(SHORT_ID_PATTERN, value) is not None


# ============================================================================
# Tool-facing schemas (tagged union on ``type``)
# ============================================================================

class ArrowLineText(BaseModel):
    text: str
    position: float = Field(ge=0, le=1, description="Position along the line, 0.5 is the middle")


class ArrowLineHandle(BaseModel):
    """One end of an arrow line.

    ``connection`` is a point of the bound element's bounding box expressed in
    unit coordinates, e.g. ``[1, 0.5]`` is the middle of the right edge.
    """

    model_config = ConfigDict(use_enum_values=True)

    boundId: Optional[str] = Field(default=None, min_length=1)
    connection: Optional[Tuple[float, float]] = None
    marker: ArrowLineMarker

    @field_validator("connection")
    @classmethod
    def _check_anchor(cls, value):
        if value is not None and any(c not in CONNECTION_ANCHORS for c in value):
            raise ValueError("connection coordinates must each be 0, 0.5 or 1")
        return value

    @model_validator(mode="after")
    def _connection_when_bound(self):
        if self.boundId is not None and self.connection is None:
            raise ValueError("connection is required when boundId is set")
        return self


class _ToolElement(BaseModel):
    model_config = ConfigDict(extra="allow", use_enum_values=True)

    id: str = Field(min_length=1)
    strokeColor: Optional[str] = None
    strokeWidth: Optional[float] = None
    strokeStyle: Optional[StrokeStyle] = None
    opacity: Optional[float] = None


class GeometryElement(_ToolElement):
    type: Literal["geometry"]
    shape: GeometryShape
    points: Tuple[Point, Point]
    text: str
    textAlign: Optional[TextAlign] = None
    fill: Optional[str] = None
    autoSize: Optional[bool] = None


class ArrowLineElement(_ToolElement):
    type: Literal["arrow-line"]
    shape: ArrowLineShape
    points: List[Point] = Field(min_length=2)
    texts: List[ArrowLineText]
    source: ArrowLineHandle
    target: ArrowLineHandle


class FreehandElement(_ToolElement):
    type: Literal["freehand"]
    shape: FreehandShape
    points: List[Point] = Field(min_length=2)


ToolElement = Annotated[
    Union[GeometryElement, ArrowLineElement, FreehandElement],
    Field(discriminator="type"),
]

_tool_element_adapter = TypeAdapter(ToolElement)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ELEMENT_TYPES)
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def parse_tool_element(kind: str, payload: Any, *, require_short_id: bool = True) -> dict:
    """Validate a creation request for ``kind`` and return its wire form.

    ``require_short_id`` enforces the 5 character id grammar that the MCP
    tools advertise.

    Raises:
        ValidationError: missing fields, bad values, or a ``type`` that does
            not match the invoked operation.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Failed to create element: payload must be an object")
    if not payload.get("id"):
        raise ValidationError("Failed to create element: id is required")
    if require_short_id and not is_short_id(payload["id"]):
        raise ValidationError(
            f"Failed to create element: id must be {SHORT_ID_LENGTH} characters from {SHORT_ID_ALPHABET}"
        )
    if payload.get("type") != kind:
        raise ValidationError(f"Failed to create element: type must be {kind}")
    try:
        model = _tool_element_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"Failed to create element: {_describe(exc)}") from exc
    return model.model_dump(mode="json", exclude_none=True)


# ============================================================================
# Repository-level helpers
# ============================================================================

def validate_element(element: Any) -> dict:
    """Check the fields the repository needs: ``type`` and ``shape``."""
    if not isinstance(element, dict):
        raise ValidationError("Element must be a JSON object")
    missing = [f for f in ("type", "shape") if f not in element]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if element["type"] not in ELEMENT_TYPES:
        raise ValidationError(f"Invalid element type: {element['type']}")
    return element


def is_origin_tag(value: Any) -> bool:
    return isinstance(value, str) and value in ORIGIN_TAGS


def strip_bookkeeping(element: dict) -> dict:
    """Return a copy of ``element`` without server bookkeeping.

    An arrow line's ``source`` endpoint is a dict and is kept; only an origin
    tag string stored under ``source`` is removed.
    """
    clean = {}
    for key, value in element.items():
        if key == "source":
            if is_origin_tag(value):
                continue
        elif key in BOOKKEEPING_FIELDS:
            continue
        clean[key] = value
    return clean
