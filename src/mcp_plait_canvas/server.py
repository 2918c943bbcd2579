#!/usr/bin/env python3
"""
MCP Plait Canvas - Server Implementation
=========================================

Lets an agent draw on a live Plait canvas.

Tools:
- create_geometry_element: rectangle, ellipse, diamond or text box
- create_arrow_line_element: straight, curve or elbow connector
- create_freehand_element: felt tip pen stroke
- get_canvas_elements: read what is currently on the canvas

Every tool returns a JSON string. Creation tools report ``synced`` separately
from ``success``: with canvas sync disabled a valid element is still a
success, with sync enabled an unreachable canvas is a failure that carries
the element that was attempted.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from .bridge import ToolBridge
from .config import Settings, load_settings
from .elements import (
    ArrowLineShape,
    ElementType,
    FreehandShape,
    GeometryShape,
    StrokeStyle,
    TextAlign,
    SHORT_ID_ALPHABET,
    SHORT_ID_LENGTH,
)
from .errors import TransportUnavailable, ValidationError

logger = logging.getLogger(__name__)

_bridge: Optional[ToolBridge] = None


def get_bridge() -> ToolBridge:
    """Return the bridge used by the tools, building it from the environment on first use."""
    global _bridge
    if _bridge is None:
        _bridge = ToolBridge(load_settings())
    return _bridge


def set_bridge(bridge: Optional[ToolBridge]) -> None:
    global _bridge
    _bridge = bridge


@asynccontextmanager
async def server_lifespan(server: FastMCP):
    """Close the bridge's HTTP client on shutdown."""
    logger.info("Plait canvas MCP server starting")
    try:
        yield
    finally:
        if _bridge is not None:
            await _bridge.aclose()


# Initialize the MCP server
mcp = FastMCP("mcp-plait-canvas", lifespan=server_lifespan)


def create_server(settings: Optional[Settings] = None) -> FastMCP:
    """Return the MCP server, bound to a bridge for ``settings`` when given."""
    if settings is not None:
        set_bridge(ToolBridge(settings))
    return mcp


# ============================================================================
# Shared descriptions
# ============================================================================

ID_DESCRIPTION = (
    f"The unique identifier of the element, {SHORT_ID_LENGTH} characters in {SHORT_ID_ALPHABET}"
)

POINTS_DESCRIPTION = "Points on the canvas as [x, y] pairs, such as [[100, 100], [200, 200]]"

HANDLE_DESCRIPTION = """Arrow line endpoint: {"boundId"?, "connection"?, "marker"}.
- boundId: id of the element this end is attached to; omit when the end is free.
- connection: [x, y] anchor on the bound element, each of 0, 0.5 or 1.
  [0,0] top left, [1,1] bottom right, [1,0.5] middle of the right edge,
  [0.5,0] middle of the top edge. Required when boundId is set.
- marker: one of arrow, none, open-triangle, solid-triangle, sharp-arrow,
  one-side-up, one-side-down, hollow-triangle, single-slash.
For a one-way flow set the marker on target and "none" on source; only
two-way flows need a marker on source."""


# ============================================================================
# Result formatting
# ============================================================================

async def _create(kind: str, payload: dict) -> str:
    bridge = get_bridge()
    payload = {k: v for k, v in payload.items() if v is not None}
    try:
        outcome = await bridge.create_element(kind, payload)
    except ValidationError as e:
        logger.info("Rejected %s tool call: %s", kind, e)
        return json.dumps({"success": False, "error": str(e)})

    if outcome.synced:
        return json.dumps({
            "success": True,
            "synced": True,
            "element": outcome.element,
            "message": "Element created and synced to canvas",
        }, indent=2)

    if not bridge.settings.enable_canvas_sync:
        return json.dumps({
            "success": True,
            "synced": False,
            "element": outcome.element,
            "message": f"Element created locally ({outcome.reason})",
        }, indent=2)

    return json.dumps({
        "success": False,
        "synced": False,
        "error": f"Failed to create element: {outcome.reason}",
        "element": outcome.element,
    }, indent=2)


# ============================================================================
# Creation tools
# ============================================================================

@mcp.tool()
async def create_geometry_element(
    id: Annotated[str, Field(description=ID_DESCRIPTION)],
    type: Annotated[str, Field(description='Must be "geometry"')],
    points: Annotated[list, Field(description=POINTS_DESCRIPTION + ". Exactly two points: top left and bottom right")],
    shape: Annotated[GeometryShape, Field(description="Geometry shape")],
    text: Annotated[str, Field(description="Text shown inside the shape")],
    textAlign: Annotated[Optional[TextAlign], Field(description="Text alignment")] = None,
    fill: Annotated[Optional[str], Field(description="Fill color")] = None,
    strokeColor: Annotated[Optional[str], Field(description="Stroke color")] = None,
    strokeWidth: Annotated[Optional[float], Field(description="Stroke width")] = None,
    strokeStyle: Annotated[Optional[StrokeStyle], Field(description="Stroke style")] = None,
    autoSize: Annotated[Optional[bool], Field(description="Size a text shape to its content")] = None,
) -> str:
    """Create a Plait geometry element such as a rectangle, ellipse, diamond or text.

    For a text shape with autoSize set to true the width and height follow the
    text and the second point is not used.

    Returns:
        JSON string with success, synced and the created element
    """
    return await _create(ElementType.GEOMETRY.value, {
        "id": id,
        "type": type,
        "points": points,
        "shape": shape,
        "text": text,
        "textAlign": textAlign,
        "fill": fill,
        "strokeColor": strokeColor,
        "strokeWidth": strokeWidth,
        "strokeStyle": strokeStyle,
        "autoSize": autoSize,
    })


@mcp.tool()
async def create_arrow_line_element(
    id: Annotated[str, Field(description=ID_DESCRIPTION)],
    type: Annotated[str, Field(description='Must be "arrow-line"')],
    points: Annotated[list, Field(description=POINTS_DESCRIPTION + ". At least two points")],
    shape: Annotated[ArrowLineShape, Field(description="Line shape")],
    texts: Annotated[list, Field(description='Labels on the line: [{"text": str, "position": 0..1}], 0.5 is the middle')],
    source: Annotated[dict, Field(description=HANDLE_DESCRIPTION)],
    target: Annotated[dict, Field(description=HANDLE_DESCRIPTION)],
    strokeColor: Annotated[Optional[str], Field(description="Stroke color")] = None,
    strokeWidth: Annotated[Optional[float], Field(description="Stroke width")] = None,
    strokeStyle: Annotated[Optional[StrokeStyle], Field(description="Stroke style")] = None,
) -> str:
    """Create a Plait arrow line such as a straight, curve or elbow connector.

    Curves suit illustrative drawings and elbows suit standard flowcharts.
    When two shapes are linked in both directions, route the two lines so
    they do not overlap.

    Returns:
        JSON string with success, synced and the created element
    """
    return await _create(ElementType.ARROW_LINE.value, {
        "id": id,
        "type": type,
        "points": points,
        "shape": shape,
        "texts": texts,
        "source": source,
        "target": target,
        "strokeColor": strokeColor,
        "strokeWidth": strokeWidth,
        "strokeStyle": strokeStyle,
    })


@mcp.tool()
async def create_freehand_element(
    id: Annotated[str, Field(description=ID_DESCRIPTION)],
    type: Annotated[str, Field(description='Must be "freehand"')],
    points: Annotated[list, Field(description=POINTS_DESCRIPTION + ". The stroke as an ordered polyline")],
    shape: Annotated[FreehandShape, Field(description="Only feltTipPen is supported")],
    strokeColor: Annotated[Optional[str], Field(description="Stroke color")] = None,
    strokeWidth: Annotated[Optional[float], Field(description="Stroke width")] = None,
) -> str:
    """Create a Plait freehand stroke.

    Returns:
        JSON string with success, synced and the created element
    """
    return await _create(ElementType.FREEHAND.value, {
        "id": id,
        "type": type,
        "points": points,
        "shape": shape,
        "strokeColor": strokeColor,
        "strokeWidth": strokeWidth,
    })


# ============================================================================
# Canvas inspection
# ============================================================================

@mcp.tool()
async def get_canvas_elements() -> str:
    """List the elements currently on the canvas.

    Use it to find ids to bind arrow lines to.

    Returns:
        JSON string with the elements and their count
    """
    try:
        elements = await get_bridge().list_elements()
    except TransportUnavailable as e:
        return json.dumps({"success": False, "error": str(e)})
    return json.dumps({"success": True, "elements": elements, "count": len(elements)}, indent=2)
