"""Tests for the MCP tools' result payloads."""

import json

import httpx
import pytest

from mcp_plait_canvas import server
from mcp_plait_canvas.bridge import ToolBridge
from mcp_plait_canvas.config import Settings


def _unreachable(request):
    raise httpx.ConnectError("connection refused", request=request)


def _accepting(request):
    if request.method == "GET":
        return httpx.Response(200, json={"success": True, "elements": [], "count": 0})
    element = json.loads(request.content)
    return httpx.Response(201, json={"success": True, "element": {**element, "version": 1}})


@pytest.fixture
def use_bridge():
    def _use(handler, enable_canvas_sync=True):
        settings = Settings(canvas_server_url="http://canvas.test", enable_canvas_sync=enable_canvas_sync)
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        server.set_bridge(ToolBridge(settings, http=http))

    yield _use
    server.set_bridge(None)


GEOMETRY_ARGS = {
    "id": "ABCDE",
    "type": "geometry",
    "points": [[0, 0], [100, 50]],
    "shape": "rectangle",
    "text": "Start",
}


class TestCreationTools:

    @pytest.mark.asyncio
    async def test_synced(self, use_bridge):
        use_bridge(_accepting)
        result = json.loads(await server.create_geometry_element(**GEOMETRY_ARGS))
        assert result["success"] is True
        assert result["synced"] is True
        assert result["element"]["text"] == "Start"
        assert "version" not in result["element"]

    @pytest.mark.asyncio
    async def test_sync_disabled_is_success(self, use_bridge):
        use_bridge(_unreachable, enable_canvas_sync=False)
        result = json.loads(await server.create_geometry_element(**GEOMETRY_ARGS))
        assert result["success"] is True
        assert result["synced"] is False
        assert result["element"]["id"] == "ABCDE"

    @pytest.mark.asyncio
    async def test_unreachable_canvas_is_failure_with_element(self, use_bridge):
        use_bridge(_unreachable)
        result = json.loads(await server.create_geometry_element(**GEOMETRY_ARGS))
        assert result["success"] is False
        assert "Failed to create element" in result["error"]
        assert result["element"]["id"] == "ABCDE"
        assert result["element"]["shape"] == "rectangle"

    @pytest.mark.asyncio
    async def test_wrong_type(self, use_bridge):
        use_bridge(_accepting)
        result = json.loads(await server.create_freehand_element(
            id="ABCDE", type="geometry", points=[[0, 0], [1, 1]], shape="feltTipPen",
        ))
        assert result == {"success": False, "error": "Failed to create element: type must be freehand"}

    @pytest.mark.asyncio
    async def test_arrow_line(self, use_bridge):
        use_bridge(_accepting)
        result = json.loads(await server.create_arrow_line_element(
            id="BCDEF",
            type="arrow-line",
            points=[[100, 25], [200, 25]],
            shape="elbow",
            texts=[{"text": "next", "position": 0.5}],
            source={"boundId": "ABCDE", "connection": [1, 0.5], "marker": "none"},
            target={"marker": "arrow"},
        ))
        assert result["success"] is True
        assert result["element"]["source"]["boundId"] == "ABCDE"

    @pytest.mark.asyncio
    async def test_arrow_line_missing_marker(self, use_bridge):
        use_bridge(_accepting)
        result = json.loads(await server.create_arrow_line_element(
            id="BCDEF",
            type="arrow-line",
            points=[[100, 25], [200, 25]],
            shape="straight",
            texts=[],
            source={},
            target={"marker": "arrow"},
        ))
        assert result["success"] is False
        assert "source.marker" in result["error"]

    @pytest.mark.asyncio
    async def test_freehand(self, use_bridge):
        use_bridge(_accepting)
        result = json.loads(await server.create_freehand_element(
            id="CDEFG", type="freehand", points=[[0, 0], [5, 8], [9, 3]], shape="feltTipPen", strokeWidth=2,
        ))
        assert result["success"] is True
        assert result["element"]["strokeWidth"] == 2


class TestCanvasInspection:

    @pytest.mark.asyncio
    async def test_get_canvas_elements(self, use_bridge):
        use_bridge(_accepting)
        result = json.loads(await server.get_canvas_elements())
        assert result == {"success": True, "elements": [], "count": 0}

    @pytest.mark.asyncio
    async def test_get_canvas_elements_unreachable(self, use_bridge):
        use_bridge(_unreachable)
        result = json.loads(await server.get_canvas_elements())
        assert result["success"] is False


@pytest.mark.asyncio
async def test_tools_are_registered():
    names = {tool.name for tool in await server.mcp.list_tools()}
    assert {
        "create_geometry_element",
        "create_arrow_line_element",
        "create_freehand_element",
        "get_canvas_elements",
    } <= names
