"""
Canvas Server
=============

HTTP and push channel surface of the element repository.

Routes:
- GET    /api/elements           full state, bookkeeping included
- POST   /api/elements           create one element
- POST   /api/elements/sync      bulk write (client reconciliation)
- GET    /api/elements/{id}      one element
- PUT    /api/elements/{id}      explicit overwrite of an existing element
- DELETE /api/elements/{id}      remove one element
- GET    /health
- WS     / and /ws               push channel (``?clientId=``)

Requests may carry ``X-Client-Id`` (the id the same client uses on its push
channel) so that its own writes are not echoed back to it, and
``X-Element-Source`` to tag the origin of a created element.
"""

import asyncio
import json
import logging
from typing import Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from . import messages
from .elements import is_origin_tag
from .errors import CanvasError, ValidationError
from .push import PushHub
from .repository import ElementRepository

logger = logging.getLogger(__name__)

CLIENT_ID_HEADER = "X-Client-Id"
SOURCE_HEADER = "X-Element-Source"


async def _json_body(request: Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON: {str(e)}") from e


def _client_id(request: Request) -> Optional[str]:
    return request.headers.get(CLIENT_ID_HEADER) or None


def _origin(request: Request) -> str:
    origin = request.headers.get(SOURCE_HEADER, "http")
    return origin if is_origin_tag(origin) else "http"


# ============================================================================
# HTTP handlers
# ============================================================================

async def list_elements(request: Request) -> JSONResponse:
    elements = request.app.state.repository.list()
    return JSONResponse({"success": True, "elements": elements, "count": len(elements)})


async def create_element(request: Request) -> JSONResponse:
    body = await _json_body(request)
    element = request.app.state.repository.create(
        body, source=_origin(request), client_id=_client_id(request)
    )
    return JSONResponse({"success": True, "element": element}, status_code=201)


async def sync_elements(request: Request) -> JSONResponse:
    body = await _json_body(request)
    if not isinstance(body, dict) or not isinstance(body.get("elements"), list):
        raise ValidationError("Request body must contain an elements array")
    result = request.app.state.repository.replace_all(
        body["elements"],
        client_id=_client_id(request),
        timestamp=body.get("timestamp"),
    )
    return JSONResponse({"success": True, "count": result.after_count, **result.to_dict()})


async def get_element(request: Request) -> JSONResponse:
    element = request.app.state.repository.get(request.path_params["element_id"])
    return JSONResponse({"success": True, "element": element})


async def update_element(request: Request) -> JSONResponse:
    body = await _json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("Element must be a JSON object")
    body = {**body, "id": request.path_params["element_id"]}
    element = request.app.state.repository.update(
        body, source=_origin(request), client_id=_client_id(request)
    )
    return JSONResponse({"success": True, "element": element})


async def delete_element(request: Request) -> JSONResponse:
    element_id = request.path_params["element_id"]
    request.app.state.repository.delete(element_id, client_id=_client_id(request))
    return JSONResponse({"success": True, "message": f"Element {element_id} deleted"})


async def health(request: Request) -> JSONResponse:
    return JSONResponse({
        "status": "ok",
        "elements": request.app.state.repository.count(),
        "clients": len(request.app.state.hub),
    })


async def canvas_error(request: Request, exc: CanvasError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"success": False, "error": str(exc)}, status_code=exc.status_code)


# ============================================================================
# Push channel
# ============================================================================

def _handle_inbound(client_id: str, raw) -> None:
    try:
        data = messages.parse_message(raw)
    except ValidationError as e:
        logger.warning("Discarding message from %s: %s", client_id, e)
        return
    if data["type"] == "ping":
        logger.debug("Ping from %s", client_id)
    else:
        logger.debug("Ignoring %s message from %s", data["type"], client_id)


async def push_endpoint(websocket: WebSocket) -> None:
    hub: PushHub = websocket.app.state.hub
    repository: ElementRepository = websocket.app.state.repository

    await websocket.accept()
    channel = hub.register(websocket.query_params.get("clientId"))
    channel.put(messages.sync_status(repository.count()))

    async def send(message: dict) -> None:
        await websocket.send_text(messages.encode(message))

    pump = asyncio.create_task(channel.pump(send))
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            _handle_inbound(channel.client_id, frame.get("text") or frame.get("bytes"))
    finally:
        hub.unregister(channel)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)


# ============================================================================
# Application factory
# ============================================================================

def create_app(
    repository: Optional[ElementRepository] = None,
    hub: Optional[PushHub] = None,
) -> Starlette:
    """Build the canvas app around ``repository`` and ``hub`` (fresh ones by default)."""
    repository = repository if repository is not None else ElementRepository()
    hub = hub if hub is not None else PushHub()
    repository.subscribe(hub.publish)

    app = Starlette(
        routes=[
            Route("/api/elements", endpoint=list_elements, methods=["GET"]),
            Route("/api/elements", endpoint=create_element, methods=["POST"]),
            Route("/api/elements/sync", endpoint=sync_elements, methods=["POST"]),
            Route("/api/elements/{element_id}", endpoint=get_element, methods=["GET"]),
            Route("/api/elements/{element_id}", endpoint=update_element, methods=["PUT"]),
            Route("/api/elements/{element_id}", endpoint=delete_element, methods=["DELETE"]),
            Route("/health", endpoint=health, methods=["GET"]),
            WebSocketRoute("/", endpoint=push_endpoint),
            WebSocketRoute("/ws", endpoint=push_endpoint),
        ],
        exception_handlers={CanvasError: canvas_error},
    )
    app.state.repository = repository
    app.state.hub = hub
    return app
