"""
Canvas Client
=============

Client half of the sync channel, as used by a canvas front end (or a test
harness standing in for one).

- ``CanvasClient`` keeps the local projection of the canvas, applies push
  messages to it, pulls the full state on every (re)connect and uploads the
  full local state on demand.
- ``ConnectionSupervisor`` keeps the push channel open: one connection
  attempt at a time, a fixed delay before retrying after an unclean close,
  and no replay of anything on reconnect.

The local projection is a cache. Every batch that comes from the server is
passed through ``fix_bindings`` before it replaces or extends it.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

import httpx
import websockets
from websockets.exceptions import WebSocketException

from . import messages
from .bindings import dangling_references, fix_bindings
from .config import Settings
from .elements import generate_id, strip_bookkeeping
from .errors import ValidationError

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
DEFAULT_RECONNECT_DELAY = 3.0
SYNC_STATUS_RESET_DELAY = 2.0


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


# ============================================================================
# Connection supervision
# ============================================================================

class ConnectionSupervisor:
    """Keeps one push channel connection alive.

    ``connect`` is called as ``connect(url)`` and must return an async context
    manager yielding a connection that can be iterated for frames and exposes
    ``close()`` and ``close_code``; ``websockets.connect`` by default.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: Callable[[Any], None],
        on_open: Optional[Callable[[], Awaitable[Any]]] = None,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.attempts = 0
        self._on_message = on_message
        self._on_open = on_open
        self._on_status = on_status
        self._connect = connect or websockets.connect
        self._status = ConnectionStatus.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._connection = None
        self._stopping = False

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        logger.info("Push channel %s", status.value)
        if self._on_status is not None:
            self._on_status(status)

    def start(self) -> asyncio.Task:
        """Start supervising; a second call while running returns the same task."""
        if self.running:
            return self._task
        self._stopping = False
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Close the channel cleanly and stop reconnecting."""
        self._stopping = True
        if self._connection is not None:
            await self._connection.close()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _run(self) -> None:
        while not self._stopping:
            clean = await self._connect_once()
            if clean or self._stopping:
                break
            logger.info("Reconnecting push channel in %.1fs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _connect_once(self) -> bool:
        """Run one connection until it closes; True when it closed cleanly."""
        self.attempts += 1
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            async with self._connect(self.url) as connection:
                self._connection = connection
                self._set_status(ConnectionStatus.CONNECTED)
                if self._on_open is not None:
                    await self._on_open()
                async for frame in connection:
                    try:
                        self._on_message(frame)
                    except Exception:
                        logger.exception("Failed to apply push frame, discarding it")
                code = connection.close_code
                if code != NORMAL_CLOSURE:
                    logger.warning("Push channel closed with code %s", code)
                return code == NORMAL_CLOSURE
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning("Push channel error: %s", e)
            return False
        finally:
            self._connection = None
            self._set_status(ConnectionStatus.DISCONNECTED)


# ============================================================================
# Client
# ============================================================================

class CanvasClient:
    """Local projection of the canvas plus its sync channel."""

    def __init__(
        self,
        base_url: str,
        *,
        client_id: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connect: Optional[Callable[[str], Any]] = None,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id or uuid.uuid4().hex
        self.elements: List[dict] = []
        self.sync_status = SyncStatus.IDLE
        self.last_sync_time: Optional[datetime] = None
        self.last_sync_error: Optional[str] = None
        self._http = http
        self._owns_http = http is None
        self._status_reset: Optional[asyncio.TimerHandle] = None
        self.supervisor = ConnectionSupervisor(
            self.push_url,
            on_message=self.handle_raw,
            on_open=self.load,
            on_status=on_status,
            reconnect_delay=reconnect_delay,
            connect=connect,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "CanvasClient":
        kwargs.setdefault("reconnect_delay", settings.reconnect_delay)
        return cls(settings.canvas_server_url, **kwargs)

    @property
    def push_url(self) -> str:
        if self.base_url.startswith("https://"):
            ws_base = "wss://" + self.base_url[len("https://"):]
        elif self.base_url.startswith("http://"):
            ws_base = "ws://" + self.base_url[len("http://"):]
        else:
            ws_base = self.base_url
        return f"{ws_base}/ws?clientId={self.client_id}"

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.supervisor.status

    @property
    def is_connected(self) -> bool:
        return self.supervisor.status == ConnectionStatus.CONNECTED

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    def _headers(self) -> dict:
        return {"X-Client-Id": self.client_id}

    def connect(self) -> asyncio.Task:
        return self.supervisor.start()

    async def close(self) -> None:
        if self._status_reset is not None:
            self._status_reset.cancel()
            self._status_reset = None
        await self.supervisor.stop()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # Local projection
    # ------------------------------------------------------------------

    def _index(self, element_id: str) -> Optional[int]:
        for i, element in enumerate(self.elements):
            if element.get("id") == element_id:
                return i
        return None

    def _upsert(self, element: dict) -> None:
        index = self._index(element["id"])
        if index is None:
            self.elements.append(element)
        else:
            self.elements[index] = element

    def add_local(self, element: dict) -> dict:
        """Record an element drawn locally."""
        element = dict(element)
        element.setdefault("id", generate_id())
        self._upsert(element)
        return element

    def mark_deleted(self, element_id: str) -> bool:
        """Flag an element deleted locally; it is left out of the next upload."""
        index = self._index(element_id)
        if index is None:
            return False
        self.elements[index] = {**self.elements[index], "isDeleted": True}
        return True

    def replace_elements(self, elements: List[dict]) -> None:
        """Replace the projection with a server-sourced batch."""
        batch = [strip_bookkeeping(el) for el in elements if isinstance(el, dict)]
        dropped = dangling_references(batch)
        if dropped:
            logger.debug("Dropping %d stale reference(s): %s", len(dropped), dropped)
        self.elements = fix_bindings(batch)

    # ------------------------------------------------------------------
    # Push messages
    # ------------------------------------------------------------------

    def handle_raw(self, raw) -> None:
        """Apply one push frame; bad frames are logged and discarded."""
        try:
            message = messages.parse_message(raw)
        except ValidationError as e:
            logger.error("Error parsing push message: %s (%r)", e, raw)
            return
        self.apply_message(message)

    def apply_message(self, message: dict) -> None:
        kind = message.get("type")
        if kind == messages.ELEMENT_CREATED:
            element = message.get("element")
            if not isinstance(element, dict) or not isinstance(element.get("id"), str) or not element["id"]:
                logger.warning("Ignoring element_created without an element")
                return
            self._apply_created(strip_bookkeeping(element))
        elif kind == messages.ELEMENT_DELETED:
            index = self._index(message.get("elementId"))
            if index is not None:
                del self.elements[index]
                self.elements = fix_bindings(self.elements)
        elif kind == messages.ELEMENTS_SYNCED:
            logger.info("Sync confirmed by server: %s elements", message.get("count"))
        elif kind == messages.SYNC_STATUS:
            logger.info("Server sync status: %s elements", message.get("count"))
        else:
            logger.info("Unknown push message type: %s", kind)

    def _apply_created(self, element: dict) -> None:
        others = [el for el in self.elements if el.get("id") != element["id"]]
        fixed = fix_bindings(others + [element])[-1]
        self._upsert(fixed)

    # ------------------------------------------------------------------
    # Pull / bulk write
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """Pull the full canvas and replace the projection with it."""
        try:
            response = await self._client().get(f"{self.base_url}/api/elements")
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to load canvas elements: %s", e)
            return False
        elements = body.get("elements") if isinstance(body, dict) else None
        if not isinstance(elements, list):
            logger.warning("Canvas server returned no elements array")
            return False
        self.replace_elements(elements)
        logger.info("Loaded %d elements from canvas server", len(self.elements))
        return True

    def upload_payload(self) -> dict:
        active = [el for el in self.elements if not el.get("isDeleted")]
        return {
            "elements": [strip_bookkeeping(el) for el in active],
            "timestamp": messages.utc_now(),
        }

    async def sync_to_backend(self) -> bool:
        """Upload the full local state; returns True when the server accepted it."""
        if self._status_reset is not None:
            self._status_reset.cancel()
            self._status_reset = None
        self.sync_status = SyncStatus.SYNCING
        payload = self.upload_payload()
        logger.info("Syncing %d elements to backend", len(payload["elements"]))

        try:
            response = await self._client().post(
                f"{self.base_url}/api/elements/sync", json=payload, headers=self._headers()
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.sync_status = SyncStatus.ERROR
            self.last_sync_error = str(e)
            logger.error("Sync error: %s", e)
            return False

        if not response.is_success:
            self.sync_status = SyncStatus.ERROR
            self.last_sync_error = body.get("error") if isinstance(body, dict) else response.reason_phrase
            logger.error("Sync failed: %s", self.last_sync_error)
            return False

        self.sync_status = SyncStatus.SUCCESS
        self.last_sync_time = datetime.now(timezone.utc)
        self.last_sync_error = None
        logger.info("Sync successful: %s elements synced", body.get("count"))
        self._status_reset = asyncio.get_running_loop().call_later(
            SYNC_STATUS_RESET_DELAY, self._reset_sync_status
        )
        return True

    def _reset_sync_status(self) -> None:
        self._status_reset = None
        if self.sync_status == SyncStatus.SUCCESS:
            self.sync_status = SyncStatus.IDLE

    async def clear_canvas(self) -> None:
        """Delete every element on the server, then clear the local projection."""
        try:
            response = await self._client().get(f"{self.base_url}/api/elements")
            body = response.json()
            if isinstance(body, dict) and body.get("success") and body.get("elements"):
                await asyncio.gather(*[
                    self._client().delete(
                        f"{self.base_url}/api/elements/{el['id']}", headers=self._headers()
                    )
                    for el in body["elements"]
                    if isinstance(el, dict) and el.get("id")
                ])
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error clearing canvas: %s", e)
        self.elements = []
