"""
Tool Bridge
===========

Turns agent tool calls into canvas writes.

A request is validated completely before any network call. The write to the
canvas server is best effort: whether the agent produced a valid element and
whether it landed on a live canvas are reported separately, as a ``Synced``
or ``Degraded`` outcome, and transport failures never raise.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx

from .config import Settings
from .elements import parse_tool_element, strip_bookkeeping
from .errors import TransportUnavailable, ValidationError

logger = logging.getLogger(__name__)

OPERATIONS = ("create",)

SYNC_DISABLED = "canvas sync disabled"


@dataclass(frozen=True)
class Synced:
    """The canvas server stored the element."""

    element: dict
    synced = True
    reason = None


@dataclass(frozen=True)
class Degraded:
    """The element is well formed but did not reach the canvas."""

    element: dict
    reason: str
    synced = False


SyncOutcome = Union[Synced, Degraded]


def _error_detail(response: httpx.Response) -> str:
    """The ``error`` field of a canvas failure response, if it has one."""
    try:
        body = response.json()
    except ValueError:
        return ""
    return str(body.get("error") or "") if isinstance(body, dict) else ""


class ToolBridge:
    def __init__(self, settings: Settings, http: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._http = http

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.sync_timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def create_element(self, kind: str, payload: dict) -> SyncOutcome:
        """Validate ``payload`` as a ``kind`` element and push it to the canvas.

        Raises:
            ValidationError: the request is malformed; nothing was sent.
        """
        element = parse_tool_element(kind, payload)
        logger.debug("Creating %s element %s via tool bridge", kind, element["id"])
        return await self.sync("create", element)

    async def sync(self, operation: str, element: dict) -> SyncOutcome:
        if operation not in OPERATIONS:
            raise ValidationError(f"Unknown sync operation: {operation}")
        logger.debug("Canvas sync attempt: %s", operation)

        if not self.settings.enable_canvas_sync:
            logger.debug("Canvas sync disabled, skipping %s", operation)
            return Degraded(element, SYNC_DISABLED)

        try:
            stored = await self._post_element(element)
        except TransportUnavailable as e:
            logger.warning("Canvas sync failed for %s: %s", operation, e)
            return Degraded(element, str(e))

        logger.debug("Canvas sync successful: %s %s", operation, stored.get("id"))
        return Synced(strip_bookkeeping(stored))

    async def _post_element(self, element: dict) -> dict:
        url = f"{self.settings.canvas_server_url.rstrip('/')}/api/elements"
        try:
            response = await self._client().post(
                url, json=element, headers={"X-Element-Source": "mcp"}
            )
        except httpx.HTTPError as e:
            raise TransportUnavailable(f"Canvas server unreachable at {url}: {e}") from e

        if not response.is_success:
            detail = _error_detail(response)
            raise TransportUnavailable(
                f"Canvas sync failed: {response.status_code} {response.reason_phrase}"
                + (f" ({detail})" if detail else "")
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportUnavailable(f"Canvas server sent invalid JSON: {e}") from e
        stored = body.get("element") if isinstance(body, dict) else None
        return stored if isinstance(stored, dict) else element

    async def list_elements(self) -> list:
        """Fetch the canvas' current elements, bookkeeping removed."""
        if not self.settings.enable_canvas_sync:
            raise TransportUnavailable(SYNC_DISABLED)
        url = f"{self.settings.canvas_server_url.rstrip('/')}/api/elements"
        try:
            response = await self._client().get(url)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportUnavailable(f"Canvas server unavailable: {e}") from e
        return [strip_bookkeeping(el) for el in body.get("elements", []) if isinstance(el, dict)]
