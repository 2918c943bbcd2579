"""
Element Repository
==================

The canvas server's authoritative element set. Elements are kept in a dict,
so iteration order is insertion order and therefore z-order.

Every mutation notifies the subscribed listeners from inside the mutating
call, before it returns. The push hub's listener only enqueues, so the
notification is committed together with the change and ahead of the HTTP
response.

``replace_all`` is last-writer-wins for the whole set: an upload from a client
with a stale view discards whatever was written since that client last pulled.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from . import messages
from .elements import generate_id, validate_element
from .errors import ElementConflict, ElementNotFound, ValidationError

logger = logging.getLogger(__name__)

Listener = Callable[..., None]


@dataclass(frozen=True)
class SyncResult:
    before_count: int
    after_count: int
    synced_at: str

    def to_dict(self) -> dict:
        return {
            "beforeCount": self.before_count,
            "afterCount": self.after_count,
            "syncedAt": self.synced_at,
        }


class ElementRepository:
    """In-memory element store for one canvas."""

    def __init__(self):
        self._elements: Dict[str, dict] = {}
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop every element. Listeners stay subscribed."""
        self._elements = {}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(message, exclude=client_id)``; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, message: dict, exclude: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            listener(message, exclude=exclude)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, element_id: str) -> dict:
        try:
            return copy.deepcopy(self._elements[element_id])
        except KeyError:
            raise ElementNotFound(element_id) from None

    def list(self) -> List[dict]:
        return [copy.deepcopy(el) for el in self._elements.values()]

    def count(self) -> int:
        return len(self._elements)

    def __len__(self) -> int:
        return len(self._elements)

    def __contains__(self, element_id) -> bool:
        return element_id in self._elements

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        element: dict,
        *,
        source: str = "http",
        client_id: Optional[str] = None,
        update: bool = False,
    ) -> dict:
        """Store a new element and return the stored record.

        Raises:
            ValidationError: ``type``/``shape`` missing or ``type`` unknown.
            ElementConflict: the id is taken and ``update`` is false.
        """
        validate_element(element)
        stored = copy.deepcopy(element)
        element_id = stored.get("id") or generate_id()
        if not isinstance(element_id, str):
            raise ValidationError("Element id must be a string")
        stored["id"] = element_id

        now = messages.utc_now()
        previous = self._elements.get(element_id)
        if previous is not None:
            if not update:
                raise ElementConflict(element_id)
            if previous.get("type") != stored["type"]:
                raise ValidationError(
                    f"Element type is immutable: {previous.get('type')} -> {stored['type']}"
                )
            stored["createdAt"] = previous.get("createdAt", now)
            stored["version"] = previous.get("version", 0) + 1
            stored["updatedAt"] = now
        else:
            stored.setdefault("createdAt", now)
            stored.setdefault("updatedAt", stored["createdAt"])
            stored.setdefault("version", 1)
        # Arrow lines own ``source`` (their start endpoint).
        stored.setdefault("source", source)

        self._elements[element_id] = stored
        logger.debug("Stored element %s (%s, version %s)", element_id, stored["type"], stored["version"])
        self._emit(messages.element_created(copy.deepcopy(stored)), exclude=client_id)
        return copy.deepcopy(stored)

    def update(self, element: dict, *, source: str = "http", client_id: Optional[str] = None) -> dict:
        """Overwrite an existing element, keeping its position in z-order."""
        element_id = element.get("id") if isinstance(element, dict) else None
        if element_id not in self._elements:
            raise ElementNotFound(str(element_id))
        return self.create(element, source=source, client_id=client_id, update=True)

    def delete(self, element_id: str, *, client_id: Optional[str] = None) -> None:
        if element_id not in self._elements:
            raise ElementNotFound(element_id)
        del self._elements[element_id]
        logger.debug("Deleted element %s", element_id)
        self._emit(messages.element_deleted(element_id), exclude=client_id)

    def replace_all(
        self,
        elements: Iterable[dict],
        *,
        client_id: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> SyncResult:
        """Install ``elements`` as the complete canvas in one swap.

        The new set is fully built and validated before the previous set is
        discarded, so a reader never sees a half-applied upload. Elements
        flagged ``isDeleted`` are dropped.
        """
        synced_at = messages.utc_now()
        previous = self._elements
        incoming: Dict[str, dict] = {}

        for element in elements:
            if isinstance(element, dict) and element.get("isDeleted"):
                continue
            validate_element(element)
            stored = copy.deepcopy(element)
            element_id = stored.get("id") or generate_id()
            if not isinstance(element_id, str):
                raise ValidationError("Element id must be a string")
            stored["id"] = element_id
            prior = previous.get(element_id, {})
            stored["createdAt"] = prior.get("createdAt", synced_at)
            stored["updatedAt"] = synced_at
            stored["version"] = prior.get("version", 0) + 1
            stored["syncedAt"] = synced_at
            if timestamp:
                stored["syncTimestamp"] = timestamp
            incoming[element_id] = stored

        self._elements = incoming

        result = SyncResult(before_count=len(previous), after_count=len(incoming), synced_at=synced_at)
        logger.info("Bulk write replaced %d elements with %d", result.before_count, result.after_count)
        self._emit(messages.elements_synced(result.after_count, synced_at), exclude=client_id)
        return result
