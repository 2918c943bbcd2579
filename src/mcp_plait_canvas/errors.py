"""Error taxonomy for the canvas core.

Referential problems between elements (dangling ``boundElements`` or
``containerId``) are not represented here: they are repaired silently by
:func:`mcp_plait_canvas.bindings.fix_bindings`.
"""


class CanvasError(Exception):
    """Base class for all canvas errors."""

    status_code = 500


class ValidationError(CanvasError):
    """Malformed element, missing required field or wrong type for the operation."""

    status_code = 400


class ElementNotFound(CanvasError):
    """No element with the requested id exists in the repository."""

    status_code = 404

    def __init__(self, element_id: str):
        super().__init__(f"Element not found: {element_id}")
        self.element_id = element_id


class ElementConflict(CanvasError):
    """A create request reused an id that is already stored."""

    status_code = 409

    def __init__(self, element_id: str):
        super().__init__(f"Element already exists: {element_id}")
        self.element_id = element_id


class TransportUnavailable(CanvasError):
    """The canvas server could not be reached or answered with a failure."""

    status_code = 503
