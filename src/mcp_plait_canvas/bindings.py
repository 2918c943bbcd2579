"""Repair of cross-references between elements.

Clients hold a cached projection of the canvas that can be stale: another
client may have deleted an element that this batch still points at. Before a
batch reaches the renderer (or the repository) the references are checked
against the batch itself and anything unresolvable is dropped.

Only ``boundElements`` and ``containerId`` are repaired. Arrow endpoint
``source.boundId``/``target.boundId`` are left as they are.
"""

from typing import Iterable, List

BINDING_TYPES = ("text", "arrow")


def _known_ids(batch) -> set:
    return {el["id"] for el in batch if isinstance(el, dict) and isinstance(el.get("id"), str) and el["id"]}


def _resolves(ref, known_ids) -> bool:
    # Only string ids can name an element; anything else dangles.
    return isinstance(ref, str) and ref in known_ids


def _valid_binding(binding, known_ids) -> bool:
    if not isinstance(binding, dict):
        return False
    binding_id = binding.get("id")
    binding_type = binding.get("type")
    if not binding_id or not binding_type:
        return False
    if binding_type not in BINDING_TYPES:
        return False
    return _resolves(binding_id, known_ids)


def fix_bindings(elements: Iterable[dict]) -> List[dict]:
    """Return a repaired copy of ``elements``.

    - ``boundElements`` keeps only object entries whose ``type`` is text or
      arrow and whose ``id`` is in the batch. An empty result, or a value
      that is not a list, removes the key.
    - ``containerId`` is removed when it names no element of the batch.

    The input is not modified and ``fix_bindings(fix_bindings(x)) ==
    fix_bindings(x)``.
    """
    batch = list(elements)
    known_ids = _known_ids(batch)

    fixed = []
    for element in batch:
        if not isinstance(element, dict):
            continue
        out = dict(element)

        if "boundElements" in out:
            bound = out["boundElements"]
            kept = []
            if isinstance(bound, list):
                kept = [dict(b) for b in bound if _valid_binding(b, known_ids)]
            if kept:
                out["boundElements"] = kept
            else:
                del out["boundElements"]

        if "containerId" in out and not _resolves(out["containerId"], known_ids):
            del out["containerId"]

        fixed.append(out)
    return fixed


def dangling_references(elements: Iterable[dict]) -> List[dict]:
    """List what ``fix_bindings`` would drop, for diagnostics.

    Each entry is ``{"element": id, "field": ..., "ref": ...}``.
    """
    batch = [el for el in elements if isinstance(el, dict)]
    known_ids = _known_ids(batch)
    found = []
    for element in batch:
        bound = element.get("boundElements")
        if isinstance(bound, list):
            for binding in bound:
                if not _valid_binding(binding, known_ids):
                    ref = binding.get("id") if isinstance(binding, dict) else binding
                    found.append({"element": element.get("id"), "field": "boundElements", "ref": ref})
        container = element.get("containerId")
        if "containerId" in element and not _resolves(container, known_ids):
            found.append({"element": element.get("id"), "field": "containerId", "ref": container})
    return found
