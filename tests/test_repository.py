"""Tests for the element repository."""

import pytest

from mcp_plait_canvas.bindings import fix_bindings
from mcp_plait_canvas.errors import ElementConflict, ElementNotFound, ValidationError
from mcp_plait_canvas.repository import ElementRepository


def _shape(element_id, **extra):
    return {"id": element_id, "type": "geometry", "shape": "rectangle", **extra}


class Recorder:
    """Listener that records messages and what the repository held at the time."""

    def __init__(self, repository):
        self.repository = repository
        self.events = []

    def __call__(self, message, exclude=None):
        self.events.append((message, exclude, self.repository.count()))


class TestCreate:

    def test_stamps_bookkeeping(self, repository, geometry):
        stored = repository.create(geometry)
        assert stored["version"] == 1
        assert stored["createdAt"] == stored["updatedAt"]
        assert stored["source"] == "http"
        assert stored["id"] == "g1"

    def test_does_not_mutate_input(self, repository, geometry):
        repository.create(geometry)
        assert "version" not in geometry

    def test_mints_missing_id(self, repository):
        stored = repository.create({"type": "freehand", "shape": "feltTipPen", "points": []})
        assert stored["id"]
        assert repository.get(stored["id"])["type"] == "freehand"

    def test_origin_tag(self, repository, geometry):
        assert repository.create(geometry, source="mcp")["source"] == "mcp"

    def test_arrow_keeps_source_endpoint(self, repository, arrow):
        stored = repository.create(arrow, source="mcp")
        assert stored["source"] == {"boundId": "g1", "connection": [1, 0.5], "marker": "none"}

    def test_requires_type_and_shape(self, repository):
        with pytest.raises(ValidationError):
            repository.create({"id": "x", "type": "geometry"})
        with pytest.raises(ValidationError):
            repository.create({"id": "x", "shape": "rectangle"})
        assert repository.count() == 0

    def test_rejects_unknown_type(self, repository):
        with pytest.raises(ValidationError, match="Invalid element type"):
            repository.create({"type": "video", "shape": "rectangle"})

    def test_duplicate_id_is_conflict(self, repository, geometry):
        repository.create(geometry)
        with pytest.raises(ElementConflict):
            repository.create({**geometry, "text": "B"})
        assert repository.get("g1")["text"] == "A"

    def test_explicit_update_overwrites(self, repository, geometry):
        first = repository.create(geometry)
        repository.create(_shape("other"))
        updated = repository.create({**geometry, "text": "B"}, update=True)
        assert updated["version"] == 2
        assert updated["text"] == "B"
        assert updated["createdAt"] == first["createdAt"]
        assert [el["id"] for el in repository.list()] == ["g1", "other"]

    def test_update_cannot_change_type(self, repository, geometry):
        repository.create(geometry)
        with pytest.raises(ValidationError, match="immutable"):
            repository.create({**geometry, "type": "freehand"}, update=True)

    def test_update_unknown_id(self, repository, geometry):
        with pytest.raises(ElementNotFound):
            repository.update(geometry)

    def test_notifies_after_commit_before_return(self, repository, geometry):
        recorder = Recorder(repository)
        repository.subscribe(recorder)
        repository.create(geometry, client_id="c1")
        assert len(recorder.events) == 1
        message, exclude, count_at_emit = recorder.events[0]
        assert message["type"] == "element_created"
        assert message["element"]["id"] == "g1"
        assert message["element"]["version"] == 1
        assert exclude == "c1"
        assert count_at_emit == 1

    def test_failed_create_does_not_notify(self, repository):
        recorder = Recorder(repository)
        repository.subscribe(recorder)
        with pytest.raises(ValidationError):
            repository.create({"type": "geometry"})
        assert recorder.events == []


class TestReadDelete:

    def test_list_is_insertion_order(self, repository):
        for element_id in ("c", "a", "b"):
            repository.create(_shape(element_id))
        assert [el["id"] for el in repository.list()] == ["c", "a", "b"]

    def test_get_missing(self, repository):
        with pytest.raises(ElementNotFound):
            repository.get("nope")

    def test_returned_records_are_copies(self, repository, geometry):
        repository.create(geometry)
        repository.get("g1")["text"] = "changed"
        repository.list()[0]["text"] = "changed"
        assert repository.get("g1")["text"] == "A"

    def test_delete(self, repository, geometry):
        recorder = Recorder(repository)
        repository.subscribe(recorder)
        repository.create(geometry)
        repository.delete("g1", client_id="c2")
        assert "g1" not in repository
        message, exclude, count_at_emit = recorder.events[-1]
        assert message == {"type": "element_deleted", "elementId": "g1"}
        assert exclude == "c2"
        assert count_at_emit == 0

    def test_delete_missing(self, repository):
        with pytest.raises(ElementNotFound):
            repository.delete("nope")

    def test_reset_and_isolation(self, repository, geometry):
        repository.create(geometry)
        other = ElementRepository()
        assert other.count() == 0
        repository.reset()
        assert repository.list() == []

    def test_unsubscribe(self, repository, geometry):
        recorder = Recorder(repository)
        unsubscribe = repository.subscribe(recorder)
        unsubscribe()
        repository.create(geometry)
        assert recorder.events == []


class TestReplaceAll:

    def test_counts_and_stamps(self, repository, geometry):
        repository.create(geometry)
        result = repository.replace_all([geometry, _shape("b")], timestamp="2026-01-01T00:00:00Z")
        assert result.before_count == 1
        assert result.after_count == 2
        stored = repository.get("g1")
        assert stored["version"] == 2
        assert stored["syncedAt"] == result.synced_at
        assert stored["syncTimestamp"] == "2026-01-01T00:00:00Z"
        assert repository.get("b")["version"] == 1

    def test_drops_locally_deleted(self, repository, geometry):
        result = repository.replace_all([geometry, _shape("b", isDeleted=True)])
        assert result.after_count == 1
        assert "b" not in repository

    def test_malformed_deleted_entry_is_skipped(self, repository, geometry):
        result = repository.replace_all([geometry, {"id": "gone", "isDeleted": True}])
        assert result.after_count == 1
        assert "gone" not in repository

    @pytest.mark.parametrize("bad_id", [7, ["g1"]])
    def test_non_string_id_rejected(self, repository, geometry, bad_id):
        repository.create(geometry)
        with pytest.raises(ValidationError, match="id must be a string"):
            repository.replace_all([_shape(bad_id)])
        assert [el["id"] for el in repository.list()] == ["g1"]

    def test_never_observed_partially_applied(self, repository):
        repository.create(_shape("old"))
        recorder = Recorder(repository)
        repository.subscribe(recorder)
        batch = [_shape(f"e{i}") for i in range(25)]
        repository.replace_all(batch)
        assert recorder.events[-1][2] == 25
        assert len(repository.list()) == 25

    def test_invalid_batch_leaves_previous_set(self, repository, geometry):
        repository.create(geometry)
        with pytest.raises(ValidationError):
            repository.replace_all([_shape("a"), {"id": "bad", "type": "geometry"}])
        assert [el["id"] for el in repository.list()] == ["g1"]

    def test_empty_upload_clears(self, repository, geometry):
        repository.create(geometry)
        result = repository.replace_all([])
        assert (result.before_count, result.after_count) == (1, 0)
        assert repository.list() == []

    def test_stale_upload_clobbers_concurrent_create(self, repository, geometry):
        """Bulk write is last-writer-wins over the whole set; there is no merge."""
        repository.create(geometry)
        client_view = repository.list()
        repository.create(_shape("agent"), source="mcp")
        repository.replace_all(client_view, client_id="browser")
        assert [el["id"] for el in repository.list()] == ["g1"]

    def test_later_upload_wins(self, repository):
        repository.replace_all([_shape("from-a")], client_id="a")
        repository.replace_all([_shape("from-b")], client_id="b")
        assert [el["id"] for el in repository.list()] == ["from-b"]

    def test_notifies_everyone_but_originator(self, repository):
        recorder = Recorder(repository)
        repository.subscribe(recorder)
        result = repository.replace_all([_shape("a")], client_id="uploader")
        message, exclude, _ = recorder.events[-1]
        assert message["type"] == "elements_synced"
        assert message["count"] == 1
        assert message["timestamp"] == result.synced_at
        assert exclude == "uploader"

    def test_to_dict(self, repository):
        body = repository.replace_all([_shape("a")]).to_dict()
        assert set(body) == {"beforeCount", "afterCount", "syncedAt"}


def test_scenario_stale_arrow_endpoint_survives_repair(repository, geometry, arrow):
    assert repository.create(geometry)["version"] == 1
    repository.create(arrow)

    repository.delete("g1")
    fixed = fix_bindings(repository.list())

    assert [el["id"] for el in fixed] == ["a1"]
    # Endpoint references are outside what the repair touches.
    assert fixed[0]["source"]["boundId"] == "g1"
