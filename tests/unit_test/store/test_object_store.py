"""
Unit tests for the SQL backed object store.

Covers identity and versioning (generation, resource_version), optimistic
concurrency, finalizer-gated deletion, owner cascades and change events.
"""

from datetime import timezone

import pytest

from stackpilot.db.models import StoredObject
from stackpilot.db.store import EventType
from stackpilot.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from stackpilot.reconcile.conditions import set_condition
from stackpilot.resources import ConditionStatus, ConditionType, Kind, Resource


def _create(store, kind=Kind.GLANCE, name="glance", spec=None, **kwargs):
    resource = Resource.new(kind, name, spec=spec or {"replicas": 1}, **kwargs)
    return store.create(resource)


class TestCreateAndGet:
    def test_create_assigns_identity(self, store):
        created = _create(store)
        assert created.metadata.uid
        assert created.metadata.generation == 1
        assert created.metadata.resource_version == 1
        assert created.metadata.creation_timestamp is not None
        assert created.metadata.creation_timestamp.tzinfo is not None

    def test_create_duplicate_raises(self, store):
        _create(store)
        with pytest.raises(AlreadyExistsError):
            _create(store)

    def test_same_name_in_other_namespace_is_allowed(self, store):
        _create(store)
        other = store.create(Resource.new(Kind.GLANCE, "glance", "other"))
        assert other.namespace == "other"

    def test_get_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.get(Kind.GLANCE, "default", "missing")
        assert exc_info.value.name == "missing"
        assert store.find(Kind.GLANCE, "default", "missing") is None

    def test_list_filters(self, store):
        _create(store, name="a", labels={"tier": "api"})
        _create(store, name="b", labels={"tier": "db"})
        _create(store, kind=Kind.NOVA, name="c", labels={"tier": "api"})

        assert [r.name for r in store.list(kind=Kind.GLANCE)] == ["a", "b"]
        assert [r.name for r in store.list(labels={"tier": "api"})] == ["a", "c"]
        assert store.list(kind=Kind.GLANCE, namespace="other") == []

    def test_list_by_owner(self, store):
        owner = _create(store, name="owner")
        child = Resource.new(Kind.SECRET, "owned")
        child.metadata.owner_references = [owner.owner_reference()]
        store.create(child)
        _create(store, kind=Kind.SECRET, name="unowned")

        assert [r.name for r in store.list(owner_uid=owner.metadata.uid)] == ["owned"]


class TestUpdate:
    def test_spec_change_bumps_generation(self, store):
        created = _create(store)
        created.spec = {"replicas": 3}
        updated = store.update(created)
        assert updated.metadata.generation == 2
        assert updated.metadata.resource_version == 2
        assert updated.spec == {"replicas": 3}

    def test_metadata_change_keeps_generation(self, store):
        created = _create(store)
        created.metadata.labels = {"team": "cloud"}
        updated = store.update(created)
        assert updated.metadata.generation == 1
        assert updated.metadata.resource_version == 2
        assert updated.metadata.labels == {"team": "cloud"}

    def test_stale_update_conflicts(self, store):
        created = _create(store)
        first = created.model_copy(deep=True)
        first.spec = {"replicas": 2}
        store.update(first)

        created.spec = {"replicas": 5}
        with pytest.raises(ConflictError):
            store.update(created)
        assert store.get(Kind.GLANCE, "default", "glance").spec == {"replicas": 2}

    def test_update_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.update(Resource.new(Kind.GLANCE, "ghost"))

    def test_update_status_keeps_generation(self, store):
        created = _create(store)
        created.status.conditions = set_condition(
            created.conditions, ConditionType.READY, ConditionStatus.TRUE, "Ready", "ok", 1
        )
        created.status.observed_generation = 1
        updated = store.update_status(created)

        assert updated.metadata.generation == 1
        assert updated.metadata.resource_version == 2
        assert updated.status.observed_generation == 1
        assert updated.conditions[0].status == ConditionStatus.TRUE
        assert updated.conditions[0].last_transition_time == created.conditions[0].last_transition_time

    def test_stale_status_update_conflicts(self, store):
        created = _create(store)
        store.update_status(created.model_copy(deep=True))
        with pytest.raises(ConflictError):
            store.update_status(created)

    def test_status_update_does_not_touch_spec(self, store):
        created = _create(store)
        created.spec = {"replicas": 9}
        created.status.api_endpoint = "http://glance-api.default.svc:9292"
        store.update_status(created)

        stored = store.get(Kind.GLANCE, "default", "glance")
        assert stored.spec == {"replicas": 1}
        assert stored.status.api_endpoint == "http://glance-api.default.svc:9292"


class TestDelete:
    def test_delete_without_finalizers_removes(self, store):
        _create(store)
        store.delete(Kind.GLANCE, "default", "glance")
        assert store.find(Kind.GLANCE, "default", "glance") is None

    def test_delete_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            store.delete(Kind.GLANCE, "default", "glance")

    def test_finalizer_blocks_removal(self, store):
        resource = Resource.new(Kind.GLANCE, "glance")
        resource.metadata.finalizers = ["example.com/cleanup"]
        store.create(resource)

        store.delete(Kind.GLANCE, "default", "glance")
        marked = store.get(Kind.GLANCE, "default", "glance")
        assert marked.is_deleting

        # A second delete request does not move the deletion timestamp
        store.delete(Kind.GLANCE, "default", "glance")
        assert store.get(Kind.GLANCE, "default", "glance").metadata.deletion_timestamp == (
            marked.metadata.deletion_timestamp
        )

        current = store.get(Kind.GLANCE, "default", "glance")
        current.metadata.finalizers = []
        store.update(current)
        assert store.find(Kind.GLANCE, "default", "glance") is None

    def test_removal_cascades_to_owned_objects(self, store):
        owner = _create(store, name="owner")
        for name in ("secret-a", "secret-b"):
            child = Resource.new(Kind.SECRET, name)
            child.metadata.owner_references = [owner.owner_reference()]
            store.create(child)

        store.delete(Kind.GLANCE, "default", "owner")

        assert store.list(kind=Kind.SECRET) == []

    def test_cascade_marks_children_with_finalizers(self, store):
        owner = _create(store, name="owner")
        child = Resource.new(Kind.NOVA, "child")
        child.metadata.owner_references = [owner.owner_reference()]
        child.metadata.finalizers = ["example.com/cleanup"]
        store.create(child)

        store.delete(Kind.GLANCE, "default", "owner")

        assert store.find(Kind.GLANCE, "default", "owner") is None
        assert store.get(Kind.NOVA, "default", "child").is_deleting


class TestEvents:
    def test_events_follow_writes(self, store):
        events = []
        store.subscribe(events.append)

        created = _create(store)
        created.spec = {"replicas": 2}
        store.update(created)
        store.delete(Kind.GLANCE, "default", "glance")

        assert [e.type for e in events] == [EventType.ADDED, EventType.MODIFIED, EventType.DELETED]
        assert events[1].resource.metadata.generation == 2

    def test_cascade_publishes_child_deletions(self, store):
        owner = _create(store, name="owner")
        child = Resource.new(Kind.SECRET, "child")
        child.metadata.owner_references = [owner.owner_reference()]
        store.create(child)

        events = []
        store.subscribe(events.append)
        store.delete(Kind.GLANCE, "default", "owner")

        assert [(e.type, e.resource.name) for e in events] == [
            (EventType.DELETED, "owner"),
            (EventType.DELETED, "child"),
        ]

    def test_failed_writes_publish_nothing(self, store):
        created = _create(store)
        events = []
        store.subscribe(events.append)
        with pytest.raises(AlreadyExistsError):
            _create(store)
        stale = created.model_copy(deep=True)
        stale.metadata.resource_version = 7
        with pytest.raises(ConflictError):
            store.update_status(stale)
        assert events == []

    def test_handler_errors_do_not_break_writes(self, store):
        def broken(event):
            raise RuntimeError("boom")

        seen = []
        store.subscribe(broken)
        store.subscribe(seen.append)

        created = _create(store)

        assert created.name == "glance"
        assert len(seen) == 1


class TestTimestamps:
    def test_columns_are_timezone_aware(self):
        for column in ("gmt_created", "gmt_updated", "gmt_deleted"):
            assert StoredObject.__table__.c[column].type.timezone is True

    def test_default_timestamps_carry_utc(self):
        row = StoredObject(uid="u1", kind=Kind.GLANCE, namespace="default", name="glance")
        assert row.gmt_created.tzinfo is timezone.utc
        assert row.gmt_updated.tzinfo is timezone.utc

    def test_writes_store_aware_timestamps(self, store):
        created = _create(store)
        created.spec = {"replicas": 2}
        store.update(created)
        resource = Resource.new(Kind.GLANCE, "keep")
        resource.metadata.finalizers = ["example.com/cleanup"]
        store.create(resource)
        store.delete(Kind.GLANCE, "default", "keep")

        marked = store.get(Kind.GLANCE, "default", "keep")
        assert marked.metadata.deletion_timestamp.tzinfo is not None
        assert marked.metadata.deletion_timestamp >= marked.metadata.creation_timestamp
        assert store.get(Kind.GLANCE, "default", "glance").metadata.generation == 2
