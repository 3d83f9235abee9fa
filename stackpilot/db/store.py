# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Object store boundary.

The reconcilers only talk to the ``ObjectStore`` interface. ``SqlObjectStore``
implements it on top of a single SQLModel table and provides the semantics a
declarative store is expected to have:

- ``generation`` is bumped whenever the spec changes
- ``resource_version`` is bumped on every write and checked on every update
- deleting an object with finalizers only marks it; it is removed once the
  last finalizer is gone
- removing an object cascades to every object it controls
- committed changes are published to subscribers as ``ObjectEvent``
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stackpilot.db.models import StoredObject, utc_now
from stackpilot.exceptions import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from stackpilot.resources import ObjectMeta, ObjectStatus, OwnerReference, Resource, new_uid

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ObjectEvent:
    type: EventType
    resource: Resource


EventHandler = Callable[[ObjectEvent], None]


class ObjectStore(ABC):
    """Abstract declarative object store"""

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str) -> Resource:
        """Return the object or raise NotFoundError"""

    @abstractmethod
    def list(
        self,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        owner_uid: Optional[str] = None,
    ) -> List[Resource]:
        """List objects matching every given filter"""

    @abstractmethod
    def create(self, resource: Resource) -> Resource:
        """Create the object; raise AlreadyExistsError if the name is taken"""

    @abstractmethod
    def update(self, resource: Resource) -> Resource:
        """Write metadata and spec; raise ConflictError on a stale resource_version"""

    @abstractmethod
    def update_status(self, resource: Resource) -> Resource:
        """Write status only; raise ConflictError on a stale resource_version"""

    @abstractmethod
    def delete(self, kind: str, namespace: str, name: str) -> None:
        """Request deletion of the object"""

    @abstractmethod
    def subscribe(self, handler: EventHandler) -> None:
        """Register a handler called for every committed change"""

    def find(self, kind: str, namespace: str, name: str) -> Optional[Resource]:
        try:
            return self.get(kind, namespace, name)
        except NotFoundError:
            return None


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_resource(row: StoredObject) -> Resource:
    return Resource(
        kind=row.kind,
        metadata=ObjectMeta(
            name=row.name,
            namespace=row.namespace,
            uid=row.uid,
            generation=row.generation,
            resource_version=row.resource_version,
            labels=dict(row.labels or {}),
            finalizers=list(row.finalizers or []),
            owner_references=[OwnerReference(**ref) for ref in row.owner_references or []],
            creation_timestamp=_aware(row.gmt_created),
            deletion_timestamp=_aware(row.gmt_deleted),
        ),
        spec=dict(row.spec or {}),
        status=ObjectStatus.model_validate(row.status or {}),
    )


class SqlObjectStore(ObjectStore):
    """ObjectStore backed by a relational database through SQLAlchemy"""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._handlers: List[EventHandler] = []

    @contextmanager
    def _transaction(self):
        session = self._session_factory()
        events: List[ObjectEvent] = []
        try:
            yield session, events
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise AlreadyExistsError(f"Object already exists: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Object store operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._publish(events)

    def _publish(self, events: List[ObjectEvent]):
        for event in events:
            for handler in list(self._handlers):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(f"Event handler failed for {event.resource.ref().key}: {e}", exc_info=True)

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    @staticmethod
    def _select_row(session: Session, kind: str, namespace: str, name: str) -> Optional[StoredObject]:
        stmt = select(StoredObject).where(
            StoredObject.kind == kind,
            StoredObject.namespace == namespace,
            StoredObject.name == name,
        )
        return session.execute(stmt).scalars().first()

    def _require_row(self, session: Session, kind: str, namespace: str, name: str) -> StoredObject:
        row = self._select_row(session, kind, namespace, name)
        if row is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found", kind, namespace, name)
        return row

    def get(self, kind: str, namespace: str, name: str) -> Resource:
        with self._transaction() as (session, _):
            return to_resource(self._require_row(session, kind, namespace, name))

    def list(
        self,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        owner_uid: Optional[str] = None,
    ) -> List[Resource]:
        stmt = select(StoredObject)
        if kind is not None:
            stmt = stmt.where(StoredObject.kind == kind)
        if namespace is not None:
            stmt = stmt.where(StoredObject.namespace == namespace)
        if owner_uid is not None:
            stmt = stmt.where(StoredObject.owner_uid == owner_uid)
        stmt = stmt.order_by(StoredObject.kind, StoredObject.namespace, StoredObject.name)

        with self._transaction() as (session, _):
            rows = session.execute(stmt).scalars().all()
            resources = [to_resource(row) for row in rows]

        if labels:
            resources = [
                r for r in resources if all(r.metadata.labels.get(k) == v for k, v in labels.items())
            ]
        return resources

    def create(self, resource: Resource) -> Resource:
        meta = resource.metadata
        with self._transaction() as (session, events):
            if self._select_row(session, resource.kind, meta.namespace, meta.name) is not None:
                raise AlreadyExistsError(
                    f"{resource.kind} {meta.namespace}/{meta.name} already exists",
                    resource.kind,
                    meta.namespace,
                    meta.name,
                )
            row = StoredObject(
                uid=meta.uid or new_uid(),
                kind=resource.kind,
                namespace=meta.namespace,
                name=meta.name,
                generation=1,
                resource_version=1,
                owner_uid=resource.controller_uid(),
                labels=dict(meta.labels),
                finalizers=list(meta.finalizers),
                owner_references=[ref.model_dump(mode="json") for ref in meta.owner_references],
                spec=dict(resource.spec),
                status=resource.status.model_dump(mode="json", exclude_none=True),
            )
            session.add(row)
            session.flush()
            created = to_resource(row)
            events.append(ObjectEvent(EventType.ADDED, created))
        return created

    def _compare_and_swap(self, session: Session, row: StoredObject, expected_version: int, **values) -> None:
        stmt = (
            update(StoredObject)
            .where(StoredObject.id == row.id, StoredObject.resource_version == expected_version)
            .values(resource_version=expected_version + 1, gmt_updated=utc_now(), **values)
        )
        result = session.execute(stmt)
        if result.rowcount == 0:
            raise ConflictError(
                f"{row.kind} {row.namespace}/{row.name} was modified concurrently",
                row.kind,
                row.namespace,
                row.name,
            )

    def _check_version(self, row: StoredObject, resource: Resource):
        if resource.metadata.resource_version != row.resource_version:
            raise ConflictError(
                f"{row.kind} {row.namespace}/{row.name} has resource version {row.resource_version}, "
                f"update was based on {resource.metadata.resource_version}",
                row.kind,
                row.namespace,
                row.name,
            )

    def update(self, resource: Resource) -> Resource:
        meta = resource.metadata
        with self._transaction() as (session, events):
            row = self._require_row(session, resource.kind, meta.namespace, meta.name)
            self._check_version(row, resource)

            generation = row.generation
            if dict(resource.spec) != (row.spec or {}):
                generation += 1

            self._compare_and_swap(
                session,
                row,
                meta.resource_version,
                generation=generation,
                labels=dict(meta.labels),
                finalizers=list(meta.finalizers),
                owner_references=[ref.model_dump(mode="json") for ref in meta.owner_references],
                owner_uid=resource.controller_uid(),
                spec=dict(resource.spec),
            )
            session.flush()
            session.refresh(row)

            if row.gmt_deleted is not None and not row.finalizers:
                updated = to_resource(row)
                self._remove(session, row, events)
            else:
                updated = to_resource(row)
                events.append(ObjectEvent(EventType.MODIFIED, updated))
        return updated

    def update_status(self, resource: Resource) -> Resource:
        meta = resource.metadata
        with self._transaction() as (session, events):
            row = self._require_row(session, resource.kind, meta.namespace, meta.name)
            self._check_version(row, resource)
            self._compare_and_swap(
                session,
                row,
                meta.resource_version,
                status=resource.status.model_dump(mode="json", exclude_none=True),
            )
            session.flush()
            session.refresh(row)
            updated = to_resource(row)
            events.append(ObjectEvent(EventType.MODIFIED, updated))
        return updated

    def delete(self, kind: str, namespace: str, name: str) -> None:
        with self._transaction() as (session, events):
            row = self._require_row(session, kind, namespace, name)
            if row.finalizers:
                self._mark_deleted(session, row, events)
            else:
                self._remove(session, row, events)

    def _mark_deleted(self, session: Session, row: StoredObject, events: List[ObjectEvent]):
        if row.gmt_deleted is not None:
            return
        self._compare_and_swap(session, row, row.resource_version, gmt_deleted=utc_now())
        session.flush()
        session.refresh(row)
        events.append(ObjectEvent(EventType.MODIFIED, to_resource(row)))

    def _remove(self, session: Session, row: StoredObject, events: List[ObjectEvent]):
        """Physically remove the row and cascade to the objects it controls"""
        removed = to_resource(row)
        session.execute(delete(StoredObject).where(StoredObject.id == row.id))
        events.append(ObjectEvent(EventType.DELETED, removed))

        children = (
            session.execute(select(StoredObject).where(StoredObject.owner_uid == removed.metadata.uid))
            .scalars()
            .all()
        )
        for child in children:
            if child.finalizers:
                self._mark_deleted(session, child, events)
            else:
                self._remove(session, child, events)
