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

from enum import Enum
from typing import Callable, Optional

from stackpilot.db.store import ObjectStore
from stackpilot.exceptions import NotFoundError
from stackpilot.resources import Resource

Mutate = Callable[[Resource], None]


class OperationResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def set_owner_reference(resource: Resource, owner: Resource) -> None:
    """Make ``owner`` the single controlling owner of ``resource``"""
    others = [ref for ref in resource.metadata.owner_references if not ref.controller and ref.uid != owner.metadata.uid]
    resource.metadata.owner_references = [owner.owner_reference()] + others


def _fingerprint(resource: Resource):
    return (
        dict(resource.metadata.labels),
        [ref.model_dump() for ref in resource.metadata.owner_references],
        resource.spec,
    )


def create_or_update(
    store: ObjectStore,
    desired: Resource,
    mutate: Optional[Mutate] = None,
    owner: Optional[Resource] = None,
) -> OperationResult:
    """
    Converge one child object toward its desired form.

    If the object is absent, ``mutate`` is applied to ``desired`` and the result
    is created with ``owner`` as controller. Otherwise the stored object is
    fetched, ``mutate`` is applied to it, and it is written back only when its
    labels, owner references or spec actually changed. Objects are never deleted
    here; store errors propagate to the caller.

    When ``mutate`` is None the desired labels and spec replace the stored ones.
    """
    if mutate is None:
        mutate = _replace_with(desired)

    try:
        existing = store.get(desired.kind, desired.namespace, desired.name)
    except NotFoundError:
        obj = desired.model_copy(deep=True)
        mutate(obj)
        if owner is not None:
            set_owner_reference(obj, owner)
        store.create(obj)
        return OperationResult.CREATED

    before = _fingerprint(existing)
    obj = existing.model_copy(deep=True)
    mutate(obj)
    if owner is not None:
        set_owner_reference(obj, owner)
    if _fingerprint(obj) == before:
        return OperationResult.UNCHANGED

    store.update(obj)
    return OperationResult.UPDATED


def ensure_exists(store: ObjectStore, desired: Resource, owner: Optional[Resource] = None) -> OperationResult:
    """Create the object if it is absent, leaving an existing one untouched"""
    try:
        store.get(desired.kind, desired.namespace, desired.name)
        return OperationResult.UNCHANGED
    except NotFoundError:
        obj = desired.model_copy(deep=True)
        if owner is not None:
            set_owner_reference(obj, owner)
        store.create(obj)
        return OperationResult.CREATED


def _replace_with(desired: Resource) -> Mutate:
    def mutate(obj: Resource):
        obj.metadata.labels = {**obj.metadata.labels, **desired.metadata.labels}
        obj.spec = desired.model_copy(deep=True).spec

    return mutate
