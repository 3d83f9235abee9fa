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

from typing import Iterable

from stackpilot.db.store import ObjectStore
from stackpilot.exceptions import NotFoundError
from stackpilot.reconcile.conditions import is_ready
from stackpilot.resources import ObjectRef, Resource


def is_child_ready(store: ObjectStore, ref: ObjectRef, require_current: bool = False) -> bool:
    """
    A child is ready when it exists and carries Ready=True.

    With ``require_current`` the child must also have observed its latest
    generation, so a Ready left over from before a spec change does not count.
    """
    try:
        child = store.get(ref.kind, ref.namespace, ref.name)
    except NotFoundError:
        return False
    if require_current and child.status.observed_generation < child.metadata.generation:
        return False
    return is_ready(child.conditions)


def all_ready(store: ObjectStore, refs: Iterable[ObjectRef], require_current: bool = False) -> bool:
    for ref in refs:
        if not is_child_ready(store, ref, require_current):
            return False
    return True


def first_not_ready(store: ObjectStore, refs: Iterable[ObjectRef], require_current: bool = False):
    for ref in refs:
        if not is_child_ready(store, ref, require_current):
            return ref
    return None


def is_workload_ready(workload: Resource) -> bool:
    """
    Workload readiness as reported by the executor: at least one ready replica,
    every desired replica ready, and the status reflects the current spec.
    """
    status = workload.status
    ready = status.ready_replicas or 0
    desired = status.replicas if status.replicas is not None else workload.spec.get("replicas", 1)
    if ready <= 0 or ready != desired:
        return False
    return status.observed_generation >= workload.metadata.generation
