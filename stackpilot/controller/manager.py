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

import logging
import time
from typing import List, Optional

from stackpilot.config import Config, settings
from stackpilot.controller.registry import ReconcilerRegistry, build_registry
from stackpilot.controller.result import ReconcileResult
from stackpilot.db.store import EventType, ObjectEvent, ObjectStore
from stackpilot.exceptions import ConflictError, StoreError
from stackpilot.resources import ObjectRef
from stackpilot.tasks.scheduler import LocalTaskScheduler, TaskScheduler, create_task_scheduler

logger = logging.getLogger(__name__)


class ControllerManager:
    """
    Outer loop around the reconcilers.

    - turns store change events into reconcile ticks for the changed object and its owners
    - runs one tick and decides what a failure means: store errors requeue,
      anything else is logged and dropped until the next resync
    - turns requeue results into scheduled ticks
    """

    def __init__(
        self,
        store: ObjectStore,
        task_scheduler: Optional[TaskScheduler] = None,
        config: Optional[Config] = None,
        registry: Optional[ReconcilerRegistry] = None,
    ):
        self.store = store
        self.config = config or settings
        self.task_scheduler = task_scheduler or create_task_scheduler(self.config.scheduler_type)
        self.registry = registry or build_registry(store, self.config)
        self._watching = False

    def start(self):
        """Subscribe to store changes. Safe to call more than once."""
        if not self._watching:
            self.store.subscribe(self.handle_event)
            self._watching = True

    def handle_event(self, event: ObjectEvent):
        resource = event.resource
        if event.type != EventType.DELETED and resource.kind in self.registry:
            self.enqueue(resource.ref())
        for owner in resource.metadata.owner_references:
            if owner.kind in self.registry:
                self.enqueue(ObjectRef(kind=owner.kind, namespace=resource.namespace, name=owner.name))

    def enqueue(self, ref: ObjectRef, countdown: float = 0):
        self.task_scheduler.schedule_reconcile(ref.kind, ref.namespace, ref.name, countdown)

    def reconcile(self, kind: str, namespace: str, name: str) -> ReconcileResult:
        """Run one tick for one object; never raises"""
        reconciler = self.registry.get(kind)
        if reconciler is None:
            logger.warning(f"No reconciler registered for kind {kind}")
            return ReconcileResult.done()

        try:
            return reconciler.reconcile(namespace, name)
        except ConflictError as e:
            logger.info(f"Conflict reconciling {kind} {namespace}/{name}, retrying: {e}")
            return ReconcileResult.after(self.config.conflict_requeue_seconds)
        except StoreError as e:
            logger.warning(f"Store error reconciling {kind} {namespace}/{name}: {e}")
            return ReconcileResult(
                requeue=True, requeue_after=self.config.error_backoff_seconds, error=str(e)
            )
        except Exception as e:
            logger.error(f"Reconcile of {kind} {namespace}/{name} failed, dropping: {e}", exc_info=True)
            return ReconcileResult(error=str(e))

    def reconcile_and_schedule(self, kind: str, namespace: str, name: str) -> ReconcileResult:
        result = self.reconcile(kind, namespace, name)
        if result.requeue:
            self.enqueue(ObjectRef(kind=kind, namespace=namespace, name=name), result.requeue_after)
        return result

    def resync(self, kinds: Optional[List[str]] = None, namespace: Optional[str] = None) -> int:
        """Queue a tick for every managed object"""
        count = 0
        for kind in kinds or self.registry.kinds():
            for resource in self.store.list(kind=kind, namespace=namespace):
                self.enqueue(resource.ref())
                count += 1
        logger.info(f"Resync queued {count} objects")
        return count

    def run_local(self, max_ticks: int = 1000, wait: bool = False, ignore_countdown: bool = False) -> int:
        """
        Drain the local queue, running ticks until nothing is due.

        Args:
            max_ticks: Upper bound on the number of ticks run
            wait: Sleep until delayed ticks become due instead of returning
            ignore_countdown: Run delayed ticks immediately

        Returns:
            Number of ticks run
        """
        scheduler = self.task_scheduler
        if not isinstance(scheduler, LocalTaskScheduler):
            raise TypeError("run_local requires a LocalTaskScheduler")

        ticks = 0
        while ticks < max_ticks:
            key = scheduler.pop(ignore_countdown=ignore_countdown)
            if key is None:
                next_due = scheduler.next_due()
                if not wait or next_due is None:
                    break
                time.sleep(max(next_due - time.monotonic(), 0))
                continue
            ref = ObjectRef.from_key(key)
            self.reconcile_and_schedule(ref.kind, ref.namespace, ref.name)
            ticks += 1
        return ticks
