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

import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TaskScheduler(ABC):
    """Abstract base class for task schedulers"""

    @abstractmethod
    def schedule_reconcile(self, kind: str, namespace: str, name: str, countdown: float = 0) -> str:
        """
        Schedule one reconcile tick for an object

        Args:
            kind: Object kind
            namespace: Object namespace
            name: Object name
            countdown: Seconds to wait before the tick runs

        Returns:
            Task ID for tracking
        """
        pass


class LocalTaskScheduler(TaskScheduler):
    """In-process queue for tests and single-machine runs.

    Ticks for the same object are collapsed: scheduling an object that is
    already queued only moves its due time earlier.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: List[Tuple[float, int, str]] = []
        self._due: Dict[str, float] = {}
        self._counter = itertools.count()

    @staticmethod
    def task_key(kind: str, namespace: str, name: str) -> str:
        return f"{kind}/{namespace}/{name}"

    def schedule_reconcile(self, kind: str, namespace: str, name: str, countdown: float = 0) -> str:
        key = self.task_key(kind, namespace, name)
        due = self._clock() + max(countdown, 0)
        current = self._due.get(key)
        if current is not None and current <= due:
            return key
        self._due[key] = due
        heapq.heappush(self._heap, (due, next(self._counter), key))
        return key

    def _discard_stale(self):
        while self._heap and self._due.get(self._heap[0][2]) != self._heap[0][0]:
            heapq.heappop(self._heap)

    def has_pending(self) -> bool:
        self._discard_stale()
        return bool(self._heap)

    def next_due(self) -> Optional[float]:
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def pop(self, ignore_countdown: bool = False) -> Optional[str]:
        """Return the key of the earliest tick, or None if nothing is due yet"""
        self._discard_stale()
        if not self._heap:
            return None
        due, _, key = self._heap[0]
        if not ignore_countdown and due > self._clock():
            return None
        heapq.heappop(self._heap)
        del self._due[key]
        return key

    def pending(self) -> List[str]:
        self._discard_stale()
        return sorted(self._due, key=self._due.get)


class CeleryTaskScheduler(TaskScheduler):
    """Celery implementation of TaskScheduler"""

    def schedule_reconcile(self, kind: str, namespace: str, name: str, countdown: float = 0) -> str:
        from stackpilot.tasks.reconcile_tasks import reconcile_object_task

        task = reconcile_object_task.apply_async(args=(kind, namespace, name), countdown=countdown or None)
        logger.debug(f"Scheduled reconcile task {task.id} for {kind} {namespace}/{name} in {countdown}s")
        return task.id


def create_task_scheduler(scheduler_type: str) -> TaskScheduler:
    if scheduler_type == "local":
        return LocalTaskScheduler()
    elif scheduler_type == "celery":
        return CeleryTaskScheduler()
    else:
        raise ValueError(f"Unknown scheduler type: {scheduler_type}")
