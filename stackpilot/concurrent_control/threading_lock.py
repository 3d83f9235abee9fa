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

import threading
from typing import Dict, Optional

from stackpilot.concurrent_control.protocols import LockProtocol

_registry_guard = threading.Lock()
_locks: Dict[str, threading.Lock] = {}


def _named_lock(key: str) -> threading.Lock:
    with _registry_guard:
        if key not in _locks:
            _locks[key] = threading.Lock()
        return _locks[key]


class ThreadingLock(LockProtocol):
    """Process-local lock; instances created with the same key exclude each other"""

    def __init__(self, key: str):
        if not key:
            raise ValueError("Lock key is required")
        self._key = key
        self._lock = _named_lock(key)
        self._held = False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        if self._held:
            return True
        if timeout is None:
            self._held = self._lock.acquire()
        elif timeout <= 0:
            self._held = self._lock.acquire(blocking=False)
        else:
            self._held = self._lock.acquire(timeout=timeout)
        return self._held

    def release(self):
        if self._held:
            self._held = False
            self._lock.release()

    def is_locked(self) -> bool:
        return self._held
