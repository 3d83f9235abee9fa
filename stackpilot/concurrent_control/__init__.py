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
Locks that keep two workers from reconciling the same object at once.

Usage:
    lock = create_lock("redis", key=object_lock_key("Glance", "default", "glance"))
    if lock.acquire(timeout=0):
        try:
            ...
        finally:
            lock.release()
"""

from stackpilot.concurrent_control.protocols import LockProtocol
from stackpilot.concurrent_control.redis_lock import RedisLock
from stackpilot.concurrent_control.threading_lock import ThreadingLock

LOCK_KEY_PREFIX = "stackpilot:reconcile"


def object_lock_key(kind: str, namespace: str, name: str) -> str:
    return f"{LOCK_KEY_PREFIX}:{kind}:{namespace}:{name}"


def create_lock(lock_type: str = "redis", **kwargs) -> LockProtocol:
    """
    Create a lock of the given type.

    Args:
        lock_type: "redis" for locks shared across workers, "threading" for a single process
        **kwargs: Passed to the lock class, ``key`` is required
    """
    if lock_type == "redis":
        return RedisLock(**kwargs)
    elif lock_type == "threading":
        return ThreadingLock(kwargs["key"])
    else:
        raise ValueError(f"Unknown lock type: {lock_type}")


__all__ = ["LockProtocol", "RedisLock", "ThreadingLock", "create_lock", "object_lock_key"]
