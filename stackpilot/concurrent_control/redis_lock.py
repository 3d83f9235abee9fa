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
Redis-based distributed lock.

The lock is a single key set with ``SET NX EX`` to a value unique to the
holder. Release deletes the key only if it still holds that value, so a
holder whose lock expired cannot release someone else's.
"""

import logging
import time
import uuid
from typing import Optional

import redis

from stackpilot.concurrent_control.protocols import LockProtocol

logger = logging.getLogger(__name__)

# Delete the key only if we still own it
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisLock(LockProtocol):
    """
    Lock shared by every worker connected to the same Redis.

    Args:
        key: Redis key guarding the resource
        redis_url: Redis connection URL
        expire_time: Seconds after which an unreleased lock frees itself
        retry_times: Extra attempts made by ``acquire()`` without a timeout
        retry_delay: Seconds between attempts
    """

    def __init__(
        self,
        key: str,
        redis_url: str = "redis://localhost:6379",
        expire_time: int = 30,
        retry_times: int = 3,
        retry_delay: float = 0.1,
    ):
        if not key:
            raise ValueError("Redis lock key is required")
        self._key = key
        self._redis_url = redis_url
        self._expire_time = expire_time
        self._retry_times = retry_times
        self._retry_delay = retry_delay
        self._redis_client = None
        self._script_sha: Optional[str] = None
        self._lock_value: Optional[str] = None

    def _client(self):
        if self._redis_client is None:
            client = redis.from_url(self._redis_url)
            try:
                client.ping()
            except Exception as e:
                raise ConnectionError(f"Cannot connect to Redis at {self._redis_url}: {e}") from e
            try:
                self._script_sha = client.script_load(RELEASE_SCRIPT)
            except Exception as e:
                logger.debug(f"Loading release script failed, falling back to EVAL: {e}")
                self._script_sha = None
            self._redis_client = client
        return self._redis_client

    def _try_set(self, client, value: str) -> bool:
        try:
            return bool(client.set(self._key, value, nx=True, ex=self._expire_time))
        except Exception as e:
            logger.warning(f"Setting lock {self._key} failed: {e}")
            return False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Try to take the lock.

        With a timeout, attempts repeat until it elapses (a zero timeout makes
        exactly one attempt). Without one, ``retry_times`` extra attempts are made.

        Returns:
            True if the lock is held by this instance
        """
        if self._lock_value is not None:
            return True

        client = self._client()
        value = str(uuid.uuid4())
        deadline = None if timeout is None else time.monotonic() + timeout
        attempt = 0
        while True:
            if self._try_set(client, value):
                self._lock_value = value
                logger.debug(f"Acquired lock {self._key}")
                return True
            attempt += 1
            if deadline is not None:
                if time.monotonic() + self._retry_delay > deadline:
                    return False
            elif attempt > self._retry_times:
                return False
            time.sleep(self._retry_delay)

    def release(self):
        """Release the lock. Local state is cleared even if Redis cannot be reached."""
        if self._lock_value is None:
            return
        value, self._lock_value = self._lock_value, None
        try:
            client = self._client()
            if self._script_sha:
                released = client.evalsha(self._script_sha, 1, self._key, value)
            else:
                released = client.eval(RELEASE_SCRIPT, 1, self._key, value)
            if not released:
                logger.warning(f"Lock {self._key} had expired before release")
        except Exception as e:
            logger.warning(f"Releasing lock {self._key} failed, it will expire in {self._expire_time}s: {e}")

    def is_locked(self) -> bool:
        return self._lock_value is not None

    def close(self):
        if self._redis_client is not None:
            self._redis_client.close()
            self._redis_client = None
