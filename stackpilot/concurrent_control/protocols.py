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

from abc import ABC, abstractmethod
from typing import Optional


class LockProtocol(ABC):
    """Mutual exclusion around one named resource"""

    @abstractmethod
    def acquire(self, timeout: Optional[float] = None) -> bool:
        pass

    @abstractmethod
    def release(self):
        pass

    @abstractmethod
    def is_locked(self) -> bool:
        pass

    def close(self):
        """Release connections held by the lock, if any"""

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Could not acquire {self!r}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
