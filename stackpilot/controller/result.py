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

from dataclasses import dataclass
from typing import Optional


@dataclass
class ReconcileResult:
    """Outcome of one reconcile invocation.

    ``requeue`` with ``requeue_after`` > 0 asks for another tick after that
    many seconds; ``requeue`` alone asks for one as soon as possible.
    """

    requeue: bool = False
    requeue_after: float = 0
    error: Optional[str] = None

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def after(cls, seconds: float) -> "ReconcileResult":
        return cls(requeue=True, requeue_after=seconds)

    @classmethod
    def immediately(cls) -> "ReconcileResult":
        return cls(requeue=True)

    @property
    def is_done(self) -> bool:
        return not self.requeue
