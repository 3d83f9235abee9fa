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

from typing import Dict, List, Optional

from stackpilot.config import Config
from stackpilot.controller.base import Reconciler
from stackpilot.controller.controlplane import ControlPlaneReconciler
from stackpilot.controller.profiles import PROFILES
from stackpilot.controller.service import ServiceReconciler
from stackpilot.db.store import ObjectStore


class ReconcilerRegistry:
    """Maps each managed kind to the reconciler responsible for it"""

    def __init__(self):
        self._reconcilers: Dict[str, Reconciler] = {}

    def register(self, reconciler: Reconciler):
        if reconciler.kind in self._reconcilers:
            raise ValueError(f"Reconciler for kind {reconciler.kind} already registered")
        self._reconcilers[reconciler.kind] = reconciler

    def get(self, kind: str) -> Optional[Reconciler]:
        return self._reconcilers.get(kind)

    def kinds(self) -> List[str]:
        return list(self._reconcilers)

    def __contains__(self, kind: str) -> bool:
        return kind in self._reconcilers


def build_registry(store: ObjectStore, config: Optional[Config] = None) -> ReconcilerRegistry:
    registry = ReconcilerRegistry()
    registry.register(ControlPlaneReconciler(store, config))
    for profile in PROFILES:
        registry.register(ServiceReconciler(store, profile, config))
    return registry
