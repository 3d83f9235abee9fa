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
from abc import ABC, abstractmethod
from typing import Optional

from stackpilot.config import Config, settings
from stackpilot.controller.result import ReconcileResult
from stackpilot.db.store import ObjectStore
from stackpilot.exceptions import NotFoundError
from stackpilot.reconcile.finalizer import add_finalizer, has_finalizer, remove_finalizer
from stackpilot.resources import Resource

logger = logging.getLogger(__name__)


class Reconciler(ABC):
    """
    Base class for the reconcilers of one kind.

    ``reconcile`` reads the object fresh from the store, deals with deletion and
    the cleanup finalizer, then hands the live object to ``reconcile_instance``.
    Subclasses hold no state between invocations.
    """

    kind: str = ""
    # Stop after adding the finalizer so the next tick starts from a fresh read
    requeue_after_finalizer: bool = True

    def __init__(self, store: ObjectStore, config: Optional[Config] = None):
        self.store = store
        self.config = config or settings

    @property
    def finalizer(self) -> str:
        return self.config.finalizer_name

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            instance = self.store.get(self.kind, namespace, name)
        except NotFoundError:
            logger.debug(f"{self.kind} {namespace}/{name} not found, nothing to do")
            return ReconcileResult.done()

        if instance.is_deleting:
            if has_finalizer(instance, self.finalizer):
                self.finalize(instance)
                remove_finalizer(instance, self.finalizer)
                self.store.update(instance)
                logger.info(f"{self.kind} {namespace}/{name} cleaned up, finalizer removed")
            return ReconcileResult.done()

        if add_finalizer(instance, self.finalizer):
            instance = self.store.update(instance)
            if self.requeue_after_finalizer:
                return ReconcileResult.immediately()

        return self.reconcile_instance(instance)

    def finalize(self, instance: Resource) -> None:
        """Cleanup run once before the finalizer is removed. Owned children are
        removed by the store's owner cascade."""

    @abstractmethod
    def reconcile_instance(self, instance: Resource) -> ReconcileResult:
        """Drive one live object one step closer to its desired state"""
