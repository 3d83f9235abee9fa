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
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from stackpilot.db.store import ObjectStore
from stackpilot.exceptions import NotFoundError
from stackpilot.reconcile.conditions import is_ready
from stackpilot.reconcile.jobs import JobCallbacks
from stackpilot.resources import ControlPlaneSpec, Kind, Resource, ServiceSpec

logger = logging.getLogger(__name__)

SERVICE_KINDS = [
    Kind.DATABASE,
    Kind.RABBITMQ,
    Kind.MEMCACHED,
    Kind.OVN_NETWORK,
    Kind.KEYSTONE,
    Kind.GLANCE,
    Kind.PLACEMENT,
    Kind.NEUTRON,
    Kind.NOVA,
]
MANAGED_KINDS = [Kind.CONTROL_PLANE] + SERVICE_KINDS


class ManifestError(ValueError):
    """The manifest cannot be applied"""


class PlatformService:
    """Operator facing API over the object store: apply, delete and inspect desired state"""

    def __init__(self, store: ObjectStore):
        self.store = store

    @staticmethod
    def parse_manifest(manifest: Dict[str, Any]) -> Resource:
        kind = manifest.get("kind")
        if kind not in MANAGED_KINDS:
            raise ManifestError(f"Unsupported kind: {kind}")
        metadata = manifest.get("metadata") or {}
        if not metadata.get("name"):
            raise ManifestError(f"{kind} manifest has no metadata.name")
        spec = manifest.get("spec") or {}
        try:
            if kind == Kind.CONTROL_PLANE:
                ControlPlaneSpec.model_validate(spec)
            else:
                ServiceSpec.model_validate(spec)
        except ValidationError as e:
            raise ManifestError(f"Invalid spec for {kind} {metadata['name']}: {e}") from e
        return Resource.new(
            kind,
            metadata["name"],
            metadata.get("namespace") or "default",
            spec=spec,
            labels=metadata.get("labels"),
        )

    def apply(self, manifest: Dict[str, Any]) -> Resource:
        """Create the object, or replace the spec and labels of the existing one"""
        desired = self.parse_manifest(manifest)
        try:
            existing = self.store.get(desired.kind, desired.namespace, desired.name)
        except NotFoundError:
            created = self.store.create(desired)
            logger.info(f"Created {created.kind} {created.namespace}/{created.name}")
            return created

        if existing.spec == desired.spec and existing.metadata.labels == desired.metadata.labels:
            return existing
        existing.spec = desired.spec
        existing.metadata.labels = desired.metadata.labels
        updated = self.store.update(existing)
        logger.info(
            f"Updated {updated.kind} {updated.namespace}/{updated.name} to generation {updated.metadata.generation}"
        )
        return updated

    def apply_yaml(self, text: str) -> List[Resource]:
        return [self.apply(doc) for doc in yaml.safe_load_all(text) if doc]

    def delete(self, kind: str, namespace: str, name: str) -> bool:
        try:
            self.store.delete(kind, namespace, name)
        except NotFoundError:
            return False
        logger.info(f"Deletion requested for {kind} {namespace}/{name}")
        return True

    def describe(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        resource = self.store.find(kind, namespace, name)
        if resource is None:
            return None
        result = summarize(resource)
        result["children"] = [
            {"kind": child.kind, "name": child.name, "ready": is_ready(child.conditions)}
            for child in self.store.list(owner_uid=resource.metadata.uid)
            if child.kind in MANAGED_KINDS
        ]
        return result

    def list_objects(self, kind: Optional[str] = None, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        kinds = [kind] if kind else MANAGED_KINDS
        return [summarize(r) for k in kinds for r in self.store.list(kind=k, namespace=namespace)]

    def record_job_result(self, namespace: str, name: str, succeeded: bool, message: str = "") -> Resource:
        callbacks = JobCallbacks(self.store)
        if succeeded:
            return callbacks.on_job_succeeded(namespace, name, message)
        return callbacks.on_job_failed(namespace, name, message)


def summarize(resource: Resource) -> Dict[str, Any]:
    status = resource.status
    return {
        "kind": resource.kind,
        "namespace": resource.namespace,
        "name": resource.name,
        "generation": resource.metadata.generation,
        "observed_generation": status.observed_generation,
        "phase": status.phase,
        "ready": is_ready(resource.conditions),
        "deleting": resource.is_deleting,
        "api_endpoint": status.api_endpoint,
        "endpoints": dict(status.endpoints),
        "conditions": [condition.model_dump(mode="json") for condition in resource.conditions],
    }
