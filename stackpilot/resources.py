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
Resource model for the objects managed by the reconcilers.

Every object in the store shares the same envelope: a kind, metadata
(identity, generation, finalizers, owner references), a user-authored spec
and an engine-authored status. The typed spec models below are views over
the spec dict of the platform and service kinds.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Kinds of the managed platform
class Kind:
    CONTROL_PLANE = "OpenStackControlPlane"
    DATABASE = "Database"
    RABBITMQ = "RabbitMQ"
    MEMCACHED = "Memcached"
    OVN_NETWORK = "OVNNetwork"
    KEYSTONE = "Keystone"
    GLANCE = "Glance"
    PLACEMENT = "Placement"
    NEUTRON = "Neutron"
    NOVA = "Nova"

    # Primitive children created by the reconcilers
    SECRET = "Secret"
    JOB = "Job"
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    SERVICE = "Service"
    HTTP_ROUTE = "HTTPRoute"


class Phase(str, Enum):
    PENDING = "Pending"
    INFRASTRUCTURE = "Infrastructure"
    IDENTITY = "Identity"
    CORE_SERVICES = "CoreServices"
    COMPUTE = "Compute"
    READY = "Ready"
    FAILED = "Failed"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType:
    READY = "Ready"
    COMPLETE = "Complete"
    FAILED = "Failed"


class Condition(BaseModel):
    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utc_now)
    observed_generation: int = 0


class OwnerReference(BaseModel):
    kind: str
    name: str
    uid: str
    controller: bool = True


class ObjectMeta(BaseModel):
    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 0
    resource_version: int = 0
    labels: Dict[str, str] = Field(default_factory=dict)
    finalizers: List[str] = Field(default_factory=list)
    owner_references: List[OwnerReference] = Field(default_factory=list)
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None


class ObjectStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    conditions: List[Condition] = Field(default_factory=list)
    observed_generation: int = 0
    phase: Optional[str] = None
    phase_started_at: Optional[datetime] = None
    api_endpoint: Optional[str] = None
    endpoints: Dict[str, str] = Field(default_factory=dict)
    # Reported by the workload executor for Deployments and StatefulSets
    replicas: Optional[int] = None
    ready_replicas: Optional[int] = None


class ObjectRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"

    @classmethod
    def from_key(cls, key: str) -> "ObjectRef":
        kind, namespace, name = key.split("/", 2)
        return cls(kind=kind, namespace=namespace, name=name)


class Resource(BaseModel):
    kind: str
    metadata: ObjectMeta
    spec: Dict[str, Any] = Field(default_factory=dict)
    status: ObjectStatus = Field(default_factory=ObjectStatus)

    @classmethod
    def new(
        cls,
        kind: str,
        name: str,
        namespace: str = "default",
        spec: Dict[str, Any] = None,
        labels: Dict[str, str] = None,
    ) -> "Resource":
        return cls(
            kind=kind,
            metadata=ObjectMeta(name=name, namespace=namespace, labels=dict(labels or {})),
            spec=dict(spec or {}),
        )

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def conditions(self) -> List[Condition]:
        return self.status.conditions

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def ref(self) -> ObjectRef:
        return ObjectRef(kind=self.kind, namespace=self.metadata.namespace, name=self.metadata.name)

    def owner_reference(self) -> OwnerReference:
        return OwnerReference(kind=self.kind, name=self.metadata.name, uid=self.metadata.uid)

    def controller_uid(self) -> Optional[str]:
        for ref in self.metadata.owner_references:
            if ref.controller:
                return ref.uid
        return None


def new_uid() -> str:
    return str(uuid.uuid4())


# Typed views over spec dicts


class GatewayRef(BaseModel):
    name: str = ""
    namespace: str = ""
    listener_name: str = ""


class DatabaseConfig(BaseModel):
    # Generated as <name>-db-password when empty
    secret_name: str = ""
    engine: str = ""


class ServiceSpec(BaseModel):
    """Desired state shared by the infrastructure and API service kinds.

    Fields that a kind does not use are simply ignored by its reconciler.
    """

    model_config = ConfigDict(extra="allow")

    replicas: int = 1
    image: str = ""
    public_hostname: str = ""
    gateway_ref: Optional[GatewayRef] = None
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    region: str = ""
    # Database
    engine: str = "postgresql"
    storage_size: str = "10Gi"
    # Neutron
    network_backend: str = "ovn"
    # Nova
    compute_replicas: int = 1


class ControlPlaneSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    public_domain: str = ""
    region: str = ""
    network_backend: str = "ovn"
    gateway_ref: Optional[GatewayRef] = None
    phase_timeout_seconds: Optional[float] = None

    database: ServiceSpec = Field(default_factory=ServiceSpec)
    rabbitmq: ServiceSpec = Field(default_factory=ServiceSpec)
    memcached: ServiceSpec = Field(default_factory=ServiceSpec)
    ovn: ServiceSpec = Field(default_factory=ServiceSpec)
    keystone: ServiceSpec = Field(default_factory=ServiceSpec)
    glance: ServiceSpec = Field(default_factory=ServiceSpec)
    placement: ServiceSpec = Field(default_factory=ServiceSpec)
    neutron: ServiceSpec = Field(default_factory=ServiceSpec)
    nova: ServiceSpec = Field(default_factory=ServiceSpec)
