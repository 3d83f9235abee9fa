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
Naming conventions for service dependencies.

A service owned by a control plane is named ``<prefix><suffix>`` (for example
``my-cloud-keystone``); its dependencies are then the control plane's other
children, ``<prefix>-database``, ``<prefix>-rabbitmq`` and so on. A standalone
service falls back to the unprefixed names. Nothing here reads the store.
"""

from dataclasses import dataclass

from stackpilot.resources import Kind, ObjectRef

IDENTITY_PORT = 5000
BROKER_PORT = 5672
CACHE_PORT = 11211
OVN_NB_PORT = 6641
OVN_SB_PORT = 6642


@dataclass(frozen=True)
class DependencyRef:
    """Resolved pointer to another service"""

    kind: str
    name: str
    namespace: str
    host: str = ""
    url: str = ""
    secret_name: str = ""
    # OVN only: url is the northbound database, this the southbound one
    southbound_url: str = ""

    def ref(self) -> ObjectRef:
        return ObjectRef(kind=self.kind, namespace=self.namespace, name=self.name)


def control_plane_prefix(instance_name: str, service_suffix: str) -> str:
    """Return the control plane prefix of ``instance_name``, or "" for a standalone service"""
    if not service_suffix or not instance_name.endswith(service_suffix):
        return ""
    return instance_name[: -len(service_suffix)]


def _sibling_name(instance_name: str, service_suffix: str, sibling: str) -> str:
    prefix = control_plane_prefix(instance_name, service_suffix)
    if prefix:
        return f"{prefix}-{sibling}"
    return sibling


def database_dependency(instance_name: str, service_suffix: str, namespace: str) -> DependencyRef:
    name = _sibling_name(instance_name, service_suffix, "database")
    return DependencyRef(
        kind=Kind.DATABASE,
        name=name,
        namespace=namespace,
        host=f"{name}.{namespace}.svc",
        secret_name=f"{name}-root-password",
    )


def keystone_dependency(instance_name: str, service_suffix: str, namespace: str) -> DependencyRef:
    name = _sibling_name(instance_name, service_suffix, "keystone")
    host = f"{name}-api.{namespace}.svc"
    return DependencyRef(
        kind=Kind.KEYSTONE,
        name=name,
        namespace=namespace,
        host=host,
        url=f"http://{host}:{IDENTITY_PORT}/v3",
        secret_name=f"{name}-admin-password",
    )


def rabbitmq_dependency(instance_name: str, service_suffix: str, namespace: str) -> DependencyRef:
    name = _sibling_name(instance_name, service_suffix, "rabbitmq")
    host = f"{name}.{namespace}.svc"
    return DependencyRef(
        kind=Kind.RABBITMQ,
        name=name,
        namespace=namespace,
        host=host,
        url=f"rabbit://{host}:{BROKER_PORT}/",
        secret_name=f"{name}-credentials",
    )


def memcached_dependency(instance_name: str, service_suffix: str, namespace: str) -> DependencyRef:
    name = _sibling_name(instance_name, service_suffix, "memcached")
    host = f"{name}.{namespace}.svc"
    return DependencyRef(
        kind=Kind.MEMCACHED,
        name=name,
        namespace=namespace,
        host=host,
        url=f"{host}:{CACHE_PORT}",
    )


def ovn_dependency(instance_name: str, service_suffix: str, namespace: str) -> DependencyRef:
    name = _sibling_name(instance_name, service_suffix, "ovn")
    return DependencyRef(
        kind=Kind.OVN_NETWORK,
        name=name,
        namespace=namespace,
        url=ovn_northbound(name, namespace),
        southbound_url=ovn_southbound(name, namespace),
    )


def ovn_northbound(ovn_name: str, namespace: str) -> str:
    return f"tcp:{ovn_name}-nb-db.{namespace}.svc:{OVN_NB_PORT}"


def ovn_southbound(ovn_name: str, namespace: str) -> str:
    return f"tcp:{ovn_name}-sb-db.{namespace}.svc:{OVN_SB_PORT}"


RESOLVERS = {
    "database": database_dependency,
    "keystone": keystone_dependency,
    "rabbitmq": rabbitmq_dependency,
    "memcached": memcached_dependency,
    "ovn": ovn_dependency,
}


def resolve_dependency(dependency: str, instance_name: str, service_suffix: str, namespace: str) -> DependencyRef:
    return RESOLVERS[dependency](instance_name, service_suffix, namespace)
