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
Builders for the primitive child objects a service reconciler owns.

Each builder returns a desired ``Resource`` whose spec only contains JSON
types, so that a stored copy compares equal to a freshly built one.
"""

from typing import Any, Dict, List, Optional

from stackpilot.resources import GatewayRef, Kind, Resource

MANAGED_BY = "stackpilot"

LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"


def standard_labels(service_name: str, instance_name: str, component: Optional[str] = None) -> Dict[str, str]:
    labels = {
        LABEL_NAME: service_name,
        LABEL_INSTANCE: instance_name,
        LABEL_MANAGED_BY: MANAGED_BY,
    }
    if component:
        labels[LABEL_COMPONENT] = component
    return labels


def env_list(env: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Literal values become ``value``; dict values are secret key references"""
    result = []
    for name in sorted(env or {}):
        value = env[name]
        if isinstance(value, dict):
            result.append({"name": name, "secret_ref": dict(value)})
        else:
            result.append({"name": name, "value": str(value)})
    return result


def container(
    name: str,
    image: str,
    ports: Optional[Dict[str, int]] = None,
    env: Optional[Dict[str, Any]] = None,
    command: Optional[List[str]] = None,
) -> Dict[str, Any]:
    spec = {
        "name": name,
        "image": image,
        "ports": [{"name": port_name, "container_port": port} for port_name, port in (ports or {}).items()],
        "env": env_list(env),
    }
    if command:
        spec["command"] = list(command)
    return spec


def deployment(
    name: str,
    namespace: str,
    labels: Dict[str, str],
    replicas: int,
    containers: List[Dict[str, Any]],
) -> Resource:
    return Resource.new(
        Kind.DEPLOYMENT,
        name,
        namespace,
        labels=labels,
        spec={
            "replicas": replicas,
            "selector": dict(labels),
            "template": {"labels": dict(labels), "containers": containers},
        },
    )


def stateful_set(
    name: str,
    namespace: str,
    labels: Dict[str, str],
    replicas: int,
    containers: List[Dict[str, Any]],
    service_name: str,
    storage_size: Optional[str] = None,
    mount_path: Optional[str] = None,
) -> Resource:
    spec = {
        "replicas": replicas,
        "service_name": service_name,
        "selector": dict(labels),
        "template": {"labels": dict(labels), "containers": containers},
    }
    if storage_size:
        spec["volume_claims"] = [{"name": "data", "storage": storage_size, "mount_path": mount_path or "/data"}]
    return Resource.new(Kind.STATEFUL_SET, name, namespace, labels=labels, spec=spec)


def network_service(
    name: str,
    namespace: str,
    labels: Dict[str, str],
    ports: Dict[str, int],
    headless: bool = False,
) -> Resource:
    spec = {
        "selector": dict(labels),
        "ports": [
            {"name": port_name, "port": port, "target_port": port, "protocol": "TCP"}
            for port_name, port in ports.items()
        ],
    }
    if headless:
        spec["cluster_ip"] = "None"
    return Resource.new(Kind.SERVICE, name, namespace, labels=labels, spec=spec)


def http_route(
    name: str,
    namespace: str,
    hostname: str,
    service_name: str,
    service_port: int,
    gateway: Optional[GatewayRef],
    default_gateway_name: str,
) -> Resource:
    """Route external traffic from a gateway listener to a service port"""
    gateway = gateway or GatewayRef()
    parent: Dict[str, Any] = {"name": gateway.name or default_gateway_name}
    gateway_namespace = gateway.namespace or namespace
    if gateway_namespace != namespace:
        parent["namespace"] = gateway_namespace
    if gateway.listener_name:
        parent["section_name"] = gateway.listener_name

    spec: Dict[str, Any] = {
        "parent_refs": [parent],
        "rules": [{"backend_refs": [{"name": service_name, "port": service_port}]}],
    }
    if hostname:
        spec["hostnames"] = [hostname]
    return Resource.new(Kind.HTTP_ROUTE, name, namespace, labels={LABEL_MANAGED_BY: MANAGED_BY}, spec=spec)
