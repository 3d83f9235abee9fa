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
Service profiles: one configuration record per managed service kind.
"""

from typing import Any, Dict

from stackpilot.controller.service import (
    MigrationStep,
    Registration,
    SecretTemplate,
    ServiceContext,
    ServiceProfile,
    ServiceTemplate,
    WorkloadTemplate,
)
from stackpilot.reconcile import images
from stackpilot.reconcile.dependencies import (
    BROKER_PORT,
    CACHE_PORT,
    OVN_NB_PORT,
    OVN_SB_PORT,
    ovn_northbound,
    ovn_southbound,
)
from stackpilot.reconcile.provisioning import PASSWORD_KEY
from stackpilot.reconcile.secret import secret_key_ref
from stackpilot.resources import Kind

DEFAULT_PASSWORD_KEYS = {PASSWORD_KEY: None}
API_PORT_NAME = "api"


def _api_profile(
    kind: str,
    service_name: str,
    display_name: str,
    default_image: str,
    port: int,
    service_type: str,
    migrations,
    **kwargs,
) -> ServiceProfile:
    """Profile shared shape of the API services: database, migrations, one API deployment and route"""
    workloads = kwargs.pop("workloads", None) or [
        WorkloadTemplate(
            container=f"{service_name}-api", suffix="-api", component="api", ports={API_PORT_NAME: port}, primary=True
        )
    ]
    return ServiceProfile(
        kind=kind,
        service_name=service_name,
        suffix=f"-{service_name}",
        display_name=display_name,
        default_image=default_image,
        workloads=workloads,
        services=[ServiceTemplate(suffix="-api", component="api", ports={API_PORT_NAME: port})],
        port=port,
        service_type=service_type,
        externally_routed=True,
        databases=kwargs.pop("databases", [service_name]),
        database_user=service_name,
        migrations=migrations,
        dependencies=kwargs.pop("dependencies", ["database", "keystone"]),
        registration=kwargs.pop("registration", Registration.ENDPOINT),
        **kwargs,
    )


# Infrastructure


def _database_image(ctx: ServiceContext) -> str:
    return ctx.engine.server_image


def _database_ports(ctx: ServiceContext) -> Dict[str, int]:
    return {ctx.engine.name: ctx.engine.port}


def _database_env(ctx: ServiceContext, workload: WorkloadTemplate) -> Dict[str, Any]:
    return {ctx.engine.password_env: secret_key_ref(ctx.child_name("-root-password"), PASSWORD_KEY)}


def _database_endpoints(ctx: ServiceContext) -> Dict[str, str]:
    return {"host": f"{ctx.name}.{ctx.namespace}.svc", "port": str(ctx.engine.port), "engine": ctx.engine.name}


DATABASE = ServiceProfile(
    kind=Kind.DATABASE,
    service_name="database",
    suffix="-database",
    display_name="Database",
    default_image=_database_image,
    workloads=[
        WorkloadTemplate(
            container="database",
            kind=Kind.STATEFUL_SET,
            ports=_database_ports,
            storage_path="/var/lib/database",
            primary=True,
        )
    ],
    services=[ServiceTemplate(ports=_database_ports, headless=True)],
    secrets=[SecretTemplate("-root-password", DEFAULT_PASSWORD_KEYS)],
    environment=_database_env,
    endpoints=_database_endpoints,
    ready_reason="StatefulSetReady",
)


def _rabbitmq_env(ctx: ServiceContext, workload: WorkloadTemplate) -> Dict[str, Any]:
    secret = ctx.child_name("-credentials")
    return {
        "RABBITMQ_DEFAULT_USER": secret_key_ref(secret, "username"),
        "RABBITMQ_DEFAULT_PASS": secret_key_ref(secret, PASSWORD_KEY),
    }


RABBITMQ_PORTS = {"amqp": BROKER_PORT, "management": 15672}

RABBITMQ = ServiceProfile(
    kind=Kind.RABBITMQ,
    service_name="rabbitmq",
    suffix="-rabbitmq",
    display_name="RabbitMQ",
    default_image=images.DEFAULT_RABBITMQ,
    workloads=[
        WorkloadTemplate(
            container="rabbitmq",
            kind=Kind.STATEFUL_SET,
            ports=RABBITMQ_PORTS,
            storage_path="/var/lib/rabbitmq",
            primary=True,
        )
    ],
    services=[ServiceTemplate(ports=RABBITMQ_PORTS)],
    secrets=[SecretTemplate("-credentials", {"username": 16, PASSWORD_KEY: None})],
    environment=_rabbitmq_env,
    endpoints=lambda ctx: {"transport_url": f"rabbit://{ctx.name}.{ctx.namespace}.svc:{BROKER_PORT}/"},
    ready_reason="StatefulSetReady",
)

MEMCACHED = ServiceProfile(
    kind=Kind.MEMCACHED,
    service_name="memcached",
    suffix="-memcached",
    display_name="Memcached",
    default_image=images.DEFAULT_MEMCACHED,
    workloads=[WorkloadTemplate(container="memcached", ports={"memcached": CACHE_PORT}, primary=True)],
    services=[ServiceTemplate(ports={"memcached": CACHE_PORT})],
    endpoints=lambda ctx: {"servers": f"{ctx.name}.{ctx.namespace}.svc:{CACHE_PORT}"},
)


def _ovn_env(ctx: ServiceContext, workload: WorkloadTemplate) -> Dict[str, Any]:
    if workload.component != "northd":
        return {}
    return {
        "OVN_NB_DB": ovn_northbound(ctx.name, ctx.namespace),
        "OVN_SB_DB": ovn_southbound(ctx.name, ctx.namespace),
    }


OVN_NETWORK = ServiceProfile(
    kind=Kind.OVN_NETWORK,
    service_name="ovn",
    suffix="-ovn",
    display_name="OVN network",
    default_image=images.DEFAULT_OVN_NORTHD,
    workloads=[
        WorkloadTemplate(
            container="ovn-nb-db",
            suffix="-nb-db",
            component="nb-db",
            kind=Kind.STATEFUL_SET,
            image=images.DEFAULT_OVN_NB_DB,
            ports={"ovsdb": OVN_NB_PORT},
            replicas_field=None,
            storage_path="/var/lib/ovn/nb-db",
            primary=True,
        ),
        WorkloadTemplate(
            container="ovn-sb-db",
            suffix="-sb-db",
            component="sb-db",
            kind=Kind.STATEFUL_SET,
            image=images.DEFAULT_OVN_SB_DB,
            ports={"ovsdb": OVN_SB_PORT},
            replicas_field=None,
            storage_path="/var/lib/ovn/sb-db",
            primary=True,
        ),
        WorkloadTemplate(container="ovn-northd", suffix="-northd", component="northd", replicas_field=None),
    ],
    services=[
        ServiceTemplate(suffix="-nb-db", component="nb-db", ports={"ovsdb": OVN_NB_PORT}),
        ServiceTemplate(suffix="-sb-db", component="sb-db", ports={"ovsdb": OVN_SB_PORT}),
    ],
    environment=_ovn_env,
    endpoints=lambda ctx: {
        "northbound": ovn_northbound(ctx.name, ctx.namespace),
        "southbound": ovn_southbound(ctx.name, ctx.namespace),
    },
    ready_reason="StatefulSetReady",
)

# API services

KEYSTONE = _api_profile(
    Kind.KEYSTONE,
    "keystone",
    "Keystone",
    images.DEFAULT_KEYSTONE,
    5000,
    "identity",
    [MigrationStep("db-sync", [["keystone-manage", "db_sync"]])],
    dependencies=["database"],
    registration=Registration.BOOTSTRAP,
    secrets=[SecretTemplate("-admin-password", DEFAULT_PASSWORD_KEYS)],
    url_path="/v3",
    status_path="/v3",
)

GLANCE = _api_profile(
    Kind.GLANCE,
    "glance",
    "Glance",
    images.DEFAULT_GLANCE_API,
    9292,
    "image",
    [MigrationStep("db-sync", [["glance-manage", "db_sync"]])],
)

PLACEMENT = _api_profile(
    Kind.PLACEMENT,
    "placement",
    "Placement",
    images.DEFAULT_PLACEMENT,
    8778,
    "placement",
    [MigrationStep("db-sync", [["placement-manage", "db", "sync"]])],
)

NEUTRON = _api_profile(
    Kind.NEUTRON,
    "neutron",
    "Neutron",
    images.DEFAULT_NEUTRON_SERVER,
    9696,
    "network",
    [MigrationStep("db-sync", [["neutron-db-manage", "upgrade", "heads"]])],
    workloads=[
        WorkloadTemplate(
            container="neutron-server", suffix="-api", component="api", ports={API_PORT_NAME: 9696}, primary=True
        )
    ],
    dependencies=["database", "keystone", "rabbitmq"],
    conditional_dependencies={"ovn": lambda spec: spec.network_backend == "ovn"},
)

NOVA = _api_profile(
    Kind.NOVA,
    "nova",
    "Nova",
    images.DEFAULT_NOVA_API,
    8774,
    "compute",
    [
        MigrationStep("db-sync", [["nova-manage", "api_db", "sync"], ["nova-manage", "db", "sync"]]),
        MigrationStep(
            "cell-setup",
            [["nova-manage", "cell_v2", "map_cell0"], ["nova-manage", "cell_v2", "simple_cell_setup"]],
            container="cell-setup",
        ),
    ],
    workloads=[
        WorkloadTemplate(
            container="nova-api", suffix="-api", component="api", ports={API_PORT_NAME: 8774}, primary=True
        ),
        WorkloadTemplate(
            container="nova-scheduler",
            suffix="-scheduler",
            component="scheduler",
            image=images.DEFAULT_NOVA_SCHEDULER,
            replicas_field=None,
        ),
        WorkloadTemplate(
            container="nova-conductor",
            suffix="-conductor",
            component="conductor",
            image=images.DEFAULT_NOVA_CONDUCTOR,
            replicas_field=None,
        ),
        WorkloadTemplate(
            container="nova-compute",
            suffix="-compute",
            component="compute",
            image=images.DEFAULT_NOVA_COMPUTE,
            replicas_field="compute_replicas",
        ),
    ],
    databases=["nova", "nova_api", "nova_cell0"],
    dependencies=["database", "keystone", "rabbitmq"],
    url_path="/v2.1",
)

PROFILES = [DATABASE, RABBITMQ, MEMCACHED, OVN_NETWORK, KEYSTONE, GLANCE, PLACEMENT, NEUTRON, NOVA]

PROFILES_BY_KIND = {profile.kind: profile for profile in PROFILES}
