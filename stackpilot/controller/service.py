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
Per-service reconciler.

Every infrastructure and API service kind is provisioned by the same fixed
pipeline, parameterized by a ``ServiceProfile``:

    secrets -> dependency readiness -> db-create job -> migration jobs ->
    workloads and services -> external route -> registration job -> status

Each job and the dependency check is a gate: when it is not satisfied the
reconcile persists Ready=False/Reconciling and returns a requeue without
touching any later step.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from stackpilot.config import Config
from stackpilot.controller.base import Reconciler
from stackpilot.controller.result import ReconcileResult
from stackpilot.db.store import ObjectStore
from stackpilot.reconcile import manifests
from stackpilot.reconcile.applier import create_or_update
from stackpilot.reconcile.conditions import is_ready, set_condition
from stackpilot.reconcile.dependencies import DependencyRef, resolve_dependency
from stackpilot.reconcile.images import DatabaseEngine, database_engine_or_default, image_or_default
from stackpilot.reconcile.jobs import JobStep, ensure_job, job_name, wait_for_job_completion
from stackpilot.reconcile.provisioning import (
    PASSWORD_KEY,
    database_create_step,
    endpoint_registration_step,
    keystone_bootstrap_step,
    migration_step,
)
from stackpilot.reconcile.readiness import first_not_ready, is_workload_ready
from stackpilot.reconcile.secret import ensure_secret, secret_key_ref
from stackpilot.resources import Condition, ConditionStatus, ConditionType, Kind, Resource, ServiceSpec

logger = logging.getLogger(__name__)

REASON_RECONCILING = "Reconciling"
MESSAGE_RECONCILING = "Reconciliation in progress"


class Registration(str, Enum):
    NONE = "none"
    ENDPOINT = "endpoint-create"
    BOOTSTRAP = "bootstrap"


@dataclass
class SecretTemplate:
    suffix: str
    # key -> generated length; None takes the configured password length
    keys: Dict[str, Optional[int]]


@dataclass
class WorkloadTemplate:
    container: str
    suffix: str = ""
    component: str = ""
    kind: str = Kind.DEPLOYMENT
    # Empty means the profile's image, overridable through spec.image
    image: str = ""
    ports: Union[Dict[str, int], Callable[["ServiceContext"], Dict[str, int]]] = field(default_factory=dict)
    # Spec field holding the replica count; None pins a single replica
    replicas_field: Optional[str] = "replicas"
    storage_path: Optional[str] = None
    # Readiness of the service is the readiness of its primary workloads
    primary: bool = False


@dataclass
class ServiceTemplate:
    suffix: str = ""
    component: str = ""
    ports: Union[Dict[str, int], Callable[["ServiceContext"], Dict[str, int]]] = field(default_factory=dict)
    headless: bool = False


@dataclass
class MigrationStep:
    step: str
    commands: List[List[str]]
    container: str = "db-sync"


EnvHook = Callable[["ServiceContext", WorkloadTemplate], Dict[str, Any]]


@dataclass
class ServiceProfile:
    """Configuration record describing how one service kind is provisioned"""

    kind: str
    service_name: str
    # Suffix the control plane appends to its own name for this service
    suffix: str
    display_name: str
    default_image: Union[str, Callable[["ServiceContext"], str]]
    workloads: List[WorkloadTemplate]
    services: List[ServiceTemplate] = field(default_factory=list)
    secrets: List[SecretTemplate] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    conditional_dependencies: Dict[str, Callable[[ServiceSpec], bool]] = field(default_factory=dict)
    # API surface
    port: int = 0
    api_suffix: str = "-api"
    url_path: str = ""
    status_path: str = ""
    service_type: str = ""
    externally_routed: bool = False
    registration: Registration = Registration.NONE
    # Database provisioning; no databases means no db-create step
    databases: List[str] = field(default_factory=list)
    database_user: str = ""
    migrations: List[MigrationStep] = field(default_factory=list)
    environment: Optional[EnvHook] = None
    endpoints: Optional[Callable[["ServiceContext"], Dict[str, str]]] = None
    ready_reason: str = "DeploymentReady"

    @property
    def is_api(self) -> bool:
        return self.port > 0


@dataclass
class ServiceContext:
    """Everything derived from one live object for the duration of one reconcile"""

    instance: Resource
    spec: ServiceSpec
    profile: ServiceProfile
    config: Config
    dependencies: Dict[str, DependencyRef] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.instance.metadata.name

    @property
    def namespace(self) -> str:
        return self.instance.metadata.namespace

    def child_name(self, suffix: str) -> str:
        return f"{self.name}{suffix}"

    def labels(self, component: str = "") -> Dict[str, str]:
        return manifests.standard_labels(self.profile.service_name, self.name, component or None)

    @property
    def image(self) -> str:
        default = self.profile.default_image
        if callable(default):
            default = default(self)
        return image_or_default(self.spec.image, default)

    @property
    def engine(self) -> DatabaseEngine:
        if self.profile.kind == Kind.DATABASE:
            return database_engine_or_default(self.spec.engine)
        return database_engine_or_default(self.spec.database.engine)

    @property
    def db_secret_name(self) -> str:
        return self.spec.database.secret_name or f"{self.name}-db-password"

    @property
    def region(self) -> str:
        return self.spec.region or self.config.default_region

    @property
    def api_host(self) -> str:
        return f"{self.child_name(self.profile.api_suffix)}.{self.namespace}.svc"

    @property
    def internal_url(self) -> str:
        return f"http://{self.api_host}:{self.profile.port}{self.profile.url_path}"

    @property
    def public_url(self) -> str:
        return f"https://{self.spec.public_hostname}{self.profile.url_path}"

    @property
    def api_endpoint(self) -> Optional[str]:
        if not self.profile.is_api:
            return None
        return f"http://{self.api_host}:{self.profile.port}{self.profile.status_path}"


def _resolve(value, ctx: ServiceContext):
    return value(ctx) if callable(value) else value


def dependency_environment(ctx: ServiceContext) -> Dict[str, Any]:
    """Connection settings handed to a service's workloads for its resolved dependencies"""
    env: Dict[str, Any] = {}
    database = ctx.dependencies.get("database")
    if database is not None and ctx.profile.databases:
        env.update(
            {
                "DATABASE_ENGINE": ctx.engine.name,
                "DATABASE_HOST": database.host,
                "DATABASE_PORT": str(ctx.engine.port),
                "DATABASE_NAME": ctx.profile.databases[0],
                "DATABASE_USER": ctx.profile.database_user,
                "DB_PASSWORD": secret_key_ref(ctx.db_secret_name, PASSWORD_KEY),
            }
        )
    keystone = ctx.dependencies.get("keystone")
    if keystone is not None:
        env["KEYSTONE_AUTH_URL"] = keystone.url
    rabbitmq = ctx.dependencies.get("rabbitmq")
    if rabbitmq is not None:
        env.update(
            {
                "TRANSPORT_URL": rabbitmq.url,
                "RABBITMQ_USER": secret_key_ref(rabbitmq.secret_name, "username"),
                "RABBITMQ_PASSWORD": secret_key_ref(rabbitmq.secret_name, PASSWORD_KEY),
            }
        )
    memcached = ctx.dependencies.get("memcached")
    if memcached is not None:
        env["MEMCACHED_SERVERS"] = memcached.url
    ovn = ctx.dependencies.get("ovn")
    if ovn is not None:
        env["OVN_NB_DB_CONNECTION"] = ovn.url
        env["OVN_SB_DB_CONNECTION"] = ovn.southbound_url
    return env


class ServiceReconciler(Reconciler):
    """Runs the provisioning pipeline for one service kind"""

    def __init__(self, store: ObjectStore, profile: ServiceProfile, config: Optional[Config] = None):
        super().__init__(store, config)
        self.profile = profile
        self.kind = profile.kind

    def build_context(self, instance: Resource) -> ServiceContext:
        spec = ServiceSpec.model_validate(instance.spec)
        ctx = ServiceContext(instance=instance, spec=spec, profile=self.profile, config=self.config)
        names = list(self.profile.dependencies)
        names += [dep for dep, wanted in self.profile.conditional_dependencies.items() if wanted(spec)]
        ctx.dependencies = {
            dep: resolve_dependency(dep, ctx.name, self.profile.suffix, ctx.namespace) for dep in names
        }
        return ctx

    def reconcile_instance(self, instance: Resource) -> ReconcileResult:
        profile = self.profile
        generation = instance.metadata.generation
        reconciling = set_condition(
            instance.conditions,
            ConditionType.READY,
            ConditionStatus.FALSE,
            REASON_RECONCILING,
            MESSAGE_RECONCILING,
            generation,
        )
        ctx = self.build_context(instance)

        self.ensure_secrets(ctx)

        blocked = first_not_ready(self.store, [dep.ref() for dep in ctx.dependencies.values()])
        if blocked is not None:
            logger.info(f"{self.kind} {ctx.namespace}/{ctx.name} waiting for {blocked.kind} {blocked.name}")
            return self._gated(instance, reconciling, ReconcileResult.after(self.config.requeue_delay_seconds))

        if profile.databases:
            done, result = self.run_job(ctx, "db-create", self.database_create_step(ctx))
            if not done:
                return self._gated(instance, reconciling, result)

        for migration in profile.migrations:
            step = migration_step(
                migration.container,
                ctx.image,
                migration.commands,
                ctx.db_secret_name,
                ctx.dependencies["database"].host,
                profile.databases[0],
            )
            done, result = self.run_job(ctx, migration.step, step)
            if not done:
                return self._gated(instance, reconciling, result)

        self.apply_workloads(ctx)
        self.apply_services(ctx)

        if profile.externally_routed:
            self.apply_route(ctx)

        registration = self.registration_step(ctx)
        if registration is not None:
            done, result = self.run_job(ctx, profile.registration.value, registration)
            if not done:
                return self._gated(instance, reconciling, result)

        return self.write_status(ctx, reconciling)

    def ensure_secrets(self, ctx: ServiceContext):
        for template in self.profile.secrets:
            keys = {key: length or self.config.password_length for key, length in template.keys.items()}
            ensure_secret(self.store, ctx.namespace, ctx.child_name(template.suffix), keys, ctx.instance)
        if self.profile.databases:
            ensure_secret(
                self.store,
                ctx.namespace,
                ctx.db_secret_name,
                {PASSWORD_KEY: self.config.password_length},
                ctx.instance,
            )

    def run_job(self, ctx: ServiceContext, step_name: str, step: JobStep) -> Tuple[bool, ReconcileResult]:
        name = job_name(ctx.name, step_name)
        ensure_job(self.store, ctx.namespace, name, step, owner=ctx.instance, labels=ctx.labels(step_name))
        done, result = wait_for_job_completion(
            self.store,
            ctx.namespace,
            name,
            self.config.job_pending_delay_seconds,
            self.config.job_failed_delay_seconds,
        )
        if not done:
            logger.debug(f"{self.kind} {ctx.namespace}/{ctx.name} waiting for job {name}")
        return done, result

    def database_create_step(self, ctx: ServiceContext) -> JobStep:
        database = ctx.dependencies["database"]
        return database_create_step(
            ctx.engine,
            database.host,
            database.secret_name,
            ctx.db_secret_name,
            self.profile.databases,
            self.profile.database_user,
        )

    def registration_step(self, ctx: ServiceContext) -> Optional[JobStep]:
        profile = self.profile
        if profile.registration == Registration.BOOTSTRAP:
            return keystone_bootstrap_step(
                ctx.image,
                ctx.child_name("-admin-password"),
                ctx.internal_url,
                ctx.public_url,
                ctx.region,
            )
        if profile.registration == Registration.ENDPOINT:
            keystone = ctx.dependencies["keystone"]
            return endpoint_registration_step(
                profile.service_name,
                profile.service_type,
                ctx.internal_url,
                ctx.public_url,
                ctx.region,
                keystone.url,
                keystone.secret_name,
            )
        return None

    def desired_workloads(self, ctx: ServiceContext) -> List[Resource]:
        workloads = []
        base_env = dependency_environment(ctx)
        for template in self.profile.workloads:
            env = dict(base_env)
            if self.profile.environment is not None:
                env.update(self.profile.environment(ctx, template))
            image = template.image or ctx.image
            container = manifests.container(template.container, image, _resolve(template.ports, ctx), env)
            replicas = getattr(ctx.spec, template.replicas_field) if template.replicas_field else 1
            name = ctx.child_name(template.suffix)
            labels = ctx.labels(template.component)
            if template.kind == Kind.STATEFUL_SET:
                storage = ctx.spec.storage_size if template.storage_path else None
                workloads.append(
                    manifests.stateful_set(
                        name, ctx.namespace, labels, replicas, [container], name, storage, template.storage_path
                    )
                )
            else:
                workloads.append(manifests.deployment(name, ctx.namespace, labels, replicas, [container]))
        return workloads

    def apply_workloads(self, ctx: ServiceContext):
        for workload in self.desired_workloads(ctx):
            result = create_or_update(self.store, workload, owner=ctx.instance)
            logger.debug(f"{workload.kind} {workload.namespace}/{workload.name} {result.value}")

    def apply_services(self, ctx: ServiceContext):
        for template in self.profile.services:
            service = manifests.network_service(
                ctx.child_name(template.suffix),
                ctx.namespace,
                ctx.labels(template.component),
                _resolve(template.ports, ctx),
                template.headless,
            )
            create_or_update(self.store, service, owner=ctx.instance)

    def apply_route(self, ctx: ServiceContext):
        name = ctx.child_name(self.profile.api_suffix)
        route = manifests.http_route(
            name,
            ctx.namespace,
            ctx.spec.public_hostname,
            name,
            self.profile.port,
            ctx.spec.gateway_ref,
            self.config.default_gateway_name,
        )
        create_or_update(self.store, route, owner=ctx.instance)

    def primary_workloads_ready(self, ctx: ServiceContext) -> bool:
        primaries = [t for t in self.profile.workloads if t.primary] or self.profile.workloads[:1]
        for template in primaries:
            workload = self.store.find(template.kind, ctx.namespace, ctx.child_name(template.suffix))
            if workload is None or not is_workload_ready(workload):
                return False
        return True

    def write_status(self, ctx: ServiceContext, reconciling: List[Condition]) -> ReconcileResult:
        instance = ctx.instance
        generation = instance.metadata.generation
        if self.primary_workloads_ready(ctx):
            conditions = set_condition(
                instance.conditions,
                ConditionType.READY,
                ConditionStatus.TRUE,
                self.profile.ready_reason,
                f"{self.profile.display_name} is ready",
                generation,
            )
        else:
            conditions = reconciling

        status = instance.status.model_copy(deep=True)
        status.conditions = conditions
        status.api_endpoint = ctx.api_endpoint
        status.endpoints = self.profile.endpoints(ctx) if self.profile.endpoints else {}
        status.observed_generation = generation

        if status != instance.status:
            self.store.update_status(instance.model_copy(update={"status": status}))
            logger.info(f"{self.kind} {ctx.namespace}/{ctx.name} status updated, ready={is_ready(conditions)}")
        return ReconcileResult.done()

    def _gated(self, instance: Resource, reconciling: List[Condition], result: ReconcileResult) -> ReconcileResult:
        if reconciling != instance.conditions:
            status = instance.status.model_copy(deep=True)
            status.conditions = reconciling
            self.store.update_status(instance.model_copy(update={"status": status}))
        return result
