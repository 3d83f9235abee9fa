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
Control plane rollout.

The control plane object owns one child per platform service and walks them
up in tiers. The phase records the last tier that was created:

    Pending        -> create database, broker, cache (and OVN)     -> Infrastructure
    Infrastructure -> wait for that tier, create identity          -> Identity
    Identity       -> wait for identity, create image/placement/network -> CoreServices
    CoreServices   -> wait for those, create compute               -> Compute
    Compute        -> wait for compute                             -> Ready

A spec change (generation ahead of the observed generation) sends the rollout
back to Pending so every tier is re-applied and re-gated. A tier that stays
unready longer than the phase timeout moves the rollout to Failed.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from stackpilot.controller.base import Reconciler
from stackpilot.controller.result import ReconcileResult
from stackpilot.reconcile.applier import create_or_update
from stackpilot.reconcile.conditions import set_condition
from stackpilot.reconcile.readiness import first_not_ready
from stackpilot.resources import (
    ConditionStatus,
    ConditionType,
    ControlPlaneSpec,
    Kind,
    ObjectRef,
    Phase,
    Resource,
    ServiceSpec,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChildService:
    kind: str
    # Spec section on the control plane, also the child name suffix
    section: str
    # API services get a public hostname and gateway inherited from the control plane
    api: bool = False

    def child_name(self, control_plane_name: str) -> str:
        return f"{control_plane_name}-{self.section}"


DATABASE = ChildService(Kind.DATABASE, "database")
RABBITMQ = ChildService(Kind.RABBITMQ, "rabbitmq")
MEMCACHED = ChildService(Kind.MEMCACHED, "memcached")
OVN = ChildService(Kind.OVN_NETWORK, "ovn")
KEYSTONE = ChildService(Kind.KEYSTONE, "keystone", api=True)
GLANCE = ChildService(Kind.GLANCE, "glance", api=True)
PLACEMENT = ChildService(Kind.PLACEMENT, "placement", api=True)
NEUTRON = ChildService(Kind.NEUTRON, "neutron", api=True)
NOVA = ChildService(Kind.NOVA, "nova", api=True)


def infrastructure_tier(spec: ControlPlaneSpec) -> List[ChildService]:
    tier = [DATABASE, RABBITMQ, MEMCACHED]
    if spec.network_backend == "ovn":
        tier.append(OVN)
    return tier


def identity_tier(spec: ControlPlaneSpec) -> List[ChildService]:
    return [KEYSTONE]


def core_services_tier(spec: ControlPlaneSpec) -> List[ChildService]:
    return [GLANCE, PLACEMENT, NEUTRON]


def compute_tier(spec: ControlPlaneSpec) -> List[ChildService]:
    return [NOVA]


Tier = Callable[[ControlPlaneSpec], List[ChildService]]


@dataclass(frozen=True)
class PhaseStep:
    """Gate on ``gate``'s children, then create ``creates``' children and move to ``next_phase``"""

    gate: Optional[Tier]
    creates: Optional[Tier]
    next_phase: Phase


PHASE_STEPS: Dict[Phase, PhaseStep] = {
    Phase.PENDING: PhaseStep(gate=None, creates=infrastructure_tier, next_phase=Phase.INFRASTRUCTURE),
    Phase.INFRASTRUCTURE: PhaseStep(gate=infrastructure_tier, creates=identity_tier, next_phase=Phase.IDENTITY),
    Phase.IDENTITY: PhaseStep(gate=identity_tier, creates=core_services_tier, next_phase=Phase.CORE_SERVICES),
    Phase.CORE_SERVICES: PhaseStep(gate=core_services_tier, creates=compute_tier, next_phase=Phase.COMPUTE),
    Phase.COMPUTE: PhaseStep(gate=compute_tier, creates=None, next_phase=Phase.READY),
}


class ControlPlaneReconciler(Reconciler):
    kind = Kind.CONTROL_PLANE
    requeue_after_finalizer = False

    def reconcile_instance(self, instance: Resource) -> ReconcileResult:
        spec = ControlPlaneSpec.model_validate(instance.spec)
        key = f"{instance.namespace}/{instance.name}"

        try:
            phase = Phase(instance.status.phase) if instance.status.phase else Phase.PENDING
        except ValueError:
            logger.warning(f"Control plane {key} has unknown phase {instance.status.phase}, ignoring")
            return ReconcileResult.done()

        if phase != Phase.PENDING and instance.metadata.generation > instance.status.observed_generation:
            logger.info(
                f"Control plane {key} spec changed (generation {instance.metadata.generation}), "
                f"restarting rollout from {phase.value}"
            )
            phase = Phase.PENDING

        step = PHASE_STEPS.get(phase)
        if step is None:
            # Ready and Failed are steady states
            return ReconcileResult.done()

        if step.gate is not None:
            refs = [
                ObjectRef(kind=child.kind, namespace=instance.namespace, name=child.child_name(instance.name))
                for child in step.gate(spec)
            ]
            blocked = first_not_ready(self.store, refs, require_current=True)
            if blocked is not None:
                logger.debug(f"Control plane {key} in phase {phase.value} waiting for {blocked.kind} {blocked.name}")
                return self.wait_or_fail(instance, spec, phase)

        if step.creates is not None:
            for child in step.creates(spec):
                self.apply_child(instance, spec, child)

        return self.set_phase(instance, step.next_phase)

    def child_spec(self, spec: ControlPlaneSpec, child: ChildService) -> dict:
        """The child's section of the control plane spec, completed with platform-wide defaults"""
        child_spec: ServiceSpec = getattr(spec, child.section).model_copy(deep=True)
        if child.api:
            if not child_spec.public_hostname:
                domain = spec.public_domain or self.config.default_public_domain
                child_spec.public_hostname = f"{child.section}.{domain}"
            if (child_spec.gateway_ref is None or not child_spec.gateway_ref.name) and spec.gateway_ref is not None:
                child_spec.gateway_ref = spec.gateway_ref.model_copy()
        if not child_spec.region:
            child_spec.region = spec.region or self.config.default_region
        if child.kind == Kind.NEUTRON:
            child_spec.network_backend = spec.network_backend
        return child_spec.model_dump(mode="json", exclude_none=True)

    def apply_child(self, instance: Resource, spec: ControlPlaneSpec, child: ChildService):
        desired = Resource.new(
            child.kind,
            child.child_name(instance.name),
            instance.namespace,
            spec=self.child_spec(spec, child),
            labels={"stackpilot.io/control-plane": instance.name},
        )
        result = create_or_update(self.store, desired, owner=instance)
        logger.debug(f"{child.kind} {desired.namespace}/{desired.name} {result.value}")

    def phase_timeout(self, spec: ControlPlaneSpec) -> float:
        if spec.phase_timeout_seconds is not None:
            return spec.phase_timeout_seconds
        return self.config.phase_timeout_seconds

    def wait_or_fail(self, instance: Resource, spec: ControlPlaneSpec, phase: Phase) -> ReconcileResult:
        timeout = self.phase_timeout(spec)
        started = instance.status.phase_started_at
        if timeout > 0 and started is not None and (utc_now() - started).total_seconds() > timeout:
            logger.error(
                f"Control plane {instance.namespace}/{instance.name} stuck in phase {phase.value} "
                f"for more than {timeout}s"
            )
            return self.set_phase(
                instance,
                Phase.FAILED,
                reason="PhaseTimeout",
                message=f"Phase {phase.value} did not complete within {timeout:g}s",
            )
        return ReconcileResult.after(self.config.requeue_delay_seconds)

    def set_phase(
        self,
        instance: Resource,
        phase: Phase,
        reason: Optional[str] = None,
        message: Optional[str] = None,
    ) -> ReconcileResult:
        """Write phase, observed generation and the Ready condition in one status update"""
        generation = instance.metadata.generation
        ready = phase == Phase.READY
        status = instance.status.model_copy(deep=True)
        status.phase = phase.value
        status.phase_started_at = utc_now()
        status.observed_generation = generation
        status.conditions = set_condition(
            status.conditions,
            ConditionType.READY,
            ConditionStatus.TRUE if ready else ConditionStatus.FALSE,
            reason or ("AllServicesReady" if ready else "Provisioning"),
            message or ("Control plane is ready" if ready else f"Rollout in phase {phase.value}"),
            generation,
        )
        self.store.update_status(instance.model_copy(update={"status": status}))
        logger.info(f"Control plane {instance.namespace}/{instance.name} moved to phase {phase.value}")
        return ReconcileResult.done()
