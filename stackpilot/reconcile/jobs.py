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
One-shot provisioning jobs.

Jobs are ordinary store objects of kind ``Job`` whose spec is a serialized
``JobStep``. The engine creates them, waits for the external executor to mark
them ``Complete`` or ``Failed``, and deletes failed ones so the next tick
recreates them under the same name.
"""

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from stackpilot.controller.result import ReconcileResult
from stackpilot.db.store import ObjectStore
from stackpilot.exceptions import NotFoundError
from stackpilot.reconcile.applier import ensure_exists
from stackpilot.reconcile.conditions import get_condition, set_condition
from stackpilot.resources import ConditionStatus, ConditionType, Kind, Resource

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_LIMIT = 4


class JobStep(BaseModel):
    """Structured description of what a job runs"""

    container: str
    image: str
    # Run in order inside one container; the first failing command fails the job
    commands: List[List[str]] = Field(default_factory=list)
    # unless[i] guards commands[i]: the command is skipped when the check exits 0
    # and prints something. Missing or None entries run unconditionally.
    unless: List[Optional[List[str]]] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    # env var name -> {"secret": ..., "key": ...}
    secret_env: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    backoff_limit: int = DEFAULT_BACKOFF_LIMIT

    def guard_for(self, index: int) -> Optional[List[str]]:
        return self.unless[index] if index < len(self.unless) else None


def job_name(owner_name: str, step: str) -> str:
    return f"{owner_name}-{step}"


def ensure_job(
    store: ObjectStore,
    namespace: str,
    name: str,
    step: JobStep,
    owner: Optional[Resource] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Resource:
    """Create the job if absent. An existing job is returned unchanged."""
    job = Resource.new(Kind.JOB, name, namespace, spec=step.model_dump(mode="json"), labels=labels)
    ensure_exists(store, job, owner)
    return store.get(Kind.JOB, namespace, name)


def _condition_true(job: Resource, condition_type: str) -> bool:
    condition = get_condition(job.conditions, condition_type)
    return condition is not None and condition.status == ConditionStatus.TRUE


def is_job_complete(job: Resource) -> bool:
    return _condition_true(job, ConditionType.COMPLETE)


def is_job_failed(job: Resource) -> bool:
    return _condition_true(job, ConditionType.FAILED)


def wait_for_job_completion(
    store: ObjectStore,
    namespace: str,
    name: str,
    pending_delay: float,
    failed_delay: float,
) -> Tuple[bool, ReconcileResult]:
    """
    Check a job's terminal state.

    Returns:
        (True, done) when the job completed.
        (False, requeue after failed_delay) when it failed; the job is deleted
        so that it is recreated with the same name on the next tick.
        (False, requeue after pending_delay) when it is still running or absent.
    """
    try:
        job = store.get(Kind.JOB, namespace, name)
    except NotFoundError:
        return False, ReconcileResult.after(pending_delay)

    if is_job_complete(job):
        return True, ReconcileResult.done()

    if is_job_failed(job):
        try:
            store.delete(Kind.JOB, namespace, name)
        except NotFoundError:
            pass
        return False, ReconcileResult.after(failed_delay)

    return False, ReconcileResult.after(pending_delay)


class JobCallbacks:
    """Callbacks used by job executors to report job outcomes"""

    def __init__(self, store: ObjectStore):
        self.store = store

    def _record(self, namespace: str, name: str, condition_type: str, reason: str, message: str) -> Resource:
        job = self.store.get(Kind.JOB, namespace, name)
        job.status.conditions = set_condition(
            job.conditions,
            condition_type,
            ConditionStatus.TRUE,
            reason,
            message,
            job.metadata.generation,
        )
        return self.store.update_status(job)

    def on_job_succeeded(self, namespace: str, name: str, message: str = "") -> Resource:
        """Called when the job's container exited successfully"""
        job = self._record(namespace, name, ConditionType.COMPLETE, "Completed", message)
        logger.info(f"Job {namespace}/{name} completed")
        return job

    def on_job_failed(self, namespace: str, name: str, message: str = "") -> Resource:
        """Called when the job exhausted its backoff limit"""
        job = self._record(namespace, name, ConditionType.FAILED, "BackoffLimitExceeded", message)
        logger.error(f"Job {namespace}/{name} failed: {message}")
        return job
