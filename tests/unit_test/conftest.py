"""
Shared fixtures for the unit tests.

Every test gets its own in-memory object store. ``FakeExecutor`` stands in for
the external job and workload executors: it marks jobs complete or failed and
reports workloads and services as ready.
"""

from typing import List

import pytest

from stackpilot.config import Config, create_sync_engine, init_db
from stackpilot.db.store import SqlObjectStore
from stackpilot.reconcile.conditions import set_condition
from stackpilot.reconcile.jobs import JobCallbacks, is_job_complete, is_job_failed
from stackpilot.resources import ConditionStatus, ConditionType, Kind, Resource


class FakeExecutor:
    def __init__(self, store: SqlObjectStore):
        self.store = store
        self.callbacks = JobCallbacks(store)

    def complete_job(self, name: str, namespace: str = "default") -> Resource:
        return self.callbacks.on_job_succeeded(namespace, name)

    def fail_job(self, name: str, namespace: str = "default") -> Resource:
        return self.callbacks.on_job_failed(namespace, name, "exit code 1")

    def complete_all_jobs(self, namespace: str = "default") -> List[str]:
        completed = []
        for job in self.store.list(kind=Kind.JOB, namespace=namespace):
            if not is_job_complete(job) and not is_job_failed(job):
                self.complete_job(job.name, namespace)
                completed.append(job.name)
        return completed

    def ready_workloads(self, namespace: str = "default") -> List[str]:
        """Report every Deployment and StatefulSet as fully rolled out"""
        names = []
        for kind in (Kind.DEPLOYMENT, Kind.STATEFUL_SET):
            for workload in self.store.list(kind=kind, namespace=namespace):
                replicas = workload.spec.get("replicas", 1)
                workload.status.replicas = replicas
                workload.status.ready_replicas = replicas
                workload.status.observed_generation = workload.metadata.generation
                self.store.update_status(workload)
                names.append(workload.name)
        return names

    def mark_ready(self, kind: str, name: str, namespace: str = "default", ready: bool = True) -> Resource:
        """Set Ready on a service object, creating the object first if needed"""
        resource = self.store.find(kind, namespace, name)
        if resource is None:
            resource = self.store.create(Resource.new(kind, name, namespace))
        resource.status.conditions = set_condition(
            resource.conditions,
            ConditionType.READY,
            ConditionStatus.TRUE if ready else ConditionStatus.FALSE,
            "Test",
            "set by test",
            resource.metadata.generation,
        )
        resource.status.observed_generation = resource.metadata.generation
        return self.store.update_status(resource)


@pytest.fixture
def config():
    return Config(_env_file=None, scheduler_type="local")


@pytest.fixture
def store():
    engine = create_sync_engine("sqlite://")
    init_db(engine)
    return SqlObjectStore(engine)


@pytest.fixture
def executor(store):
    return FakeExecutor(store)
