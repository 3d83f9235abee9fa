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
Celery entry points.

Every tick runs through ``reconcile_object_task``; requeues are scheduled back
onto the queue with a countdown. ``resync_all_task`` is driven by beat and
re-queues every managed object so nothing is lost if an event was missed.

Ticks for one object never overlap: each holds a per-object lock, and a tick
that finds the lock taken is deferred instead of run.
"""

import logging
from dataclasses import asdict
from functools import lru_cache

from config.celery import app
from stackpilot.concurrent_control import LockProtocol, create_lock, object_lock_key
from stackpilot.config import get_sync_engine, settings
from stackpilot.controller.manager import ControllerManager
from stackpilot.db.store import SqlObjectStore
from stackpilot.exceptions import NotFoundError
from stackpilot.reconcile.jobs import JobCallbacks
from stackpilot.resources import ObjectRef
from stackpilot.tasks.scheduler import CeleryTaskScheduler

logger = logging.getLogger(__name__)


class TaskConfig:
    RETRY_COUNTDOWN_RECONCILE = 30
    RETRY_MAX_RETRIES_RECONCILE = 3
    RETRY_COUNTDOWN_JOB_RESULT = 10
    RETRY_MAX_RETRIES_JOB_RESULT = 5


@lru_cache(maxsize=1)
def get_object_store() -> SqlObjectStore:
    return SqlObjectStore(get_sync_engine())


@lru_cache(maxsize=1)
def get_controller_manager() -> ControllerManager:
    manager = ControllerManager(get_object_store(), CeleryTaskScheduler())
    manager.start()
    return manager


def get_object_lock(kind: str, namespace: str, name: str) -> LockProtocol:
    return create_lock(
        settings.object_lock_type,
        key=object_lock_key(kind, namespace, name),
        redis_url=settings.object_lock_redis_url,
        expire_time=settings.object_lock_expire_seconds,
    )


@app.task(bind=True)
def reconcile_object_task(self, kind: str, namespace: str, name: str):
    """
    Run one reconcile tick for an object

    Args:
        kind: Object kind
        namespace: Object namespace
        name: Object name
    """
    try:
        manager = get_controller_manager()
        lock = get_object_lock(kind, namespace, name)
        try:
            if not lock.acquire(timeout=0):
                logger.info(f"{kind} {namespace}/{name} is being reconciled elsewhere, deferring")
                manager.enqueue(
                    ObjectRef(kind=kind, namespace=namespace, name=name), settings.conflict_requeue_seconds
                )
                return {"deferred": True}
            result = manager.reconcile_and_schedule(kind, namespace, name)
        finally:
            lock.release()
            lock.close()
        return asdict(result)
    except Exception as e:
        logger.error(f"Reconcile task failed for {kind} {namespace}/{name}: {str(e)}", exc_info=True)
        raise self.retry(
            exc=e,
            countdown=TaskConfig.RETRY_COUNTDOWN_RECONCILE,
            max_retries=TaskConfig.RETRY_MAX_RETRIES_RECONCILE,
        )


@app.task(bind=True)
def resync_all_task(self):
    """Periodic task queueing a tick for every managed object"""
    try:
        count = get_controller_manager().resync()
        return {"queued": count}
    except Exception as e:
        logger.error(f"Resync failed: {str(e)}", exc_info=True)
        raise


@app.task(bind=True)
def record_job_result_task(self, namespace: str, name: str, succeeded: bool, message: str = ""):
    """
    Record the outcome of a provisioning job reported by the job executor

    Args:
        namespace: Job namespace
        name: Job name
        succeeded: Whether the job completed successfully
        message: Executor message, usually the failure output
    """
    callbacks = JobCallbacks(get_object_store())
    try:
        if succeeded:
            callbacks.on_job_succeeded(namespace, name, message)
        else:
            callbacks.on_job_failed(namespace, name, message)
    except NotFoundError:
        logger.warning(f"Job {namespace}/{name} no longer exists, result dropped")
        return {"recorded": False}
    except Exception as e:
        logger.error(f"Recording result of job {namespace}/{name} failed: {str(e)}")
        raise self.retry(
            exc=e,
            countdown=TaskConfig.RETRY_COUNTDOWN_JOB_RESULT,
            max_retries=TaskConfig.RETRY_MAX_RETRIES_JOB_RESULT,
        )
    return {"recorded": True}
