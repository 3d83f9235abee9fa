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

import argparse
import json
import logging
import sys
from typing import Optional

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def _platform_service(notify_workers: bool = True):
    """
    Build the service over the configured store.

    With the Celery scheduler, every write made here is turned into queued
    ticks for the changed object and its owners, the same way a worker's own
    writes are. Commands that reconcile in-process pass notify_workers=False.
    """
    from stackpilot.config import get_sync_engine, settings
    from stackpilot.controller.manager import ControllerManager
    from stackpilot.db.store import SqlObjectStore
    from stackpilot.service.platform_service import PlatformService
    from stackpilot.tasks.scheduler import CeleryTaskScheduler

    store = SqlObjectStore(get_sync_engine())
    if notify_workers and settings.scheduler_type == "celery":
        ControllerManager(store, CeleryTaskScheduler()).start()
    return PlatformService(store)


def _local_manager(service):
    from stackpilot.controller.manager import ControllerManager
    from stackpilot.tasks.scheduler import LocalTaskScheduler

    return ControllerManager(service.store, LocalTaskScheduler())


def apply_manifests(path: str):
    """Apply every object in a YAML manifest file ('-' reads stdin)"""
    service = _platform_service()
    if path == '-':
        text = sys.stdin.read()
    else:
        with open(path, encoding='utf-8') as f:
            text = f.read()

    for resource in service.apply_yaml(text):
        print(f"{resource.kind} {resource.namespace}/{resource.name} applied "
              f"(generation {resource.metadata.generation})")


def delete_object(kind: str, namespace: str, name: str):
    service = _platform_service()
    if service.delete(kind, namespace, name):
        print(f"Deletion requested for {kind} {namespace}/{name}")
    else:
        print(f"{kind} {namespace}/{name} not found")


def show_status(kind: Optional[str], namespace: Optional[str], name: Optional[str]):
    """Describe one object, or list all managed objects"""
    service = _platform_service()
    if name:
        status = service.describe(kind, namespace or 'default', name)
        if status is None:
            print(f"{kind} {namespace or 'default'}/{name} not found")
            return
    else:
        status = service.list_objects(kind, namespace)
    print(json.dumps(status, indent=2, ensure_ascii=False))


def run_reconcile(kind: str, namespace: str, name: str):
    """Run a single reconcile tick without scheduling follow-ups"""
    manager = _local_manager(_platform_service(notify_workers=False))
    result = manager.reconcile(kind, namespace, name)
    print(json.dumps({
        "requeue": result.requeue,
        "requeue_after": result.requeue_after,
        "error": result.error,
    }, indent=2))


def run_local(max_ticks: int, wait: bool):
    """Reconcile every managed object in-process until the queue is drained"""
    service = _platform_service(notify_workers=False)
    manager = _local_manager(service)
    manager.start()
    queued = manager.resync()
    ticks = manager.run_local(max_ticks=max_ticks, wait=wait)
    print(f"Queued {queued} objects, ran {ticks} reconcile ticks")
    pending = manager.task_scheduler.pending()
    if pending:
        print(f"{len(pending)} ticks still scheduled:")
        for key in pending:
            print(f"- {key}")


def queue_resync():
    from stackpilot.tasks.reconcile_tasks import resync_all_task

    task = resync_all_task.delay()
    print(f"Queued resync task {task.id}")


def record_job_result(namespace: str, name: str, succeeded: bool, message: str):
    service = _platform_service()
    job = service.record_job_result(namespace, name, succeeded, message)
    outcome = "succeeded" if succeeded else "failed"
    print(f"Recorded job {job.namespace}/{job.name} as {outcome}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="StackPilot control plane manager CLI")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Apply command
    apply_parser = subparsers.add_parser('apply', help='Create or update objects from a YAML manifest')
    apply_parser.add_argument('-f', '--file', required=True, help="Manifest file, '-' for stdin")

    # Delete command
    delete_parser = subparsers.add_parser('delete', help='Request deletion of an object')
    delete_parser.add_argument('kind', help='Object kind, e.g. OpenStackControlPlane')
    delete_parser.add_argument('name', help='Object name')
    delete_parser.add_argument('-n', '--namespace', default='default', help='Object namespace')

    # Status command
    status_parser = subparsers.add_parser('status', help='Show object status')
    status_parser.add_argument('kind', nargs='?', help='Object kind (default: all managed kinds)')
    status_parser.add_argument('name', nargs='?', help='Object name (default: list)')
    status_parser.add_argument('-n', '--namespace', help='Object namespace')

    # Reconcile command
    reconcile_parser = subparsers.add_parser('reconcile', help='Run one reconcile tick for an object')
    reconcile_parser.add_argument('kind', help='Object kind')
    reconcile_parser.add_argument('name', help='Object name')
    reconcile_parser.add_argument('-n', '--namespace', default='default', help='Object namespace')

    # Run command
    run_parser = subparsers.add_parser('run', help='Reconcile all objects in-process')
    run_parser.add_argument('--max-ticks', type=int, default=1000, help='Maximum reconcile ticks')
    run_parser.add_argument('--wait', action='store_true', help='Wait for delayed ticks instead of stopping')

    # Resync command
    subparsers.add_parser('resync', help='Queue a resync of all objects on the worker')

    # Job result command
    job_parser = subparsers.add_parser('job-result', help='Record the outcome of a provisioning job')
    job_parser.add_argument('name', help='Job name')
    job_parser.add_argument('-n', '--namespace', default='default', help='Job namespace')
    outcome = job_parser.add_mutually_exclusive_group(required=True)
    outcome.add_argument('--succeeded', action='store_true', help='Job completed')
    outcome.add_argument('--failed', action='store_true', help='Job exhausted its retries')
    job_parser.add_argument('--message', default='', help='Executor message')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == 'apply':
            apply_manifests(args.file)
        elif args.command == 'delete':
            delete_object(args.kind, args.namespace, args.name)
        elif args.command == 'status':
            show_status(args.kind, args.namespace, args.name)
        elif args.command == 'reconcile':
            run_reconcile(args.kind, args.namespace, args.name)
        elif args.command == 'run':
            run_local(args.max_ticks, args.wait)
        elif args.command == 'resync':
            queue_resync()
        elif args.command == 'job-result':
            record_job_result(args.namespace, args.name, args.succeeded, args.message)
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except Exception as e:
        logger.error(f"Command failed: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
