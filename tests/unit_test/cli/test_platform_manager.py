import json
from unittest.mock import patch

import pytest

from stackpilot.cli import platform_manager
from stackpilot.config import create_sync_engine, init_db, settings
from stackpilot.reconcile.jobs import JobStep, ensure_job, is_job_failed
from stackpilot.resources import Kind
from stackpilot.service.platform_service import PlatformService

MANIFEST = """
kind: OpenStackControlPlane
metadata:
  name: cloud
spec:
  public_domain: cloud.example.com
"""


@pytest.fixture
def service(store):
    service = PlatformService(store)
    with patch.object(platform_manager, "_platform_service", return_value=service):
        yield service


class TestPlatformManagerCli:
    def test_no_command_prints_help(self, capsys):
        assert platform_manager.main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_apply_and_status(self, service, tmp_path, capsys):
        path = tmp_path / "cloud.yaml"
        path.write_text(MANIFEST)

        assert platform_manager.main(["apply", "-f", str(path)]) == 0
        assert "OpenStackControlPlane default/cloud applied (generation 1)" in capsys.readouterr().out

        assert platform_manager.main(["status", Kind.CONTROL_PLANE, "cloud"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["name"] == "cloud"
        assert status["children"] == []

    def test_reconcile_and_run(self, service, store, capsys):
        service.apply({"kind": Kind.CONTROL_PLANE, "metadata": {"name": "cloud"}})

        assert platform_manager.main(["reconcile", Kind.CONTROL_PLANE, "cloud"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result == {"requeue": False, "requeue_after": 0, "error": None}
        assert store.get(Kind.CONTROL_PLANE, "default", "cloud").status.phase == "Infrastructure"

        assert platform_manager.main(["run"]) == 0
        assert "reconcile ticks" in capsys.readouterr().out
        assert store.find(Kind.STATEFUL_SET, "default", "cloud-database") is not None

    def test_list_status(self, service, capsys):
        service.apply({"kind": Kind.GLANCE, "metadata": {"name": "glance"}})
        assert platform_manager.main(["status"]) == 0
        assert [o["name"] for o in json.loads(capsys.readouterr().out)] == ["glance"]

    def test_delete(self, service, store, capsys):
        service.apply({"kind": Kind.GLANCE, "metadata": {"name": "glance"}})
        assert platform_manager.main(["delete", Kind.GLANCE, "glance"]) == 0
        assert "Deletion requested" in capsys.readouterr().out
        assert store.find(Kind.GLANCE, "default", "glance") is None

    def test_job_result(self, service, store):
        ensure_job(store, "default", "glance-db-sync", JobStep(container="db-sync", image="glance"))
        assert platform_manager.main(["job-result", "glance-db-sync", "--failed", "--message", "exit 1"]) == 0
        assert is_job_failed(store.get(Kind.JOB, "default", "glance-db-sync"))

    def test_failure_returns_error_code(self, service, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("kind: Swift\nmetadata:\n  name: swift\n")
        assert platform_manager.main(["apply", "-f", str(path)]) == 1


class TestWorkerNotification:
    @pytest.fixture
    def schedule(self):
        engine = create_sync_engine("sqlite://")
        init_db(engine)
        with patch("stackpilot.config.get_sync_engine", return_value=engine), patch.object(
            settings, "scheduler_type", "celery"
        ), patch("stackpilot.tasks.scheduler.CeleryTaskScheduler.schedule_reconcile") as schedule:
            yield schedule

    def test_apply_queues_a_tick(self, schedule):
        service = platform_manager._platform_service()
        service.apply({"kind": Kind.CONTROL_PLANE, "metadata": {"name": "cloud"}})
        schedule.assert_any_call(Kind.CONTROL_PLANE, "default", "cloud", 0)

    def test_job_result_queues_the_owning_service(self, schedule):
        service = platform_manager._platform_service()
        glance = service.apply({"kind": Kind.GLANCE, "metadata": {"name": "glance"}})
        ensure_job(service.store, "default", "glance-db-sync", JobStep(container="db-sync", image="glance"), glance)
        schedule.reset_mock()

        service.record_job_result("default", "glance-db-sync", True, "")
        schedule.assert_any_call(Kind.GLANCE, "default", "glance", 0)

    def test_delete_queues_the_finalizing_tick(self, schedule):
        service = platform_manager._platform_service()
        glance = service.apply({"kind": Kind.GLANCE, "metadata": {"name": "glance"}})
        glance.metadata.finalizers = ["openstack.k8s.io/cleanup"]
        service.store.update(glance)
        schedule.reset_mock()

        service.delete(Kind.GLANCE, "default", "glance")
        schedule.assert_any_call(Kind.GLANCE, "default", "glance", 0)

    def test_in_process_commands_do_not_queue(self, schedule):
        service = platform_manager._platform_service(notify_workers=False)
        service.apply({"kind": Kind.CONTROL_PLANE, "metadata": {"name": "cloud"}})
        schedule.assert_not_called()

    def test_local_scheduler_does_not_queue(self, schedule):
        with patch.object(settings, "scheduler_type", "local"):
            service = platform_manager._platform_service()
        service.apply({"kind": Kind.CONTROL_PLANE, "metadata": {"name": "cloud"}})
        schedule.assert_not_called()
