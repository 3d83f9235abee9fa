import pytest

from stackpilot.controller.controlplane import ControlPlaneReconciler
from stackpilot.reconcile.jobs import JobStep, ensure_job, is_job_complete
from stackpilot.resources import Kind
from stackpilot.service.platform_service import ManifestError, PlatformService

MANIFESTS = """
kind: OpenStackControlPlane
metadata:
  name: cloud
  namespace: openstack
spec:
  public_domain: cloud.example.com
  keystone:
    replicas: 2
---
kind: Database
metadata:
  name: standalone-db
spec:
  engine: mysql
"""


@pytest.fixture
def service(store):
    return PlatformService(store)


def _manifest(spec=None, labels=None):
    return {
        "kind": Kind.GLANCE,
        "metadata": {"name": "glance", "labels": labels or {}},
        "spec": spec or {"replicas": 1},
    }


class TestApply:
    def test_create(self, service):
        created = service.apply(_manifest())
        assert created.metadata.generation == 1
        assert created.namespace == "default"

    def test_unchanged_apply_writes_nothing(self, service):
        created = service.apply(_manifest())
        again = service.apply(_manifest())
        assert again.metadata.resource_version == created.metadata.resource_version

    def test_spec_change_bumps_generation(self, service):
        service.apply(_manifest())
        updated = service.apply(_manifest({"replicas": 3}))
        assert updated.metadata.generation == 2
        assert updated.spec == {"replicas": 3}

    def test_label_change_keeps_generation(self, service):
        service.apply(_manifest())
        updated = service.apply(_manifest(labels={"team": "images"}))
        assert updated.metadata.generation == 1
        assert updated.metadata.labels == {"team": "images"}

    def test_yaml_documents(self, service, store):
        applied = service.apply_yaml(MANIFESTS)
        assert [(r.kind, r.namespace, r.name) for r in applied] == [
            (Kind.CONTROL_PLANE, "openstack", "cloud"),
            (Kind.DATABASE, "default", "standalone-db"),
        ]
        assert store.get(Kind.CONTROL_PLANE, "openstack", "cloud").spec["keystone"] == {"replicas": 2}

    @pytest.mark.parametrize(
        "manifest",
        [
            {"kind": "Swift", "metadata": {"name": "swift"}},
            {"kind": Kind.GLANCE, "metadata": {}},
            {"kind": Kind.GLANCE, "metadata": {"name": "glance"}, "spec": {"replicas": "many"}},
            {"kind": Kind.CONTROL_PLANE, "metadata": {"name": "cloud"}, "spec": {"nova": {"compute_replicas": []}}},
        ],
    )
    def test_invalid_manifests(self, service, manifest):
        with pytest.raises(ManifestError):
            service.apply(manifest)


class TestInspect:
    def test_describe_missing(self, service):
        assert service.describe(Kind.GLANCE, "default", "glance") is None

    def test_describe_control_plane(self, service, store, config):
        service.apply({"kind": Kind.CONTROL_PLANE, "metadata": {"name": "cloud"}, "spec": {}})
        ControlPlaneReconciler(store, config).reconcile("default", "cloud")

        status = service.describe(Kind.CONTROL_PLANE, "default", "cloud")
        assert status["phase"] == "Infrastructure"
        assert status["ready"] is False
        assert status["conditions"][0]["reason"] == "Provisioning"
        assert sorted(child["name"] for child in status["children"]) == [
            "cloud-database",
            "cloud-memcached",
            "cloud-ovn",
            "cloud-rabbitmq",
        ]
        assert all(child["ready"] is False for child in status["children"])

    def test_list_objects(self, service):
        service.apply(_manifest())
        service.apply({"kind": Kind.NOVA, "metadata": {"name": "nova", "namespace": "other"}})
        assert [o["name"] for o in service.list_objects()] == ["glance", "nova"]
        assert [o["name"] for o in service.list_objects(namespace="other")] == ["nova"]
        assert [o["name"] for o in service.list_objects(kind=Kind.GLANCE)] == ["glance"]

    def test_delete(self, service, store):
        service.apply(_manifest())
        assert service.delete(Kind.GLANCE, "default", "glance")
        assert store.find(Kind.GLANCE, "default", "glance") is None
        assert not service.delete(Kind.GLANCE, "default", "glance")

    def test_record_job_result(self, service, store):
        ensure_job(store, "default", "glance-db-sync", JobStep(container="db-sync", image="glance"))
        job = service.record_job_result("default", "glance-db-sync", True)
        assert is_job_complete(job)
