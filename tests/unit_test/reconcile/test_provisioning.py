import pytest

from stackpilot.reconcile.images import (
    DATABASE_ENGINES,
    DEFAULT_KEYSTONE,
    database_engine_or_default,
    image_or_default,
    kolla_image,
)
from stackpilot.reconcile.provisioning import (
    database_create_step,
    endpoint_registration_step,
    keystone_bootstrap_step,
    migration_step,
)


def run_step(step, created, interrupt_at=None):
    """
    Execute a step the way the job container does.

    ``created`` holds the commands whose effect already exists. A guard prints
    output exactly when the command it protects ran before; an unguarded
    create that already ran fails like the real client does.
    """
    for index, command in enumerate(step.commands):
        if index == interrupt_at:
            raise RuntimeError("container killed")
        key = tuple(command)
        if step.guard_for(index) is not None and key in created:
            continue
        if key in created:
            raise RuntimeError(f"already exists: {command[-1]}")
        created.add(key)


class TestImages:
    def test_kolla_image(self):
        assert kolla_image("keystone") == "quay.io/openstack.kolla/keystone:2025.1"

    def test_override(self):
        assert image_or_default("", DEFAULT_KEYSTONE) == DEFAULT_KEYSTONE
        assert image_or_default("my/keystone:dev", DEFAULT_KEYSTONE) == "my/keystone:dev"

    def test_engine_fallback(self):
        assert database_engine_or_default("").name == "postgresql"
        assert database_engine_or_default("oracle").name == "postgresql"
        assert database_engine_or_default("mariadb").port == 3306


class TestDatabaseCreateStep:
    def test_postgresql(self):
        step = database_create_step(
            DATABASE_ENGINES["postgresql"],
            "cloud-database.default.svc",
            "cloud-database-root-password",
            "cloud-nova-db-password",
            ["nova", "nova_api"],
            "nova",
        )
        assert step.container == "db-create"
        assert len(step.commands) == 3
        assert step.commands[0][0] == "psql"
        assert "CREATE DATABASE nova_api OWNER nova" in step.commands[2]
        assert step.secret_env["PGPASSWORD"] == {"secret": "cloud-database-root-password", "key": "password"}
        assert step.secret_env["SERVICE_PASSWORD"] == {"secret": "cloud-nova-db-password", "key": "password"}

    def test_postgresql_creates_are_guarded_by_catalog_lookups(self):
        step = database_create_step(
            DATABASE_ENGINES["postgresql"], "db.default.svc", "root-secret", "svc-secret", ["nova", "nova_api"], "nova"
        )
        assert len(step.unless) == len(step.commands)
        assert step.unless[0][-1] == "SELECT 1 FROM pg_roles WHERE rolname = 'nova'"
        assert step.unless[1][-1] == "SELECT 1 FROM pg_database WHERE datname = 'nova'"
        assert step.unless[2][-1] == "SELECT 1 FROM pg_database WHERE datname = 'nova_api'"
        for guard in step.unless:
            # Unaligned tuples-only output is empty when the row is missing
            assert guard[0] == "psql"
            assert "--tuples-only" in guard and "--no-align" in guard

    def test_postgresql_rerun_after_partial_run(self):
        step = database_create_step(
            DATABASE_ENGINES["postgresql"], "db.default.svc", "root-secret", "svc-secret", ["nova", "nova_api"], "nova"
        )
        created = set()
        with pytest.raises(RuntimeError, match="container killed"):
            run_step(step, created, interrupt_at=2)
        assert len(created) == 2

        # The recreated job skips the role and first database
        run_step(step, created)
        assert len(created) == 3
        run_step(step, created)

    def test_mysql_runs_one_statement_batch(self):
        step = database_create_step(
            DATABASE_ENGINES["mysql"], "db.default.svc", "root-secret", "svc-secret", ["glance"], "glance"
        )
        assert len(step.commands) == 1
        statements = step.commands[0][-1]
        assert "CREATE DATABASE IF NOT EXISTS glance" in statements
        assert "GRANT ALL PRIVILEGES ON glance.*" in statements
        assert "CREATE USER IF NOT EXISTS 'glance'@'%'" in statements
        assert "MYSQL_PWD" in step.secret_env
        # Every statement is already safe to repeat
        assert step.unless == []

    def test_passwords_never_inline(self):
        step = database_create_step(
            DATABASE_ENGINES["postgresql"], "db.default.svc", "root-secret", "svc-secret", ["glance"], "glance"
        )
        dumped = step.model_dump_json()
        assert "$(SERVICE_PASSWORD)" in dumped


class TestOtherSteps:
    def test_migration(self):
        step = migration_step("db-sync", "glance:latest", [["glance-manage", "db_sync"]], "glance-db", "db", "glance")
        assert step.env == {"DATABASE_HOST": "db", "DATABASE_NAME": "glance"}
        assert step.secret_env["DB_PASSWORD"]["secret"] == "glance-db"
        assert step.backoff_limit == 4

    def test_keystone_bootstrap(self):
        step = keystone_bootstrap_step(
            DEFAULT_KEYSTONE,
            "cloud-keystone-admin-password",
            "http://cloud-keystone-api.default.svc:5000/v3",
            "https://keystone.example.com/v3",
            "RegionOne",
        )
        command = step.commands[0]
        assert command[:2] == ["keystone-manage", "bootstrap"]
        assert command[command.index("--bootstrap-public-url") + 1] == "https://keystone.example.com/v3"
        assert command[command.index("--bootstrap-region-id") + 1] == "RegionOne"

    def test_endpoint_registration(self):
        step = endpoint_registration_step(
            "glance",
            "image",
            "http://cloud-glance-api.default.svc:9292",
            "https://glance.example.com",
            "RegionOne",
            "http://cloud-keystone-api.default.svc:5000/v3",
            "cloud-keystone-admin-password",
        )
        assert step.backoff_limit == 6
        assert step.commands[0][:3] == ["openstack", "service", "create"]
        interfaces = {command[6]: command[7] for command in step.commands[1:]}
        assert interfaces == {
            "internal": "http://cloud-glance-api.default.svc:9292",
            "public": "https://glance.example.com",
            "admin": "http://cloud-glance-api.default.svc:9292",
        }
        assert step.env["OS_AUTH_URL"] == "http://cloud-keystone-api.default.svc:5000/v3"
        assert step.secret_env["OS_PASSWORD"]["secret"] == "cloud-keystone-admin-password"

    def test_endpoint_registration_is_guarded(self):
        step = endpoint_registration_step(
            "glance", "image", "http://glance:9292", "https://glance.example.com", "RegionOne", "http://ks", "ks-admin"
        )
        assert step.unless[0] == ["openstack", "service", "show", "glance", "-f", "value", "-c", "id"]
        for index, interface in enumerate(("internal", "public", "admin"), start=1):
            guard = step.unless[index]
            assert guard[:3] == ["openstack", "endpoint", "list"]
            assert guard[guard.index("--service") + 1] == "image"
            assert guard[guard.index("--interface") + 1] == interface
            assert guard[guard.index("--region") + 1] == "RegionOne"

    def test_endpoint_registration_rerun_after_partial_run(self):
        step = endpoint_registration_step(
            "glance", "image", "http://glance:9292", "https://glance.example.com", "RegionOne", "http://ks", "ks-admin"
        )
        created = set()
        with pytest.raises(RuntimeError):
            run_step(step, created, interrupt_at=2)

        run_step(step, created)
        assert len(created) == 4
