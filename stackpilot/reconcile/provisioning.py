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
Job step descriptors for the provisioning steps shared by the API services:
database creation, schema migration, identity bootstrap and catalog
registration. Passwords never appear in a step; they are passed as secret
references and expanded by the executor as ``$(VAR)``.
"""

from typing import List, Optional

from stackpilot.reconcile.images import DEFAULT_KEYSTONE, DatabaseEngine
from stackpilot.reconcile.jobs import DEFAULT_BACKOFF_LIMIT, JobStep
from stackpilot.reconcile.secret import secret_key_ref

PASSWORD_KEY = "password"
ENDPOINT_BACKOFF_LIMIT = 6
ENDPOINT_INTERFACES = ("internal", "public", "admin")


def database_create_step(
    engine: DatabaseEngine,
    host: str,
    root_secret: str,
    service_secret: str,
    databases: List[str],
    username: str,
) -> JobStep:
    """
    Create the service's databases and a login role owning them.

    A failed job is recreated and rerun from the start, so every command must
    tolerate what an earlier attempt already created. PostgreSQL has no
    ``IF NOT EXISTS`` for roles and databases; each create is guarded by a
    catalog lookup instead.
    """
    unless: List[Optional[List[str]]] = []
    if engine.name == "postgresql":
        base = [engine.client, "--host", host, "--username", engine.admin_user, "--set", "ON_ERROR_STOP=1"]
        lookup = base + ["--tuples-only", "--no-align", "--command"]
        commands = [base + ["--command", f"CREATE ROLE {username} LOGIN PASSWORD '$(SERVICE_PASSWORD)'"]]
        unless.append(lookup + [f"SELECT 1 FROM pg_roles WHERE rolname = '{username}'"])
        for database in databases:
            commands.append(base + ["--command", f"CREATE DATABASE {database} OWNER {username}"])
            unless.append(lookup + [f"SELECT 1 FROM pg_database WHERE datname = '{database}'"])
    else:
        statements = [f"CREATE USER IF NOT EXISTS '{username}'@'%' IDENTIFIED BY '$(SERVICE_PASSWORD)'"]
        for database in databases:
            statements.append(f"CREATE DATABASE IF NOT EXISTS {database}")
            statements.append(f"GRANT ALL PRIVILEGES ON {database}.* TO '{username}'@'%'")
        commands = [[engine.client, "--host", host, "--user", engine.admin_user, "--execute", "; ".join(statements)]]

    return JobStep(
        container="db-create",
        image=engine.server_image,
        commands=commands,
        unless=unless,
        secret_env={
            engine.client_password_env: secret_key_ref(root_secret, PASSWORD_KEY),
            "SERVICE_PASSWORD": secret_key_ref(service_secret, PASSWORD_KEY),
        },
        backoff_limit=DEFAULT_BACKOFF_LIMIT,
    )


def migration_step(
    container: str,
    image: str,
    commands: List[List[str]],
    db_secret: str,
    database_host: str,
    database_name: str,
) -> JobStep:
    return JobStep(
        container=container,
        image=image,
        commands=[list(command) for command in commands],
        env={"DATABASE_HOST": database_host, "DATABASE_NAME": database_name},
        secret_env={"DB_PASSWORD": secret_key_ref(db_secret, PASSWORD_KEY)},
    )


def keystone_bootstrap_step(
    image: str,
    admin_secret: str,
    internal_url: str,
    public_url: str,
    region: str,
) -> JobStep:
    return JobStep(
        container="bootstrap",
        image=image,
        commands=[
            [
                "keystone-manage",
                "bootstrap",
                "--bootstrap-password",
                "$(ADMIN_PASSWORD)",
                "--bootstrap-admin-url",
                internal_url,
                "--bootstrap-internal-url",
                internal_url,
                "--bootstrap-public-url",
                public_url,
                "--bootstrap-region-id",
                region,
            ]
        ],
        secret_env={"ADMIN_PASSWORD": secret_key_ref(admin_secret, PASSWORD_KEY)},
    )


def endpoint_registration_step(
    service_name: str,
    service_type: str,
    internal_url: str,
    public_url: str,
    region: str,
    keystone_url: str,
    keystone_secret: str,
    admin_url: Optional[str] = None,
    image: str = DEFAULT_KEYSTONE,
) -> JobStep:
    """Register the service and its internal, public and admin endpoints in the identity catalog"""
    urls = {"internal": internal_url, "public": public_url, "admin": admin_url or internal_url}
    description = f"{service_name} service"
    commands = [["openstack", "service", "create", "--name", service_name, "--description", description, service_type]]
    unless = [["openstack", "service", "show", service_name, "-f", "value", "-c", "id"]]
    for interface in ENDPOINT_INTERFACES:
        commands.append(
            ["openstack", "endpoint", "create", "--region", region, service_type, interface, urls[interface]]
        )
        # A second registration would leave duplicate endpoints in the catalog
        unless.append(
            [
                "openstack", "endpoint", "list", "--service", service_type, "--interface", interface,
                "--region", region, "-f", "value", "-c", "ID",
            ]
        )

    return JobStep(
        container="endpoint-create",
        image=image,
        commands=commands,
        unless=unless,
        env={
            "OS_AUTH_URL": keystone_url,
            "OS_USERNAME": "admin",
            "OS_PROJECT_NAME": "admin",
            "OS_USER_DOMAIN_NAME": "Default",
            "OS_PROJECT_DOMAIN_NAME": "Default",
            "OS_IDENTITY_API_VERSION": "3",
        },
        secret_env={"OS_PASSWORD": secret_key_ref(keystone_secret, PASSWORD_KEY)},
        backoff_limit=ENDPOINT_BACKOFF_LIMIT,
    )
