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

from dataclasses import dataclass

# Default container images, Kolla 2025.1 (Epoxy)
KOLLA_REGISTRY = "quay.io/openstack.kolla"
KOLLA_TAG = "2025.1"


def kolla_image(name: str) -> str:
    return f"{KOLLA_REGISTRY}/{name}:{KOLLA_TAG}"


DEFAULT_POSTGRESQL = "postgres:17"
DEFAULT_MYSQL = "mysql:8.4"
DEFAULT_MARIADB = kolla_image("mariadb-server")
DEFAULT_RABBITMQ = kolla_image("rabbitmq")
DEFAULT_MEMCACHED = kolla_image("memcached")
DEFAULT_KEYSTONE = kolla_image("keystone")
DEFAULT_GLANCE_API = kolla_image("glance-api")
DEFAULT_PLACEMENT = kolla_image("placement-api")
DEFAULT_NEUTRON_SERVER = kolla_image("neutron-server")
DEFAULT_NOVA_API = kolla_image("nova-api")
DEFAULT_NOVA_SCHEDULER = kolla_image("nova-scheduler")
DEFAULT_NOVA_CONDUCTOR = kolla_image("nova-conductor")
DEFAULT_NOVA_COMPUTE = kolla_image("nova-compute")
DEFAULT_OVN_NORTHD = kolla_image("ovn-northd")
DEFAULT_OVN_NB_DB = kolla_image("ovn-nb-db-server")
DEFAULT_OVN_SB_DB = kolla_image("ovn-sb-db-server")


def image_or_default(image: str, default_image: str) -> str:
    return image or default_image


@dataclass(frozen=True)
class DatabaseEngine:
    name: str
    server_image: str
    client: str
    port: int
    admin_user: str
    # Server side root password variable
    password_env: str
    # Client side password variable used by the provisioning jobs
    client_password_env: str


DATABASE_ENGINES = {
    "postgresql": DatabaseEngine(
        "postgresql", DEFAULT_POSTGRESQL, "psql", 5432, "postgres", "POSTGRES_PASSWORD", "PGPASSWORD"
    ),
    "mysql": DatabaseEngine("mysql", DEFAULT_MYSQL, "mysql", 3306, "root", "MYSQL_ROOT_PASSWORD", "MYSQL_PWD"),
    "mariadb": DatabaseEngine(
        "mariadb", DEFAULT_MARIADB, "mariadb", 3306, "root", "MARIADB_ROOT_PASSWORD", "MYSQL_PWD"
    ),
}

DEFAULT_DATABASE_ENGINE = "postgresql"


def database_engine_or_default(engine: str) -> DatabaseEngine:
    """Unknown or empty engine names fall back to PostgreSQL"""
    return DATABASE_ENGINES.get(engine or "", DATABASE_ENGINES[DEFAULT_DATABASE_ENGINE])
