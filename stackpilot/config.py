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

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STACKPILOT_", env_file=".env", extra="ignore")

    # Object store
    database_url: str = "sqlite:///stackpilot.db"

    # Task queue
    scheduler_type: str = "celery"
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"
    # Per-object lock serializing reconcile ticks across workers; "redis" or "threading"
    object_lock_type: str = "redis"
    object_lock_redis_url: str = "redis://localhost:6379/0"
    object_lock_expire_seconds: int = 120

    # Reconcile timing, in seconds
    requeue_delay_seconds: float = 10
    job_pending_delay_seconds: float = 5
    job_failed_delay_seconds: float = 2
    error_backoff_seconds: float = 30
    conflict_requeue_seconds: float = 1
    resync_interval_seconds: float = 300
    # 0 disables the control plane phase timeout
    phase_timeout_seconds: float = 0

    # Platform defaults
    finalizer_name: str = "openstack.k8s.io/cleanup"
    default_public_domain: str = "openstack.local"
    default_region: str = "RegionOne"
    default_gateway_name: str = "openstack-gateway"
    password_length: int = Field(default=32, ge=1)

    log_level: str = "INFO"


settings = Config()


def create_sync_engine(database_url: Optional[str] = None) -> Engine:
    """Create a synchronous engine for the object store.

    In-memory SQLite databases are pinned to a single connection so every
    session sees the same data.
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite") and (":memory:" in url or url in ("sqlite://", "sqlite:///")):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_sync_engine() -> Engine:
    engine = create_sync_engine()
    init_db(engine)
    return engine


def init_db(engine: Engine):
    """Create the object store tables if they do not exist yet"""
    # Register the table metadata before create_all
    from stackpilot.db import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.debug(f"Object store tables ensured on {engine.url}")
