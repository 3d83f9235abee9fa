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

import random
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel, UniqueConstraint


# Helper function for random id generation
def random_id():
    """Generate a random ID string"""
    return "".join(random.sample(uuid.uuid4().hex, 16))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StoredObject(SQLModel, table=True):
    """One managed object: envelope columns plus JSON spec and status"""

    __tablename__ = "stored_object"
    __table_args__ = (UniqueConstraint("kind", "namespace", "name", name="uq_stored_object_kind_ns_name"),)

    id: str = Field(default_factory=lambda: "obj" + random_id(), primary_key=True, max_length=24)
    uid: str = Field(index=True, max_length=64)
    kind: str = Field(index=True, max_length=64)
    namespace: str = Field(max_length=253)
    name: str = Field(max_length=253)
    generation: int = Field(default=1)
    resource_version: int = Field(default=1)
    # uid of the controlling owner, used for cascading deletion
    owner_uid: Optional[str] = Field(default=None, index=True, max_length=64)
    labels: dict = Field(default_factory=dict, sa_column=Column(JSON))
    finalizers: list = Field(default_factory=list, sa_column=Column(JSON))
    owner_references: list = Field(default_factory=list, sa_column=Column(JSON))
    spec: dict = Field(default_factory=dict, sa_column=Column(JSON))
    status: dict = Field(default_factory=dict, sa_column=Column(JSON))
    gmt_created: datetime = Field(default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False))
    gmt_updated: datetime = Field(default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False))
    # Set when deletion was requested while finalizers were still present
    gmt_deleted: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
