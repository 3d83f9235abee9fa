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


class StoreError(Exception):
    """Base class for object store failures"""

    def __init__(self, message: str, kind: str = None, namespace: str = None, name: str = None):
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class NotFoundError(StoreError):
    """The requested object does not exist"""


class AlreadyExistsError(StoreError):
    """An object with the same kind, namespace and name already exists"""


class ConflictError(StoreError):
    """The object was modified since it was read"""
