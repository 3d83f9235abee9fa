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

from stackpilot.resources import Resource


def has_finalizer(resource: Resource, finalizer: str) -> bool:
    return finalizer in resource.metadata.finalizers


def add_finalizer(resource: Resource, finalizer: str) -> bool:
    """Add the finalizer in memory. Returns False if it was already present."""
    if has_finalizer(resource, finalizer):
        return False
    resource.metadata.finalizers = resource.metadata.finalizers + [finalizer]
    return True


def remove_finalizer(resource: Resource, finalizer: str) -> bool:
    """Remove every occurrence of the finalizer in memory. Returns False if it was absent."""
    if not has_finalizer(resource, finalizer):
        return False
    resource.metadata.finalizers = [f for f in resource.metadata.finalizers if f != finalizer]
    return True
