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

import secrets
from typing import Dict, Optional

from stackpilot.db.store import ObjectStore
from stackpilot.exceptions import NotFoundError
from stackpilot.resources import Kind, Resource


def generate_password(length: int) -> str:
    """Random lowercase hex string of exactly ``length`` characters"""
    if length <= 0:
        return ""
    return secrets.token_hex((length + 1) // 2)[:length]


def ensure_secret(
    store: ObjectStore,
    namespace: str,
    name: str,
    keys: Dict[str, int],
    owner: Optional[Resource] = None,
) -> Resource:
    """
    Create the named secret with one generated value per key, if it does not exist.

    An existing secret is returned as is and never regenerated, so credentials
    stay stable across reconciles.

    Args:
        keys: Mapping of secret key to generated value length
        owner: Object that controls the secret's lifetime, if any
    """
    try:
        return store.get(Kind.SECRET, namespace, name)
    except NotFoundError:
        pass

    secret = Resource.new(
        Kind.SECRET,
        name,
        namespace,
        spec={"data": {key: generate_password(length) for key, length in keys.items()}},
    )
    if owner is not None:
        secret.metadata.owner_references = [owner.owner_reference()]
    return store.create(secret)


def secret_key_ref(name: str, key: str) -> Dict[str, str]:
    """Reference handed to consumers instead of the secret value"""
    return {"secret": name, "key": key}
