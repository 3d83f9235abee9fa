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

from typing import List, Optional

from stackpilot.resources import Condition, ConditionStatus, ConditionType, utc_now


def get_condition(conditions: List[Condition], condition_type: str) -> Optional[Condition]:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(
    conditions: List[Condition],
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str,
    observed_generation: int = 0,
) -> List[Condition]:
    """
    Return a new condition list with the given condition set.

    The last transition time of an existing condition is only refreshed when
    its status changes; reason, message and observed generation always follow
    the latest call.
    """
    status = ConditionStatus(status)
    result = []
    found = False
    for condition in conditions:
        if condition.type != condition_type:
            result.append(condition)
            continue
        found = True
        transition_time = condition.last_transition_time if condition.status == status else utc_now()
        result.append(
            Condition(
                type=condition_type,
                status=status,
                reason=reason,
                message=message,
                last_transition_time=transition_time,
                observed_generation=observed_generation,
            )
        )
    if not found:
        result.append(
            Condition(
                type=condition_type,
                status=status,
                reason=reason,
                message=message,
                last_transition_time=utc_now(),
                observed_generation=observed_generation,
            )
        )
    return result


def is_ready(conditions: List[Condition]) -> bool:
    condition = get_condition(conditions, ConditionType.READY)
    return condition is not None and condition.status == ConditionStatus.TRUE
