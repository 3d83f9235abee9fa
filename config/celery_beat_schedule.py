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
Celery Beat schedule configuration for periodic reconciliation
"""

from stackpilot.config import settings

# Beat schedule for level-triggered resync
CELERY_BEAT_SCHEDULE = {
    # Re-queue every managed object so missed events are eventually reconciled
    'resync-managed-objects': {
        'task': 'stackpilot.tasks.reconcile_tasks.resync_all_task',
        'schedule': settings.resync_interval_seconds,
        'options': {
            'expires': settings.resync_interval_seconds,  # Superseded by the next resync
        }
    },
}
