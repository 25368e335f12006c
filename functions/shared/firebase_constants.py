# Copyright 2025 Google LLC
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
# ==============================================================================

# Firestore collection names. Deployed collections carry a
# `_<service>_<environment>` suffix, see `suffix_collection`.
USER_PROFILES_COLLECTION = "user_profiles"
COVER_AUTOLINKING_EVENTS_COLLECTION = "cover_autolinking_events"
COVER_LINKING_NOTIFICATIONS_COLLECTION = "cover_linking_notifications"


def suffix_collection(
    collection: str, service: str | None = None, environment: str | None = None
) -> str:
    parts = [collection] + [part for part in (service, environment) if part]
    return "_".join(parts)
