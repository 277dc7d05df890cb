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

# Firestore has no schema; these names are the single source of truth for
# where each content collection lives.

PHOTOS_COLLECTION = "photos"
VIDEOS_COLLECTION = "videos"
MUSIC_COLLECTION = "music"
ART_COLLECTION = "art"
BLOG_COLLECTION = "blog"

CONTENT_COLLECTIONS = (
    PHOTOS_COLLECTION,
    VIDEOS_COLLECTION,
    MUSIC_COLLECTION,
    ART_COLLECTION,
    BLOG_COLLECTION,
)

# Namespace used when no project identity could be resolved. Never queried.
FALLBACK_NAMESPACE = "default-app-id"

TIMESTAMP_FIELD = "timestamp"
IS_FEATURED_FIELD = "isFeatured"
OWNER_ID_FIELD = "ownerId"


def collection_path(namespace: str, collection_name: str) -> str:
    """Returns the Firestore path of a content collection in a namespace."""
    return f"artifacts/{namespace}/public/data/{collection_name}"
