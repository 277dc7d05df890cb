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

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from dacite import Config, from_dict

from shared.firebase_constants import (
    ART_COLLECTION,
    BLOG_COLLECTION,
    MUSIC_COLLECTION,
    PHOTOS_COLLECTION,
    VIDEOS_COLLECTION,
)
from shared.json_utils import convert_keys

T = TypeVar("T")


@dataclass
class Photo:
    """A photo in the archive; at most one is featured at a time."""

    id: str
    url: str = ""
    caption: str = ""
    is_featured: bool = False
    timestamp: Optional[datetime] = None
    owner_id: Optional[str] = None


@dataclass
class Video:
    """A video, referenced by its id on the external video host."""

    id: str
    external_video_id: str = ""
    title: str = ""
    timestamp: Optional[datetime] = None
    owner_id: Optional[str] = None


@dataclass
class MusicTrack:
    id: str
    title: str = ""
    subtitle: str = ""
    link: str = ""
    album_art_url: Optional[str] = None
    timestamp: Optional[datetime] = None
    owner_id: Optional[str] = None


@dataclass
class ArtPiece:
    id: str
    title: str = ""
    image_url: str = ""
    description: str = ""
    timestamp: Optional[datetime] = None
    owner_id: Optional[str] = None


@dataclass
class BlogPost:
    id: str
    title: str = ""
    excerpt: str = ""
    content: str = ""
    timestamp: Optional[datetime] = None
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class CollectionSpec:
    """Describes one content collection: its record type and form fields."""

    name: str
    record_type: Type[Any]
    required_fields: Tuple[str, ...]
    optional_fields: Tuple[str, ...] = ()

    @property
    def content_fields(self) -> Tuple[str, ...]:
        return self.required_fields + self.optional_fields


COLLECTION_SPECS: Dict[str, CollectionSpec] = {
    PHOTOS_COLLECTION: CollectionSpec(
        name=PHOTOS_COLLECTION,
        record_type=Photo,
        required_fields=("url", "caption"),
    ),
    VIDEOS_COLLECTION: CollectionSpec(
        name=VIDEOS_COLLECTION,
        record_type=Video,
        required_fields=("external_video_id", "title"),
    ),
    MUSIC_COLLECTION: CollectionSpec(
        name=MUSIC_COLLECTION,
        record_type=MusicTrack,
        required_fields=("title", "subtitle", "link"),
        optional_fields=("album_art_url",),
    ),
    ART_COLLECTION: CollectionSpec(
        name=ART_COLLECTION,
        record_type=ArtPiece,
        required_fields=("title", "image_url", "description"),
    ),
    BLOG_COLLECTION: CollectionSpec(
        name=BLOG_COLLECTION,
        record_type=BlogPost,
        required_fields=("title", "excerpt", "content"),
    ),
}


def record_from_document(record_type: Type[T], doc_id: str, data: dict) -> T:
    """
    Builds a record dataclass from a stored (camelCase) document.

    A timestamp that is not a datetime is treated as missing. Documents written
    before the owner field was renamed carry `userId`; it is read as the owner.
    """
    fields = convert_keys(dict(data or {}), "camel_to_snake")
    fields["id"] = doc_id
    if not isinstance(fields.get("timestamp"), datetime):
        fields["timestamp"] = None
    if fields.get("owner_id") is None and "user_id" in fields:
        fields["owner_id"] = fields["user_id"]
    return from_dict(
        data_class=record_type, data=fields, config=Config(check_types=False)
    )
