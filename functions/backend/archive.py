"""
Grouping of photos into a year -> month archive.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List

from shared.types import Photo

# Fixed so bucket names do not depend on the process locale.
MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

PhotoArchive = Dict[str, Dict[str, List[Photo]]]


def group_photos_by_date(photos: Iterable[Photo]) -> PhotoArchive:
    """
    Buckets photos by the UTC calendar year and month of their timestamp.

    Photos without a valid timestamp are left out. Months keep the order in
    which they are first encountered, so a newest-first feed yields months
    newest-first.
    """
    archive: PhotoArchive = {}
    for photo in photos:
        timestamp = photo.timestamp
        if not isinstance(timestamp, datetime):
            continue
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc)
        year = str(timestamp.year)
        month = MONTH_NAMES[timestamp.month - 1]
        archive.setdefault(year, {}).setdefault(month, []).append(photo)
    return archive


def archive_years(archive: PhotoArchive) -> List[str]:
    """Year keys newest first."""
    return sorted(archive, key=int, reverse=True)
