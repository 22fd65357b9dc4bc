"""User profile bootstrap and full data wipe."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .models import UserProfile, utc_now
from .record_store import Collections, RecordStore, SortKey

logger = logging.getLogger(__name__)


def load_or_create_profile(
    store: RecordStore,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> UserProfile:
    """Return the installation's profile, creating it if none exists.

    Raises RecordStoreError when the store cannot be read or written; callers
    decide how to degrade.
    """

    rows = store.fetch(Collections.PROFILES, sort=[SortKey("created_at_unix")], limit=1)
    if rows:
        return UserProfile.from_record(rows[0])

    profile = UserProfile(created_at=(clock or utc_now)())
    with store.transaction() as tx:
        tx.create(Collections.PROFILES, profile.to_record())
    logger.info(f"Created user profile {profile.key}")
    return profile


def wipe_all_data(store: RecordStore) -> None:
    """Delete every profile, memory, session and signal."""

    store.wipe()
    logger.info("All companion data wiped")


__all__ = ["load_or_create_profile", "wipe_all_data"]
