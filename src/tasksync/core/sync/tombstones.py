"""Tombstone bookkeeping for deleted lists and items.

A tombstone maps a deleted entity id to the time it was deleted. Tombstones
keep a stale copy on another device from resurrecting the entity during a
merge, and are pruned once every peer can be assumed to have seen them.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterator, Mapping, Optional

from ...models.models import utc

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)


class TombstoneStore:
    """Map of deleted id -> deletion timestamp.

    Merging keeps the earliest timestamp per id, which makes ``merge``
    commutative, associative and idempotent.
    """

    def __init__(self, entries: Optional[Mapping[str, datetime]] = None) -> None:
        """Initialize store.

        Args:
            entries: Existing id -> deletion time mapping
        """
        self._entries: Dict[str, datetime] = {}
        for entity_id, when in (entries or {}).items():
            self.record_deletion(entity_id, when)

    def record_deletion(self, entity_id: str, when: datetime) -> None:
        """Record that ``entity_id`` was deleted at ``when``.

        An existing earlier deletion time is kept.
        """
        when = utc(when)
        existing = self._entries.get(entity_id)
        if existing is None or when < existing:
            self._entries[entity_id] = when

    def is_deleted(self, entity_id: str) -> bool:
        """Check whether ``entity_id`` has a tombstone."""
        return entity_id in self._entries

    def deleted_at(self, entity_id: str) -> Optional[datetime]:
        """Deletion time of ``entity_id``, if tombstoned."""
        return self._entries.get(entity_id)

    def merge(self, other: "TombstoneStore") -> "TombstoneStore":
        """Union of both stores, earliest timestamp per id wins."""
        merged = TombstoneStore(self._entries)
        for entity_id, when in other._entries.items():
            merged.record_deletion(entity_id, when)
        return merged

    def prune(self, now: datetime, max_age: timedelta = DEFAULT_RETENTION) -> int:
        """Drop tombstones older than ``max_age``.

        Args:
            now: Current wall-clock time
            max_age: Retention window

        Returns:
            Number of entries removed
        """
        cutoff = utc(now) - max_age
        expired = [key for key, when in self._entries.items() if when < cutoff]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Pruned %d tombstones older than %s", len(expired), cutoff)
        return len(expired)

    def clear(self) -> None:
        """Forget every tombstone."""
        self._entries.clear()

    def to_dict(self) -> Dict[str, datetime]:
        """Copy of the underlying map."""
        return dict(self._entries)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TombstoneStore):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"<TombstoneStore ({len(self._entries)} entries)>"
