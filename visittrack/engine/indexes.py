"""
Index Manager - secondary lookups for visits.

Three categories, each mapping a key to a list of visit ids:

    visitsByDate    'YYYY-MM-DD'  -> [ids]
    visitsByHotel   hotel id      -> [ids]
    visitsByStatus  status        -> [ids]

The indexes live inside the metadata document in the key-value store and are
re-read on every operation, so the store stays the source of truth.
"""

import logging
from typing import Dict, Iterable, List, Optional

from visittrack.db.kv import KeyValueStore, StorageQuotaExceeded, load_json, save_json
from visittrack.engine.timeutil import Clock, isoformat, utc_now
from visittrack.models import VisitRecord

logger = logging.getLogger(__name__)

METADATA_KEY = 'visittrack_metadata'

BY_DATE = 'visitsByDate'
BY_HOTEL = 'visitsByHotel'
BY_STATUS = 'visitsByStatus'
CATEGORIES = (BY_DATE, BY_HOTEL, BY_STATUS)


def empty_indexes(timestamp: str) -> Dict:
    indexes = {category: {} for category in CATEGORIES}
    indexes['lastUpdated'] = timestamp
    return indexes


def index_keys(record: VisitRecord) -> Dict[str, Optional[str]]:
    """Bucket key per category for a record (None = not indexed there)."""
    date_key = record.date or (record.created_at[:10] if record.created_at else None)
    return {
        BY_DATE: str(date_key) if date_key else None,
        BY_HOTEL: str(record.hotel_id) if record.hotel_id else None,
        BY_STATUS: str(record.status) if record.status else None,
    }


class IndexManager:

    def __init__(self, kv: KeyValueStore, key: str = METADATA_KEY, clock: Optional[Clock] = None):
        self.kv = kv
        self.key = key
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # metadata document
    # ------------------------------------------------------------------

    def load_metadata(self) -> Dict:
        metadata = load_json(self.kv, self.key, default=None)
        if not isinstance(metadata, dict):
            metadata = {'indexes': {}, 'settings': {}}
        indexes = metadata.get('indexes')
        if not isinstance(indexes, dict):
            indexes = metadata['indexes'] = {}
        for category in CATEGORIES:
            if not isinstance(indexes.get(category), dict):
                indexes[category] = {}
        return metadata

    def save_metadata(self, metadata: Dict) -> bool:
        try:
            save_json(self.kv, self.key, metadata)
            return True
        except StorageQuotaExceeded as e:
            logger.error(f"Could not save metadata: {e}")
            return False

    def _touch(self, metadata: Dict) -> None:
        metadata['indexes']['lastUpdated'] = isoformat(self._clock())

    def ensure(self) -> None:
        """Create the empty index structure if the metadata has none yet."""
        metadata = load_json(self.kv, self.key, default=None)
        if isinstance(metadata, dict) and isinstance(metadata.get('indexes'), dict) \
                and all(c in metadata['indexes'] for c in CATEGORIES):
            return
        metadata = self.load_metadata()
        self._touch(metadata)
        self.save_metadata(metadata)

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------

    @staticmethod
    def _insert(indexes: Dict, record: VisitRecord) -> None:
        for category, bucket_key in index_keys(record).items():
            if bucket_key is None:
                continue
            bucket = indexes[category].setdefault(bucket_key, [])
            if record.id not in bucket:
                bucket.append(record.id)

    def update(self, record: VisitRecord) -> None:
        """Add the record's id to its date, hotel and status buckets (idempotent)."""
        metadata = self.load_metadata()
        self._insert(metadata['indexes'], record)
        self._touch(metadata)
        self.save_metadata(metadata)

    def remove(self, visit_id: str) -> None:
        """Remove an id from every bucket; buckets emptied by this are deleted."""
        metadata = self.load_metadata()
        indexes = metadata['indexes']
        for category in CATEGORIES:
            buckets = indexes[category]
            for bucket_key in list(buckets):
                if visit_id in buckets[bucket_key]:
                    buckets[bucket_key] = [i for i in buckets[bucket_key] if i != visit_id]
                    if not buckets[bucket_key]:
                        del buckets[bucket_key]
        self._touch(metadata)
        self.save_metadata(metadata)

    def rebuild(self, records: Iterable[VisitRecord]) -> int:
        """Discard all categories and rebuild from a full scan. Returns records indexed."""
        metadata = self.load_metadata()
        indexes = empty_indexes(isoformat(self._clock()))
        count = 0
        for record in records:
            self._insert(indexes, record)
            count += 1
        metadata['indexes'] = indexes
        self.save_metadata(metadata)
        logger.info(f"Indexes rebuilt for {count} visits")
        return count

    def prune(self) -> int:
        """Delete every empty bucket. Returns how many were removed."""
        metadata = self.load_metadata()
        removed = 0
        for category in CATEGORIES:
            buckets = metadata['indexes'][category]
            for bucket_key in [k for k, ids in buckets.items() if not ids]:
                del buckets[bucket_key]
                removed += 1
        self.save_metadata(metadata)
        if removed:
            logger.debug(f"Pruned {removed} empty index buckets")
        return removed

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def _bucket(self, category: str, bucket_key) -> List[str]:
        return list(self.load_metadata()['indexes'][category].get(str(bucket_key), []))

    def by_date(self, date_key: str) -> List[str]:
        return self._bucket(BY_DATE, date_key)

    def by_hotel(self, hotel_id: str) -> List[str]:
        return self._bucket(BY_HOTEL, hotel_id)

    def by_status(self, status: str) -> List[str]:
        return self._bucket(BY_STATUS, status)

    def snapshot(self) -> Dict[str, Dict[str, List[str]]]:
        """Copy of the three categories (without lastUpdated)."""
        indexes = self.load_metadata()['indexes']
        return {category: {k: list(v) for k, v in indexes[category].items()} for category in CATEGORIES}
