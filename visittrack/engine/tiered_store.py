"""
Tiered Store - visit records split into an active and an archived tier.

    active    'visittrack_visits_active'    full records, recent visits
    archived  'visittrack_visits_archived'  compressed records (see codec)

Placement is decided by age (visit date, falling back to creation time):
older than ARCHIVE_THRESHOLD_DAYS goes to the archive. Every active-tier save
also sweeps stale records out of the active tier, so a record that ages past
the threshold moves on the next write (or on a maintenance pass once the
active tier is past 80% of capacity).

When a write of the active tier is rejected by the key-value store quota,
the older half of the active tier is archived (emergency archival). The
rejected write is not retried.

All public operations take the store lock, so a maintenance pass running on
the scheduler thread never interleaves with a caller's operation.
"""

import functools
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from visittrack.bus.events import (
    bus as default_bus,
    EventBus,
    EVENT_VISIT_SAVED,
    EVENT_VISIT_DELETED,
    EVENT_VISITS_ARCHIVED,
    EVENT_EMERGENCY_ARCHIVAL,
    EVENT_INDEXES_REBUILT,
    EVENT_MAINTENANCE_COMPLETE,
    EVENT_DATA_IMPORTED,
    EVENT_MIGRATION_APPLIED,
)
from visittrack.db.kv import KeyValueStore, StorageQuotaExceeded, dump_json, load_json, save_json
from visittrack.engine.codec import compress, decompress
from visittrack.engine.indexes import IndexManager
from visittrack.engine.timeutil import Clock, days_between, isoformat, parse_moment, utc_now
from visittrack.models import VisitRecord

logger = logging.getLogger(__name__)

ACTIVE_KEY = 'visittrack_visits_active'
ARCHIVED_KEY = 'visittrack_visits_archived'

SCHEMA_VERSION = 1
EXPORT_VERSION = '1.0'

# Keys older releases kept visits under; imported by migration 1
LEGACY_VISIT_KEYS = ('visits', 'oscar_visits', 'scheduledVisits', 'visitHistory')

# Assumed size of an uncompressed record, for the compression ratio estimate
AVERAGE_RECORD_BYTES = 500

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def generate_visit_id(now: datetime) -> str:
    return f"visit_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


def _find(records: List[Dict], visit_id: str) -> int:
    for i, record in enumerate(records):
        if record.get('id') == visit_id:
            return i
    return -1


class TieredStore:

    def __init__(
        self,
        kv: KeyValueStore,
        archive_threshold_days: int = 100,
        max_active: int = 500,
        bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        sweep_on_save: bool = True,
        initialize: bool = True,
    ):
        self.kv = kv
        self.archive_threshold_days = archive_threshold_days
        self.max_active = max_active
        self.sweep_on_save = sweep_on_save
        self.bus = bus or default_bus
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self.indexes = IndexManager(kv, clock=self._clock)
        if initialize:
            self.initialize()

    def now(self) -> datetime:
        return self._clock()

    @_locked
    def initialize(self) -> List[int]:
        """Create the index structure and apply pending schema migrations."""
        self.indexes.ensure()
        applied = self.run_migrations()
        logger.info(f"Tiered store ready (schema v{self.schema_version()})")
        return applied

    # =========================================================================
    # RAW TIER ACCESS
    # =========================================================================

    def _load_tier(self, key: str) -> List[Dict]:
        records = load_json(self.kv, key, default=[])
        if not isinstance(records, list):
            logger.error(f"Stored value under '{key}' is not a list, treating as empty")
            return []
        return [r for r in records if isinstance(r, dict)]

    def _load_active(self) -> List[Dict]:
        return self._load_tier(ACTIVE_KEY)

    def _load_archived(self) -> List[Dict]:
        return self._load_tier(ARCHIVED_KEY)

    def _write_active(self, records: List[Dict], allow_emergency: bool = True) -> bool:
        try:
            save_json(self.kv, ACTIVE_KEY, records)
            return True
        except StorageQuotaExceeded as e:
            logger.error(f"Error saving active visits: {e}")
            if allow_emergency:
                self.emergency_archival()
            return False

    def _write_archived(self, records: List[Dict]) -> bool:
        try:
            save_json(self.kv, ARCHIVED_KEY, records)
            return True
        except StorageQuotaExceeded as e:
            logger.error(f"Error saving archived visits: {e}")
            return False

    def _moment(self, record: Dict) -> Optional[datetime]:
        return parse_moment(record.get('date')) or parse_moment(record.get('createdAt'))

    def _age_days(self, record: Dict, now: datetime) -> float:
        moment = self._moment(record)
        return days_between(moment, now) if moment else 0.0

    def _split_stale(self, active: List[Dict]) -> Tuple[List[Dict], List[Dict]]:
        now = self._clock()
        stale, fresh = [], []
        for record in active:
            (stale if self._age_days(record, now) > self.archive_threshold_days else fresh).append(record)
        return stale, fresh

    def _archive_records(self, records: Iterable[Dict]) -> bool:
        """Compress records into the archived tier in one write."""
        archived = self._load_archived()
        for data in records:
            compressed = compress(VisitRecord.from_dict(data))
            i = _find(archived, compressed['id'])
            if i == -1:
                archived.append(compressed)
            else:
                archived[i] = compressed
        return self._write_archived(archived)

    def _put_active(self, record: VisitRecord) -> bool:
        active = self._load_active()
        data = record.to_dict()
        i = _find(active, record.id)
        if i == -1:
            active.append(data)
        else:
            active[i] = data

        swept = set()
        if self.sweep_on_save or len(active) > self.max_active:
            stale, fresh = self._split_stale(active)
            if stale and self._archive_records(stale):
                logger.info(f"Archived {len(stale)} old visits")
                self.bus.emit(EVENT_VISITS_ARCHIVED, {'count': len(stale), 'reason': 'sweep'})
                swept = {r.get('id') for r in stale}
                active = fresh

        if self._write_active(active, allow_emergency=False):
            return True

        if swept:
            # Swept records are already archived; drop them from the stored active tier too
            remaining = [r for r in self._load_active() if r.get('id') not in swept]
            if not self._write_active(remaining, allow_emergency=False):
                logger.error(f"Swept visits {sorted(swept)} could not be removed from the active tier")
        self.emergency_archival()
        return False

    def _drop_from(self, key: str, visit_id: str) -> Optional[bool]:
        """Remove an id from one tier. True removed, False absent, None write failed."""
        records = self._load_tier(key)
        i = _find(records, visit_id)
        if i == -1:
            return False
        del records[i]
        if key == ACTIVE_KEY:
            written = self._write_active(records, allow_emergency=False)
        else:
            written = self._write_archived(records)
        return True if written else None

    # =========================================================================
    # WRITE
    # =========================================================================

    @_locked
    def save(self, record: VisitRecord, update_indexes: bool = True) -> Optional[str]:
        """
        Save a visit into the tier its age calls for.

        Assigns an id and created_at when missing and always stamps updated_at.
        A copy of the same id in the other tier is removed, so after a
        successful save the id lives in exactly one tier. Returns the id, or
        None when the write did not persist.
        """
        try:
            now = self._clock()
            if not record.id:
                record.id = generate_visit_id(now)
            if not record.created_at:
                record.created_at = isoformat(now)
            record.updated_at = isoformat(now)

            age = self._age_days({'date': record.date, 'createdAt': record.created_at}, now)
            if age > self.archive_threshold_days:
                record.archived = True
                tier = 'archived'
                archived = self._load_archived()
                existed = _find(archived, record.id) != -1
                compressed = compress(record)
                if existed:
                    archived[_find(archived, record.id)] = compressed
                else:
                    archived.append(compressed)
                if not self._write_archived(archived):
                    return None
                dropped = self._drop_from(ACTIVE_KEY, record.id)
            else:
                record.archived = False
                tier = 'active'
                existed = _find(self._load_active(), record.id) != -1
                if not self._put_active(record):
                    logger.warning(f"Visit {record.id} was not persisted (active tier full)")
                    return None
                dropped = self._drop_from(ARCHIVED_KEY, record.id)

            if dropped is None:
                logger.error(f"Visit {record.id} saved to {tier} tier but old copy could not be removed")
            existed = existed or bool(dropped)

            if update_indexes:
                if existed:
                    self.indexes.remove(record.id)
                self.indexes.update(record)

            logger.debug(f"Saved visit {record.id} to {tier} tier")
            self.bus.emit(EVENT_VISIT_SAVED, {'visit_id': record.id, 'tier': tier, 'created': not existed})
            return record.id

        except Exception as e:
            logger.error(f"Error saving visit {record.id}: {e}", exc_info=True)
            return None

    @_locked
    def archive_stale(self) -> int:
        """Threshold sweep: move every active record older than the threshold. Returns count moved."""
        stale, fresh = self._split_stale(self._load_active())
        if not stale:
            return 0
        if not self._archive_records(stale):
            return 0
        self._write_active(fresh)
        logger.info(f"Archived {len(stale)} old visits")
        self.bus.emit(EVENT_VISITS_ARCHIVED, {'count': len(stale), 'reason': 'sweep'})
        return len(stale)

    @_locked
    def emergency_archival(self) -> int:
        """Archive the older half of the active tier regardless of age. Returns count moved."""
        active = self._load_active()
        active.sort(key=lambda r: self._moment(r) or _EPOCH)

        midpoint = len(active) // 2
        to_archive, remaining = active[:midpoint], active[midpoint:]
        if not to_archive:
            return 0
        if not self._archive_records(to_archive):
            logger.error("Emergency archival failed: archived tier could not be written")
            return 0

        self._write_active(remaining, allow_emergency=False)
        logger.warning(f"Emergency archival: moved {len(to_archive)} visits to archive")
        self.bus.emit(EVENT_EMERGENCY_ARCHIVAL, {'count': len(to_archive)})
        return len(to_archive)

    @_locked
    def delete(self, visit_id: str) -> bool:
        """Delete from whichever tier holds the visit (active checked first)."""
        try:
            for key in (ACTIVE_KEY, ARCHIVED_KEY):
                dropped = self._drop_from(key, visit_id)
                if dropped is None:
                    return False
                if dropped:
                    self.indexes.remove(visit_id)
                    logger.info(f"Deleted visit {visit_id}")
                    self.bus.emit(EVENT_VISIT_DELETED, {'visit_id': visit_id})
                    return True
            return False
        except Exception as e:
            logger.error(f"Error deleting visit {visit_id}: {e}", exc_info=True)
            return False

    # =========================================================================
    # READ
    # =========================================================================

    @_locked
    def get_by_id(self, visit_id: str) -> Optional[VisitRecord]:
        for data in self._load_active():
            if data.get('id') == visit_id:
                return VisitRecord.from_dict(data)
        for compressed in self._load_archived():
            if compressed.get('id') == visit_id:
                return decompress(compressed)
        logger.debug(f"get_by_id: visit {visit_id} not found")
        return None

    @_locked
    def get_by_ids(self, visit_ids: Iterable[str]) -> List[VisitRecord]:
        """Resolve ids active-first; ids found in neither tier are skipped."""
        active, archived = {}, {}
        for data in self._load_active():
            active.setdefault(data.get('id'), data)
        for compressed in self._load_archived():
            archived.setdefault(compressed.get('id'), compressed)

        results = []
        for visit_id in visit_ids:
            if visit_id in active:
                results.append(VisitRecord.from_dict(active[visit_id]))
            elif visit_id in archived:
                results.append(decompress(archived[visit_id]))
        return results

    @_locked
    def get_by_date(self, date_key: str) -> List[VisitRecord]:
        return self.get_by_ids(self.indexes.by_date(date_key))

    @_locked
    def get_by_hotel(self, hotel_id: str) -> List[VisitRecord]:
        return self.get_by_ids(self.indexes.by_hotel(hotel_id))

    @_locked
    def get_by_status(self, status: str) -> List[VisitRecord]:
        return self.get_by_ids(self.indexes.by_status(status))

    @_locked
    def get_active(self) -> List[VisitRecord]:
        return [VisitRecord.from_dict(d) for d in self._load_active()]

    @_locked
    def get_archived(self) -> List[VisitRecord]:
        return [decompress(c) for c in self._load_archived()]

    @_locked
    def get_all(self) -> List[VisitRecord]:
        """Active records followed by decompressed archived records."""
        return self.get_active() + self.get_archived()

    # =========================================================================
    # INDEXES, STATS, MAINTENANCE
    # =========================================================================

    @_locked
    def rebuild_indexes(self) -> int:
        count = self.indexes.rebuild(self.get_all())
        self.bus.emit(EVENT_INDEXES_REBUILT, {'count': count})
        return count

    @_locked
    def stats(self) -> Dict[str, Any]:
        active = self._load_active()
        archived = self._load_archived()
        active_size = len(dump_json(active))
        archived_size = len(dump_json(archived))
        return {
            'active_visits': len(active),
            'archived_visits': len(archived),
            'total_visits': len(active) + len(archived),
            'active_size': active_size,
            'archived_size': archived_size,
            'total_size': active_size + archived_size,
            # Estimate against an assumed uncompressed record size, not a measurement
            'compression_ratio': archived_size / (len(archived) * AVERAGE_RECORD_BYTES) if archived else 0,
        }

    @_locked
    def perform_maintenance(self) -> Dict[str, Any]:
        """
        Sweep stale records once the active tier is past 80% of capacity,
        then prune empty index buckets. Returns the stats snapshot plus the
        'archived' and 'pruned' counts of this pass.
        """
        archived = 0
        if len(self._load_active()) > self.max_active * 0.8:
            archived = self.archive_stale()
        pruned = self.indexes.prune()
        stats = self.stats()
        logger.info(f"Maintenance completed: archived={archived} pruned={pruned} stats={stats}")
        self.bus.emit(EVENT_MAINTENANCE_COMPLETE, {'archived': archived, 'pruned': pruned, 'stats': stats})
        return dict(stats, archived=archived, pruned=pruned)

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    @_locked
    def export_data(self) -> Dict[str, Any]:
        return {
            'activeVisits': self._load_active(),
            'archivedVisits': self._load_archived(),
            'metadata': self.indexes.load_metadata(),
            'exportDate': isoformat(self._clock()),
            'version': EXPORT_VERSION,
        }

    @_locked
    def import_data(self, bundle: Dict[str, Any]) -> bool:
        """
        Overwrite the stored tiers with a backup bundle. Indexes are taken from
        the bundle's metadata when present, otherwise rebuilt.
        """
        # Validate everything before the first write
        if not isinstance(bundle, dict):
            logger.error("Error importing data: bundle must be an object")
            return False
        for field in ('activeVisits', 'archivedVisits'):
            if bundle.get(field) is not None and not isinstance(bundle[field], list):
                logger.error(f"Error importing data: '{field}' must be a list")
                return False
        metadata = bundle.get('metadata')
        if metadata and not isinstance(metadata, dict):
            logger.error("Error importing data: 'metadata' must be an object")
            return False

        written, ok = False, True
        if bundle.get('activeVisits') is not None:
            written = True
            ok = self._write_active(bundle['activeVisits'])
        if ok and bundle.get('archivedVisits') is not None:
            written = True
            ok = self._write_archived(bundle['archivedVisits'])

        if not ok:
            logger.error("Error importing data: a tier could not be written")
            if written:
                # Stored tiers are now a mix of old and imported records
                self.rebuild_indexes()
            return False

        restored = False
        if metadata:
            metadata = dict(metadata)
            metadata.setdefault('schemaVersion', SCHEMA_VERSION)
            restored = self.indexes.save_metadata(metadata)
        if not restored:
            self.rebuild_indexes()

        logger.info("Data imported successfully")
        self.bus.emit(EVENT_DATA_IMPORTED, {'rebuilt_indexes': not restored})
        return True

    # =========================================================================
    # SCHEMA MIGRATIONS
    # =========================================================================

    def schema_version(self) -> int:
        try:
            return int(self.indexes.load_metadata().get('schemaVersion') or 0)
        except (TypeError, ValueError):
            return 0

    @_locked
    def run_migrations(self) -> List[int]:
        """Apply every migration newer than the stored schema version, in order."""
        applied = []
        current = self.schema_version()
        for version, migrate in _MIGRATIONS:
            if version <= current:
                continue
            count = migrate(self)
            metadata = self.indexes.load_metadata()
            metadata['schemaVersion'] = version
            self.indexes.save_metadata(metadata)
            applied.append(version)
            logger.info(f"Applied schema migration {version} ({count} records)")
            self.bus.emit(EVENT_MIGRATION_APPLIED, {'version': version, 'records': count})
        return applied

    def _migrate_legacy_keys(self) -> int:
        """Move visits stored under legacy keys into the tiers, then drop those keys."""
        migrated = 0
        for key in LEGACY_VISIT_KEYS:
            raw = self.kv.get(key)
            if raw is None:
                continue
            try:
                parsed = json.loads(raw)
            except ValueError as e:
                logger.error(f"Error migrating {key}: {e}")
                continue

            if isinstance(parsed, list):
                items = parsed
            elif isinstance(parsed, dict):
                # {date: [visits]} layout
                items = []
                for value in parsed.values():
                    items.extend(value if isinstance(value, list) else [value])
            else:
                items = []

            for item in items:
                if not isinstance(item, dict):
                    continue
                if self.save(VisitRecord.from_dict(item), update_indexes=False):
                    migrated += 1

            self.kv.remove(key)

        if migrated:
            self.rebuild_indexes()
            logger.info(f"Migrated {migrated} visits to tiered storage")
        return migrated


_MIGRATIONS = (
    (1, TieredStore._migrate_legacy_keys),
)
