"""
Unit tests for the tiered store (visittrack/engine/tiered_store.py).

Every test runs on an in-memory key-value store with a fixed clock
(2026-06-01 12:00 UTC), so record ages are exact. Raw tier contents are
seeded with save_json where a test needs records the store would never
leave in that tier on its own.
"""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from visittrack.bus.events import (
    EventBus, EVENT_VISIT_SAVED, EVENT_EMERGENCY_ARCHIVAL, EVENT_MIGRATION_APPLIED,
)
from visittrack.db.kv import MemoryKeyValueStore, StorageQuotaExceeded, save_json
from visittrack.engine.codec import compress
from visittrack.engine.indexes import METADATA_KEY
from visittrack.engine.tiered_store import (
    ACTIVE_KEY, ARCHIVED_KEY, SCHEMA_VERSION, TieredStore, generate_visit_id,
)
from visittrack.models import VisitRecord

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days: int) -> str:
    return (NOW - timedelta(days=days)).date().isoformat()


def _visit(visit_id=None, age_days=1, **kwargs):
    kwargs.setdefault('hotel_id', 'hotel_002')
    kwargs.setdefault('hotel_name', "CLARIDGE'S")
    return VisitRecord(id=visit_id, date=days_ago(age_days), time='10:00', **kwargs)


def _raw(kv, key):
    value = kv.get(key)
    return json.loads(value) if value else []


def _tier_ids(kv):
    return [r['id'] for r in _raw(kv, ACTIVE_KEY)], [r['id'] for r in _raw(kv, ARCHIVED_KEY)]


def _seed_active(kv, ages):
    """Write records straight into the active tier, ids 'age<N>'."""
    records = []
    for age in ages:
        v = _visit(f'age{age}', age_days=age)
        v.created_at = v.updated_at = '2025-01-01T00:00:00.000Z'
        records.append(v.to_dict())
    save_json(kv, ACTIVE_KEY, records)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def store(kv, events):
    return TieredStore(kv, archive_threshold_days=100, max_active=500, bus=events, clock=lambda: NOW)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

class TestInitialize:

    def test_creates_metadata_with_schema_version(self, kv, store):
        metadata = json.loads(kv.get(METADATA_KEY))
        assert metadata['schemaVersion'] == SCHEMA_VERSION
        assert set(metadata['indexes']) >= {'visitsByDate', 'visitsByHotel', 'visitsByStatus'}

    def test_empty_store(self, store):
        assert store.get_all() == []
        assert store.stats()['total_visits'] == 0

    def test_generate_visit_id_format(self):
        visit_id = generate_visit_id(NOW)
        prefix, millis, suffix = visit_id.split('_')
        assert prefix == 'visit'
        assert int(millis) == int(NOW.timestamp() * 1000)
        assert len(suffix) == 9


# ---------------------------------------------------------------------------
# save
# ---------------------------------------------------------------------------

class TestSave:

    def test_recent_visit_goes_to_active(self, kv, store):
        visit_id = store.save(_visit('v1', age_days=10))
        assert visit_id == 'v1'
        assert _tier_ids(kv) == (['v1'], [])

    def test_old_visit_goes_to_archive(self, kv, store):
        store.save(_visit('v1', age_days=200))
        assert _tier_ids(kv) == ([], ['v1'])

    def test_assigns_id_and_timestamps(self, store):
        record = _visit()
        visit_id = store.save(record)
        assert visit_id.startswith('visit_')
        assert record.id == visit_id
        assert record.created_at == '2026-06-01T12:00:00.000Z'
        assert record.updated_at == '2026-06-01T12:00:00.000Z'

    def test_keeps_existing_created_at(self, store):
        record = _visit('v1', created_at='2026-05-01T08:00:00.000Z')
        store.save(record)
        assert store.get_by_id('v1').created_at == '2026-05-01T08:00:00.000Z'

    def test_missing_date_uses_creation_time(self, kv, store):
        store.save(VisitRecord(id='v1', created_at='2025-01-01T00:00:00.000Z'))
        assert _tier_ids(kv) == ([], ['v1'])

    def test_resave_replaces_in_place(self, kv, store):
        store.save(_visit('v1', purpose='intro'))
        store.save(_visit('v1', purpose='contract'))
        assert _tier_ids(kv) == (['v1'], [])
        assert store.get_by_id('v1').purpose == 'contract'

    def test_id_lives_in_exactly_one_tier(self, kv, store):
        store.save(_visit('v1', age_days=5))
        store.save(_visit('v1', age_days=150))
        assert _tier_ids(kv) == ([], ['v1'])
        store.save(_visit('v1', age_days=5))
        assert _tier_ids(kv) == (['v1'], [])

    def test_every_saved_id_in_exactly_one_tier(self, kv, store):
        ages = [3, 250, 40, 101, 99, 365, 0]
        for i, age in enumerate(ages):
            store.save(_visit(f'v{i}', age_days=age))
        store.save(_visit('v1', age_days=2))
        store.save(_visit('v2', age_days=300))

        active, archived = _tier_ids(kv)
        assert sorted(active + archived) == sorted(f'v{i}' for i in range(len(ages)))
        assert not set(active) & set(archived)

    def test_status_change_moves_index_entry(self, store):
        store.save(_visit('v1', status='scheduled'))
        store.save(_visit('v1', status='completed'))
        assert store.indexes.by_status('scheduled') == []
        assert store.indexes.by_status('completed') == ['v1']

    def test_update_indexes_false_skips_indexing(self, store):
        store.save(_visit('v1'), update_indexes=False)
        assert store.indexes.by_hotel('hotel_002') == []
        assert store.get_by_id('v1') is not None

    def test_emits_visit_saved(self, store, events):
        received = []
        events.on(EVENT_VISIT_SAVED, received.append)
        store.save(_visit('v1'))
        store.save(_visit('v1'))
        assert received[0] == {'visit_id': 'v1', 'tier': 'active', 'created': True}
        assert received[1]['created'] is False

    def test_active_save_sweeps_stale_records(self, kv, store):
        stale = _visit('old', age_days=120)
        stale.created_at = stale.updated_at = '2026-01-01T00:00:00.000Z'
        save_json(kv, ACTIVE_KEY, [stale.to_dict()])

        store.save(_visit('new', age_days=1))
        assert _tier_ids(kv) == (['new'], ['old'])


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestReads:

    def test_get_by_id_active(self, store):
        store.save(_visit('v1', notes='Bring brochure', duration=60))
        visit = store.get_by_id('v1')
        assert visit.archived is False
        assert visit.notes == 'Bring brochure'
        assert visit.duration == 60

    def test_get_by_id_archived_is_decompressed(self, store):
        store.save(_visit('v1', age_days=200, visit_summary='s' * 300, notes='dropped'))
        visit = store.get_by_id('v1')
        assert visit.archived is True
        assert visit.visit_summary == 's' * 200
        assert visit.notes is None
        assert visit.hotel_name == "CLARIDGE'S"

    def test_get_by_id_missing(self, store):
        assert store.get_by_id('nope') is None

    def test_get_by_ids_skips_missing(self, store):
        store.save(_visit('v1'))
        result = store.get_by_ids(['v1', 'missing'])
        assert [v.id for v in result] == ['v1']

    def test_get_by_ids_keeps_requested_order_across_tiers(self, store):
        store.save(_visit('recent', age_days=1))
        store.save(_visit('old', age_days=300))
        assert [v.id for v in store.get_by_ids(['old', 'recent'])] == ['old', 'recent']

    def test_index_lookups(self, store):
        store.save(_visit('a', age_days=1, hotel_id='hotel_001', status='completed'))
        store.save(_visit('b', age_days=1, hotel_id='hotel_002'))
        store.save(_visit('c', age_days=200, hotel_id='hotel_001'))
        assert [v.id for v in store.get_by_date(days_ago(1))] == ['a', 'b']
        assert [v.id for v in store.get_by_hotel('hotel_001')] == ['a', 'c']
        assert [v.id for v in store.get_by_status('completed')] == ['a']

    def test_index_lookup_waits_for_the_store_lock(self, store):
        store.save(_visit('a'))
        lookups, results = [], []
        by_hotel = store.indexes.by_hotel
        store.indexes.by_hotel = lambda key: lookups.append(key) or by_hotel(key)

        reader = threading.Thread(target=lambda: results.append(store.get_by_hotel('hotel_002')))
        with store._lock:
            reader.start()
            reader.join(0.1)
            assert reader.is_alive()
            assert lookups == []
        reader.join(2)
        assert [v.id for v in results[0]] == ['a']

    def test_get_all_lists_active_then_archived(self, store):
        store.save(_visit('old', age_days=300))
        store.save(_visit('new', age_days=1))
        visits = store.get_all()
        assert [v.id for v in visits] == ['new', 'old']
        assert [v.archived for v in visits] == [False, True]


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------

class TestDelete:

    @pytest.mark.parametrize('age', [1, 200])
    def test_delete_removes_record_and_index_entries(self, kv, store, age):
        store.save(_visit('v1', age_days=age))
        assert store.delete('v1') is True
        assert store.get_by_id('v1') is None
        assert _tier_ids(kv) == ([], [])
        snapshot = store.indexes.snapshot()
        assert all('v1' not in ids for buckets in snapshot.values() for ids in buckets.values())

    def test_delete_missing_returns_false(self, store):
        assert store.delete('nope') is False


# ---------------------------------------------------------------------------
# Threshold sweep and emergency archival
# ---------------------------------------------------------------------------

class TestArchiving:

    def test_sweep_archives_records_past_threshold(self, kv, store):
        _seed_active(kv, [50, 101, 150])
        assert store.archive_stale() == 2
        assert _tier_ids(kv) == (['age50'], ['age101', 'age150'])

    def test_sweep_with_nothing_stale(self, kv, store):
        _seed_active(kv, [1, 2])
        assert store.archive_stale() == 0
        assert _tier_ids(kv) == (['age1', 'age2'], [])

    def test_emergency_archival_moves_oldest_half(self, kv, store, events):
        received = []
        events.on(EVENT_EMERGENCY_ARCHIVAL, received.append)
        _seed_active(kv, [9, 2, 7, 0, 5, 1, 8, 3, 6, 4])

        assert store.emergency_archival() == 5
        active, archived = _tier_ids(kv)
        assert sorted(archived) == ['age5', 'age6', 'age7', 'age8', 'age9']
        assert sorted(active) == ['age0', 'age1', 'age2', 'age3', 'age4']
        assert received == [{'count': 5}]

    def test_emergency_archival_odd_count_rounds_down(self, kv, store):
        _seed_active(kv, [1, 2, 3])
        assert store.emergency_archival() == 1
        assert _tier_ids(kv) == (['age2', 'age1'], ['age3'])

    def test_emergency_archival_empty(self, store):
        assert store.emergency_archival() == 0

    def test_quota_failure_on_active_write_triggers_emergency_archival(self):
        class OneRejectedActiveWrite(MemoryKeyValueStore):
            rejected = False

            def set(self, key, value):
                if key == ACTIVE_KEY and not self.rejected and len(json.loads(value)) == 5:
                    self.rejected = True
                    raise StorageQuotaExceeded(key, 10 ** 6, 10)
                super().set(key, value)

        kv = OneRejectedActiveWrite()
        store = TieredStore(kv, bus=EventBus(), clock=lambda: NOW)
        for i in range(4):
            store.save(_visit(f'v{i}', age_days=10 - i))

        assert store.save(_visit('v_new', age_days=0)) is None
        active, archived = _tier_ids(kv)
        assert sorted(archived) == ['v0', 'v1']
        assert sorted(active) == ['v2', 'v3']
        assert 'v_new' not in store.indexes.by_hotel('hotel_002')

    def test_rejected_write_after_sweep_leaves_each_id_in_one_tier(self):
        class RejectsNewVisitOnce(MemoryKeyValueStore):
            rejected = False

            def set(self, key, value):
                if key == ACTIVE_KEY and not self.rejected and 'v_new' in value:
                    self.rejected = True
                    raise StorageQuotaExceeded(key, 10 ** 6, 10)
                super().set(key, value)

        kv = RejectsNewVisitOnce()
        store = TieredStore(kv, bus=EventBus(), clock=lambda: NOW)
        _seed_active(kv, [150, 140, 130, 5, 4])

        assert store.save(_visit('v_new', age_days=0)) is None

        active, archived = _tier_ids(kv)
        assert set(active) & set(archived) == set()
        # stale records left through the sweep, then emergency archival took the older half of the rest
        assert sorted(archived) == ['age130', 'age140', 'age150', 'age5']
        assert active == ['age4']
        assert 'v_new' not in active + archived

    def test_archive_write_failure_keeps_active_records(self, kv, store):
        _seed_active(kv, [150])
        kv.quota_bytes = kv.total_size()
        assert store.archive_stale() == 0
        assert _tier_ids(kv) == (['age150'], [])


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

class TestMaintenance:

    def test_sweeps_when_active_tier_near_capacity(self, kv):
        store = TieredStore(kv, max_active=5, bus=EventBus(), clock=lambda: NOW)
        _seed_active(kv, [1, 2, 3, 4, 150])
        result = store.perform_maintenance()
        assert result['archived'] == 1
        assert result['active_visits'] == 4
        assert result['archived_visits'] == 1

    def test_no_sweep_below_capacity(self, kv):
        store = TieredStore(kv, max_active=500, bus=EventBus(), clock=lambda: NOW)
        _seed_active(kv, [1, 150])
        result = store.perform_maintenance()
        assert result['archived'] == 0
        assert _tier_ids(kv) == (['age1', 'age150'], [])

    def test_prunes_empty_buckets(self, store):
        metadata = store.indexes.load_metadata()
        metadata['indexes']['visitsByDate']['2020-01-01'] = []
        store.indexes.save_metadata(metadata)
        assert store.perform_maintenance()['pruned'] == 1


# ---------------------------------------------------------------------------
# Indexes, stats
# ---------------------------------------------------------------------------

def test_rebuild_indexes_reproduces_lookups(store):
    store.save(_visit('a', age_days=1, status='completed'))
    store.save(_visit('b', age_days=200, hotel_id='hotel_005'))
    store.save(_visit('c', age_days=1, status='cancelled'))
    before = store.indexes.snapshot()

    assert store.rebuild_indexes() == 3
    assert store.indexes.snapshot() == before


def test_rebuild_recovers_lost_indexes(kv, store):
    store.save(_visit('a'))
    kv.remove(METADATA_KEY)
    store.rebuild_indexes()
    assert store.indexes.by_hotel('hotel_002') == ['a']


def test_stats(store):
    store.save(_visit('a', age_days=1))
    store.save(_visit('b', age_days=200))
    stats = store.stats()
    assert stats['active_visits'] == 1
    assert stats['archived_visits'] == 1
    assert stats['total_visits'] == 2
    assert stats['total_size'] == stats['active_size'] + stats['archived_size']
    assert stats['compression_ratio'] == pytest.approx(stats['archived_size'] / 500)


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------

class TestExportImport:

    def test_export_bundle_shape(self, store):
        store.save(_visit('a'))
        bundle = store.export_data()
        assert set(bundle) == {'activeVisits', 'archivedVisits', 'metadata', 'exportDate', 'version'}
        assert bundle['exportDate'] == '2026-06-01T12:00:00.000Z'
        assert bundle['activeVisits'][0]['id'] == 'a'

    def test_export_then_import_into_fresh_store(self, store):
        store.save(_visit('a', age_days=1))
        store.save(_visit('b', age_days=250))
        bundle = json.loads(json.dumps(store.export_data()))

        other = TieredStore(MemoryKeyValueStore(), bus=EventBus(), clock=lambda: NOW)
        assert other.import_data(bundle) is True
        assert [v.id for v in other.get_all()] == ['a', 'b']
        assert [v.id for v in other.get_by_hotel('hotel_002')] == ['a', 'b']

    def test_import_without_metadata_rebuilds_indexes(self, store):
        bundle = {
            'activeVisits': [_visit('x').to_dict()],
            'archivedVisits': [compress(_visit('y', age_days=300))],
        }
        assert store.import_data(bundle) is True
        assert sorted(store.indexes.by_hotel('hotel_002')) == ['x', 'y']

    def test_import_rejects_bad_bundle(self, store):
        store.save(_visit('keep'))
        assert store.import_data({'activeVisits': 'not a list'}) is False
        assert store.import_data(['nope']) is False
        assert store.get_by_id('keep') is not None

    def test_rejects_bad_metadata_before_writing(self, kv, store):
        store.save(_visit('keep'))
        bundle = {'activeVisits': [_visit('x').to_dict()], 'metadata': ['not', 'an', 'object']}
        assert store.import_data(bundle) is False
        assert _tier_ids(kv) == (['keep'], [])

    def test_partial_import_reindexes_stored_tiers(self, kv, store):
        store.save(_visit('old', hotel_id='hotel_001'))
        kv.quota_bytes = kv.total_size() + 300
        bundle = {
            'activeVisits': [{'id': 'n1', 'date': days_ago(2), 'hotelId': 'hotel_003', 'status': 'scheduled'}],
            'archivedVisits': [compress(_visit(f'a{i}', age_days=300)) for i in range(20)],
        }

        assert store.import_data(bundle) is False
        assert _tier_ids(kv) == (['n1'], [])
        assert store.indexes.by_hotel('hotel_001') == []
        assert store.indexes.by_hotel('hotel_003') == ['n1']
        assert [v.id for v in store.get_by_status('scheduled')] == ['n1']


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------

class TestMigration:

    def test_imports_legacy_keys_once(self, events):
        kv = MemoryKeyValueStore(initial={
            'oscar_visits': json.dumps([
                {'id': 'legacy_1', 'date': days_ago(3), 'hotelId': 'hotel_004', 'status': 'completed'},
                {'date': days_ago(400), 'hotelId': 'hotel_004'},
            ]),
            'scheduledVisits': json.dumps({days_ago(1): [{'id': 'legacy_2', 'date': days_ago(1)}]}),
        })
        applied = []
        events.on(EVENT_MIGRATION_APPLIED, applied.append)

        store = TieredStore(kv, bus=events, clock=lambda: NOW)

        assert kv.get('oscar_visits') is None
        assert kv.get('scheduledVisits') is None
        assert store.stats()['total_visits'] == 3
        assert store.get_by_id('legacy_1').status == 'completed'
        assert len(store.get_by_hotel('hotel_004')) == 2
        assert applied == [{'version': 1, 'records': 3}]
        assert store.schema_version() == 1

    def test_does_not_run_again_once_applied(self, kv, store):
        kv.set('visits', json.dumps([{'id': 'late', 'date': days_ago(1)}]))
        assert store.initialize() == []
        assert kv.get('visits') is not None
        assert store.get_by_id('late') is None

    def test_unparseable_legacy_value_is_left_in_place(self, events):
        kv = MemoryKeyValueStore(initial={'visitHistory': '{broken'})
        store = TieredStore(kv, bus=events, clock=lambda: NOW)
        assert kv.get('visitHistory') == '{broken'
        assert store.schema_version() == 1
