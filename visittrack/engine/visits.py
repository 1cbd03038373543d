"""
Visit Operations
Scheduling, status changes and calendar-style queries on top of the tiered
store. Every function takes the store explicitly.
"""

import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from visittrack.engine.hotels import get_hotel
from visittrack.engine.tiered_store import TieredStore
from visittrack.logging_config import log_call
from visittrack.models import VisitRecord, VISIT_STATUSES, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_SCHEDULED

logger = logging.getLogger(__name__)

# Fields a caller may change through update_visit
_VISIT_FIELDS = {
    'date', 'time', 'duration', 'hotel_id', 'hotel_name', 'purpose', 'status',
    'contact_person', 'contact_email', 'visit_summary', 'notes', 'visit_outcome',
    'visit_rating',
}


def _validate_fields(updates: Dict[str, Any]) -> None:
    """Raise ValueError if any key in updates is not an editable visit field."""
    invalid = set(updates.keys()) - _VISIT_FIELDS
    if invalid:
        raise ValueError(f"Invalid visit fields: {invalid}")


def _validate_status(status: str) -> None:
    if status not in VISIT_STATUSES:
        raise ValueError(f"Invalid visit status: {status!r} (expected one of {', '.join(VISIT_STATUSES)})")


def _today(store: TieredStore, today: Optional[date]) -> date:
    return today or store.now().date()


# =============================================================================
# WRITE
# =============================================================================

@log_call
def schedule_visit(store: TieredStore, visit: VisitRecord) -> Optional[str]:
    """
    Schedule a new visit.
    Status defaults to 'scheduled'; the hotel name is filled in from the
    hotel directory when only the id is given.
    Returns: visit id, or None if it could not be saved
    """
    _validate_status(visit.status or STATUS_SCHEDULED)
    visit.status = visit.status or STATUS_SCHEDULED
    if visit.hotel_id and not visit.hotel_name:
        hotel = get_hotel(store.kv, visit.hotel_id)
        if hotel:
            visit.hotel_name = hotel.name

    visit_id = store.save(visit)
    if visit_id:
        logger.info(f"Scheduled visit {visit_id}: {visit.hotel_name} on {visit.date} {visit.time or ''}".rstrip())
    return visit_id


def update_visit(store: TieredStore, visit_id: str, updates: Dict[str, Any]) -> bool:
    """
    Update visit fields.
    Args:
        visit_id: ID of visit to update
        updates: Dict of field_name: new_value
    Returns: True if updated, False if not found or not saved
    """
    if not updates:
        return False

    # Guard: only editable fields may be set
    _validate_fields(updates)
    if 'status' in updates:
        _validate_status(updates['status'])

    visit = store.get_by_id(visit_id)
    if visit is None:
        logger.warning(f"update_visit: visit {visit_id} not found")
        return False

    saved = store.save(replace(visit, **updates))
    if saved:
        logger.info(f"Updated visit {visit_id}: {list(updates.keys())}")
    return saved is not None


def update_visit_status(store: TieredStore, visit_id: str, status: str) -> bool:
    _validate_status(status)
    return update_visit(store, visit_id, {'status': status})


# =============================================================================
# QUERIES
# =============================================================================

def get_todays_visits(store: TieredStore, today: Optional[date] = None) -> List[VisitRecord]:
    return store.get_by_date(_today(store, today).isoformat())


def get_upcoming_visits(store: TieredStore, days: int = 30, today: Optional[date] = None) -> List[VisitRecord]:
    """Non-cancelled visits from today through today + days, earliest first."""
    start = _today(store, today)
    end = start + timedelta(days=days)

    upcoming = []
    for visit in store.get_active():
        if visit.status == STATUS_CANCELLED or not visit.date:
            continue
        try:
            visit_date = date.fromisoformat(str(visit.date)[:10])
        except ValueError:
            continue
        if start <= visit_date <= end:
            upcoming.append(visit)

    upcoming.sort(key=lambda v: (str(v.date), v.time or ''))
    return upcoming


def get_visit_stats(store: TieredStore, today: Optional[date] = None) -> Dict[str, int]:
    """Counts by status, this month's activity and the completion rate (integer percent)."""
    visits = store.get_all()
    month_prefix = _today(store, today).isoformat()[:7]

    completed = sum(1 for v in visits if v.status == STATUS_COMPLETED)
    this_month = [v for v in visits if str(v.date or '').startswith(month_prefix)]

    return {
        'total': len(visits),
        'completed': completed,
        'scheduled': sum(1 for v in visits if v.status == STATUS_SCHEDULED),
        'cancelled': sum(1 for v in visits if v.status == STATUS_CANCELLED),
        'this_month': len(this_month),
        'completed_this_month': sum(1 for v in this_month if v.status == STATUS_COMPLETED),
        'success_rate': round(completed / len(visits) * 100) if visits else 0,
    }
