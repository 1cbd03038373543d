"""
Record Codec - compact encoding for archived visits.

Archived visits are stored with one- or two-letter keys and a truncated
summary. Duration and notes are dropped. Decoding is lossy and always marks
the record as archived.
"""

from typing import Any, Dict

from visittrack.models import VisitRecord

SUMMARY_LIMIT = 200

# short key -> VisitRecord attribute
_SHORT_KEYS = {
    'd': 'date',
    't': 'time',
    'h': 'hotel_id',
    'hn': 'hotel_name',
    'p': 'purpose',
    's': 'status',
    'c': 'created_at',
    'u': 'updated_at',
    'cp': 'contact_person',
    'ce': 'contact_email',
    'vo': 'visit_outcome',
    'vr': 'visit_rating',
}


def compress(record: VisitRecord) -> Dict[str, Any]:
    compressed = {'id': record.id}
    for short, attr in _SHORT_KEYS.items():
        compressed[short] = getattr(record, attr)
    compressed['vs'] = record.visit_summary[:SUMMARY_LIMIT] if record.visit_summary else ''
    return compressed


def decompress(compressed: Dict[str, Any]) -> VisitRecord:
    kwargs = {attr: compressed.get(short) for short, attr in _SHORT_KEYS.items()}
    summary = compressed.get('vs')
    return VisitRecord(
        id=compressed.get('id'),
        visit_summary=summary[:SUMMARY_LIMIT] if summary else summary,
        archived=True,
        **kwargs,
    )
