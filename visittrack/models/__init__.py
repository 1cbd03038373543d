"""
Data Models
Dataclasses for visits, hotels and sent-email history. Pure Python objects;
storage code converts them to and from the persisted JSON shape.

Dates are ISO strings ('YYYY-MM-DD'), times are 'HH:MM', timestamps are
ISO-8601 strings. Persisted JSON uses camelCase keys (hotelId, createdAt, ...).
"""

from dataclasses import dataclass, field, fields
from typing import Optional, Dict, Any

STATUS_SCHEDULED = 'scheduled'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
VISIT_STATUSES = (STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED)


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


@dataclass
class VisitRecord:
    """A business visit to a hotel."""
    id: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    duration: Optional[int] = None
    hotel_id: Optional[str] = None
    hotel_name: Optional[str] = None
    purpose: Optional[str] = None
    status: str = STATUS_SCHEDULED
    contact_person: Optional[str] = None
    contact_email: Optional[str] = None
    visit_summary: Optional[str] = None
    notes: Optional[str] = None
    visit_outcome: Optional[str] = None
    visit_rating: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    archived: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Persisted (camelCase) representation."""
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VisitRecord':
        """Build from a persisted dict. Unknown keys are ignored."""
        kwargs = {}
        for f in fields(cls):
            key = _camel(f.name)
            if key in data:
                kwargs[f.name] = data[key]
            elif f.name in data:
                kwargs[f.name] = data[f.name]
        if kwargs.get('status') is None:
            kwargs.pop('status', None)
        if kwargs.get('archived') is None:
            kwargs.pop('archived', None)
        return cls(**kwargs)


@dataclass
class HotelRecord:
    """Static hotel reference data."""
    id: str = ''
    name: str = ''
    area: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    revenue: float = 0.0
    bookings: int = 0
    priority: str = 'P1'

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HotelRecord':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class EmailRecord:
    """One entry of the sent-email history."""
    id: str = ''
    timestamp: str = ''
    to: str = ''
    subject: str = ''
    hotel: Optional[str] = None
    template: Optional[str] = None
    status: str = 'sent'
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SendResult:
    """Outcome of an email send. Failures are reported here, never raised."""
    success: bool
    timestamp: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
