"""
Email Composer - templated business emails about hotel visits.
Renders a template from a visit plus caller fields, hands the result to the
relay and keeps a capped history of what was sent.

Templates use {field} placeholders drawn from a closed set (TEMPLATE_FIELDS).
Callers cannot inject arbitrary keys into the rendered text or the relay
payload.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

from visittrack.bus.events import bus as default_bus, EventBus, EVENT_EMAIL_SENT, EVENT_EMAIL_FAILED
from visittrack.db.kv import KeyValueStore, StorageQuotaExceeded, load_json, save_json
from visittrack.engine.email_relay import RelayError
from visittrack.engine.timeutil import Clock, isoformat, utc_now
from visittrack.logging_config import log_call
from visittrack.models import EmailRecord, SendResult, VisitRecord

logger = logging.getLogger(__name__)

HISTORY_KEY = 'visittrack_email_history'
TEMPLATES_KEY = 'visittrack_email_templates'

EMAIL_RE = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
_PLACEHOLDER_RE = re.compile(r'\{([A-Za-z_][A-Za-z0-9_]*)\}')
_TEMPLATE_NAME_RE = re.compile(r'^[a-z][a-z0-9_]*$')

UNKNOWN_DROP = 'drop'
UNKNOWN_ERROR = 'error'

# Every field a template may reference
TEMPLATE_FIELDS = frozenset({
    # from the visit
    'hotel', 'contact', 'purpose', 'notes', 'visit_date', 'visit_summary',
    # follow-up / proposal details supplied by the caller
    'follow_up_action', 'follow_up_date', 'service_proposal', 'timeline',
    'expected_results', 'proposal_date', 'service_details', 'proposed_value',
    'expected_roi', 'satisfaction_increase', 'revenue_generated',
    'services_count', 'renewal_proposal', 'custom_message',
    # sender signature
    'sender_name', 'sender_company', 'sender_email', 'sender_phone',
})

_SIGNATURE = """Best regards,
{sender_name}
{sender_company}
{sender_email}
{sender_phone}"""

DEFAULT_TEMPLATES: Dict[str, Dict[str, str]] = {
    'follow_up': {
        'subject': "Follow-up: Hotel Visit - {hotel}",
        'body': """Dear {contact},

Thank you for taking the time to meet with me today at {hotel}. I enjoyed our discussion about {purpose} and the opportunities for collaboration.

Key points from our meeting:
{notes}

Next Steps:
- {follow_up_action}
- Follow-up meeting scheduled for: {follow_up_date}

I look forward to continuing our partnership and exploring how we can work together to enhance your guests' experience.

""" + _SIGNATURE,
    },
    'thank_you': {
        'subject': "Thank You - {hotel} Partnership Discussion",
        'body': """Dear {contact},

Thank you for the warm welcome at {hotel} today. It was a pleasure meeting with you and learning more about your establishment's commitment to guest excellence.

I'm excited about the potential partnership opportunities we discussed, particularly:
- {service_proposal}
- Implementation timeline: {timeline}
- Expected outcomes: {expected_results}

I'll follow up with a detailed proposal by {proposal_date} as discussed.

Thank you again for your time and consideration.

""" + _SIGNATURE,
    },
    'service_proposal': {
        'subject': "Service Proposal - {hotel} Partnership Opportunity",
        'body': """Dear {contact},

Following our productive meeting at {hotel}, I'm pleased to present our service proposal for enhancing your guests' wellness experience.

Proposed Services:
{service_details}

Investment: {proposed_value}
Implementation: {timeline}
Expected ROI: {expected_roi}

I would welcome the opportunity to discuss this proposal in detail. Please let me know your availability for a follow-up meeting.

""" + _SIGNATURE,
    },
    'meeting_request': {
        'subject': "Meeting Request - {hotel} Partnership Discussion",
        'body': """Dear {contact},

I hope this message finds you well. I'm reaching out to explore potential partnership opportunities between {sender_company} and {hotel}.

I would appreciate the opportunity to meet with you to discuss:
- Customized wellness programs for your guests
- Revenue-sharing partnership models
- Implementation strategies that align with your brand

Would you be available for a brief meeting next week? I'm flexible with timing and can accommodate your schedule.

""" + _SIGNATURE,
    },
    'contract_renewal': {
        'subject': "Partnership Renewal - {hotel} Contract Discussion",
        'body': """Dear {contact},

As we approach the renewal period for our partnership agreement with {hotel}, I wanted to reach out to discuss the continued success of our collaboration.

Current Partnership Highlights:
- Guest satisfaction improvement: {satisfaction_increase}%
- Additional revenue generated: £{revenue_generated}
- Services delivered: {services_count} sessions

For the upcoming term, I'd like to propose:
{renewal_proposal}

Could we schedule a meeting to discuss the renewal terms and explore new opportunities?

""" + _SIGNATURE,
    },
    'custom': {
        'subject': "{hotel}",
        'body': """Dear {contact},

{custom_message}

""" + _SIGNATURE,
    },
}


class TemplateError(ValueError):
    """A template is missing or references a placeholder outside TEMPLATE_FIELDS."""


# =============================================================================
# RENDERING
# =============================================================================

def _validate_fields(fields: Dict[str, Any]) -> None:
    """Raise ValueError if a caller field is not a known template field."""
    invalid = set(fields.keys()) - TEMPLATE_FIELDS
    if invalid:
        raise ValueError(f"Invalid template fields: {invalid}")


def render(text: str, fields: Dict[str, Any], unknown: str = UNKNOWN_DROP) -> str:
    """
    Substitute {placeholders} in text.

    Known fields without a value render as ''. Placeholders outside
    TEMPLATE_FIELDS are dropped (unknown='drop') or raise TemplateError
    (unknown='error').
    """
    _validate_fields(fields)

    def substitute(match):
        name = match.group(1)
        if name not in TEMPLATE_FIELDS:
            if unknown == UNKNOWN_ERROR:
                raise TemplateError(f"Unknown placeholder {{{name}}}")
            logger.warning(f"Dropping unknown placeholder {{{name}}}")
            return ''
        value = fields.get(name)
        return '' if value is None else str(value)

    return _PLACEHOLDER_RE.sub(substitute, text)


# =============================================================================
# COMPOSER
# =============================================================================

class EmailComposer:

    def __init__(
        self,
        kv: KeyValueStore,
        relay,
        sender_name: str = '',
        sender_email: str = '',
        sender_company: str = '',
        sender_phone: str = '',
        history_limit: int = 100,
        unknown_placeholders: str = UNKNOWN_DROP,
        bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ):
        if unknown_placeholders not in (UNKNOWN_DROP, UNKNOWN_ERROR):
            raise ValueError(f"unknown_placeholders must be '{UNKNOWN_DROP}' or '{UNKNOWN_ERROR}'")
        self.kv = kv
        self.relay = relay
        self.sender_name = sender_name
        self.sender_email = sender_email
        self.sender_company = sender_company
        self.sender_phone = sender_phone
        self.history_limit = history_limit
        self.unknown_placeholders = unknown_placeholders
        self.bus = bus or default_bus
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # templates
    # ------------------------------------------------------------------

    def templates(self) -> Dict[str, Dict[str, str]]:
        """Built-in templates with saved edits merged over them."""
        merged = {name: dict(t) for name, t in DEFAULT_TEMPLATES.items()}
        custom = load_json(self.kv, TEMPLATES_KEY, default={})
        if isinstance(custom, dict):
            for name, template in custom.items():
                if isinstance(template, dict) and 'subject' in template and 'body' in template:
                    merged[name] = {'subject': template['subject'], 'body': template['body']}
        return merged

    def get_template(self, name: str) -> Dict[str, str]:
        template = self.templates().get(name)
        if template is None:
            raise TemplateError(f"Template {name} not found")
        return template

    def edit_template(self, name: str, subject: str, body: str) -> None:
        """Save (or add) a template. Placeholders must all be known fields."""
        if not _TEMPLATE_NAME_RE.match(name or ''):
            raise ValueError(f"Invalid template name: {name!r}")
        unknown = {p for p in _PLACEHOLDER_RE.findall(subject + body) if p not in TEMPLATE_FIELDS}
        if unknown:
            raise TemplateError(f"Unknown placeholders in template {name}: {sorted(unknown)}")

        custom = load_json(self.kv, TEMPLATES_KEY, default={})
        if not isinstance(custom, dict):
            custom = {}
        custom[name] = {'subject': subject, 'body': body}
        save_json(self.kv, TEMPLATES_KEY, custom)
        logger.info(f"Saved email template '{name}'")

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------

    def build_fields(self, visit: Optional[VisitRecord] = None, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Template fields from the visit and the sender, overridden by extra."""
        extra = dict(extra or {})
        _validate_fields(extra)

        fields = {
            'sender_name': self.sender_name,
            'sender_company': self.sender_company,
            'sender_email': self.sender_email,
            'sender_phone': self.sender_phone,
        }
        if visit is not None:
            fields.update({
                'hotel': visit.hotel_name or '',
                'contact': visit.contact_person or '',
                'purpose': visit.purpose or '',
                'notes': visit.notes or '',
                'visit_date': visit.date or '',
                'visit_summary': visit.visit_summary or '',
            })
        fields.update(extra)
        return fields

    def preview(self, template: str, visit: Optional[VisitRecord] = None, extra: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        tpl = self.get_template(template)
        fields = self.build_fields(visit, extra)
        return {
            'subject': render(tpl['subject'], fields, self.unknown_placeholders),
            'body': render(tpl['body'], fields, self.unknown_placeholders),
        }

    # ------------------------------------------------------------------
    # sending
    # ------------------------------------------------------------------

    @log_call(redact=('to',))
    def send(
        self,
        template: str,
        visit: Optional[VisitRecord] = None,
        extra: Optional[Dict[str, Any]] = None,
        to: Optional[str] = None,
    ) -> SendResult:
        """
        Render and deliver one email.

        Relay, template and recipient problems come back as
        SendResult(success=False); unknown caller fields raise ValueError.
        """
        fields = self.build_fields(visit, extra)
        timestamp = isoformat(self._clock())
        recipient = to or (visit.contact_email if visit else None) or ''
        payload: Dict[str, Any] = {}

        try:
            if not EMAIL_RE.match(recipient):
                raise TemplateError(f"Invalid recipient email: {recipient!r}")
            rendered = self.preview(template, visit, extra)
            payload = {
                'to_email': recipient,
                'to_name': fields.get('contact', ''),
                'from_name': ' - '.join(p for p in (self.sender_name, self.sender_company) if p),
                'from_email': self.sender_email,
                'subject': rendered['subject'],
                'message': rendered['body'],
                **fields,
            }
            message_id = self.relay.send(payload)

        except (TemplateError, RelayError) as e:
            logger.error(f"Email sending failed ({template}): {e}")
            self._record(EmailRecord(
                id=uuid.uuid4().hex, timestamp=timestamp, to=recipient,
                subject=payload.get('subject', ''), hotel=fields.get('hotel'),
                template=template, status='failed', error=str(e),
            ))
            self.bus.emit(EVENT_EMAIL_FAILED, {'template': template, 'to': recipient, 'error': str(e)})
            return SendResult(success=False, timestamp=timestamp, error=str(e), payload=payload)

        self._record(EmailRecord(
            id=uuid.uuid4().hex, timestamp=timestamp, to=recipient,
            subject=payload['subject'], hotel=fields.get('hotel'),
            template=template, status='sent', message_id=message_id,
        ))
        logger.info(f"Email sent: '{payload['subject']}' ({template})")
        self.bus.emit(EVENT_EMAIL_SENT, {'template': template, 'to': recipient, 'message_id': message_id})
        return SendResult(success=True, timestamp=timestamp, message_id=message_id, payload=payload)

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    def _record(self, entry: EmailRecord) -> None:
        entries = load_json(self.kv, HISTORY_KEY, default=[])
        if not isinstance(entries, list):
            entries = []
        entries.append(entry.__dict__)
        # Keep the most recent entries only
        entries = entries[-self.history_limit:] if self.history_limit > 0 else []
        try:
            save_json(self.kv, HISTORY_KEY, entries)
        except StorageQuotaExceeded as e:
            logger.error(f"Could not record email history: {e}")

    def history(self) -> List[EmailRecord]:
        """Sent and failed emails, oldest first."""
        entries = load_json(self.kv, HISTORY_KEY, default=[])
        if not isinstance(entries, list):
            return []
        known = set(EmailRecord.__dataclass_fields__)
        return [EmailRecord(**{k: v for k, v in e.items() if k in known}) for e in entries if isinstance(e, dict)]
