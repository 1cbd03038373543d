"""
Event Bus - Decoupled Component Notifications
The store and the email composer announce what they did; listeners (CLI
output, audit logging, tests) subscribe without the emitters knowing them.
"""

from typing import Callable, Dict, List, Any, Optional
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Synchronous publish/subscribe hub.
    Handlers run in registration order; a failing handler is logged and the
    remaining handlers still run.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, handler: Callable):
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event to listen for
            handler: Callable that receives the event_data dict
        """
        self._handlers.setdefault(event_name, []).append(handler)
        logger.debug(f"Registered handler for '{event_name}': {getattr(handler, '__name__', handler)}")

    def off(self, event_name: str, handler: Callable) -> bool:
        """Unregister a handler. Returns False if it was not registered."""
        handlers = self._handlers.get(event_name, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._handlers[event_name]
        return True

    def emit(self, event_name: str, event_data: Optional[Dict[str, Any]] = None):
        """
        Emit an event to all registered handlers.

        Args:
            event_name: Name of the event
            event_data: Optional dict passed to every handler
        """
        if event_data is None:
            event_data = {}

        logger.debug(f"Emitting '{event_name}': {event_data}")

        for handler in list(self._handlers.get(event_name, [])):
            try:
                handler(event_data)
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__name__', handler)} failed on '{event_name}': {e}")

    def clear(self):
        """Drop all handlers (useful for testing)."""
        self._handlers.clear()


# Default instance for callers that do not wire their own
bus = EventBus()


# =============================================================================
# STANDARD EVENTS
# =============================================================================

# Tiered store
EVENT_VISIT_SAVED = 'visit_saved'
EVENT_VISIT_DELETED = 'visit_deleted'
EVENT_VISITS_ARCHIVED = 'visits_archived'
EVENT_EMERGENCY_ARCHIVAL = 'emergency_archival'
EVENT_INDEXES_REBUILT = 'indexes_rebuilt'
EVENT_MAINTENANCE_COMPLETE = 'maintenance_complete'
EVENT_DATA_IMPORTED = 'data_imported'
EVENT_MIGRATION_APPLIED = 'migration_applied'

# Email composer
EVENT_EMAIL_SENT = 'email_sent'
EVENT_EMAIL_FAILED = 'email_failed'
