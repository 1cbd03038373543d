"""
Application wiring.
Builds the key-value backend, tiered store and email composer from a Config.
Entry points (CLI, scripts) own the result; nothing here is a module-level
singleton.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from visittrack.bus.events import bus as default_bus, EventBus
from visittrack.db.kv import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore, PostgresKeyValueStore
from visittrack.engine.email_composer import EmailComposer
from visittrack.engine.email_relay import EmailJSRelay
from visittrack.engine.hotels import ensure_hotels
from visittrack.engine.maintenance import MaintenanceScheduler
from visittrack.engine.tiered_store import TieredStore

logger = logging.getLogger(__name__)

BACKENDS = ('file', 'postgres', 'memory')


@dataclass
class App:
    kv: KeyValueStore
    store: TieredStore
    composer: EmailComposer
    bus: EventBus

    def scheduler(self, config) -> MaintenanceScheduler:
        return MaintenanceScheduler(
            self.store,
            initial_delay=config.MAINTENANCE_INITIAL_DELAY_SECONDS,
            interval=config.MAINTENANCE_INTERVAL_SECONDS,
        )


def build_kv(config) -> KeyValueStore:
    backend = config.STORE_BACKEND
    if backend == 'file':
        return FileKeyValueStore(config.DATA_DIR, quota_bytes=config.STORE_QUOTA_BYTES)
    if backend == 'postgres':
        kv = PostgresKeyValueStore(config.DATABASE_URL, quota_bytes=config.STORE_QUOTA_BYTES)
        kv.ensure_schema()
        return kv
    if backend == 'memory':
        return MemoryKeyValueStore(quota_bytes=config.STORE_QUOTA_BYTES)
    raise ValueError(f"Unknown STORE_BACKEND '{backend}'. Choose from: {', '.join(BACKENDS)}")


def build_app(config, kv: Optional[KeyValueStore] = None, bus: Optional[EventBus] = None) -> App:
    kv = kv or build_kv(config)
    bus = bus or default_bus

    store = TieredStore(
        kv,
        archive_threshold_days=config.ARCHIVE_THRESHOLD_DAYS,
        max_active=config.MAX_ACTIVE_VISITS,
        bus=bus,
    )
    ensure_hotels(kv)

    relay = EmailJSRelay(
        config.EMAILJS_API_URL,
        config.EMAILJS_SERVICE_ID,
        config.EMAILJS_TEMPLATE_ID,
        config.EMAILJS_USER_ID,
        access_token=config.EMAILJS_ACCESS_TOKEN or None,
    )
    composer = EmailComposer(
        kv,
        relay,
        sender_name=config.SENDER_NAME,
        sender_email=config.SENDER_EMAIL,
        sender_company=config.SENDER_COMPANY,
        sender_phone=config.SENDER_PHONE,
        history_limit=config.EMAIL_HISTORY_LIMIT,
        unknown_placeholders=config.EMAIL_UNKNOWN_PLACEHOLDERS,
        bus=bus,
    )
    logger.debug(f"App built on {config.STORE_BACKEND} backend")
    return App(kv=kv, store=store, composer=composer, bus=bus)
