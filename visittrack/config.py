"""
Visit Tracker Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from urllib.parse import urlparse
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

_LOCAL_HOSTS = {'localhost', '127.0.0.1', '::1'}


class Config:
    """Application configuration."""

    # Storage backend: 'file' (JSON files in DATA_DIR), 'postgres' or 'memory'
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'file').lower()
    DATA_DIR = os.getenv('DATA_DIR', str(Path(__file__).parent.parent / 'data' / 'store'))

    # Only required for the postgres backend; never hardcode credentials here
    DATABASE_URL = os.getenv('DATABASE_URL', '')
    if STORE_BACKEND == 'postgres' and not DATABASE_URL:
        _logger.critical("STORE_BACKEND=postgres but DATABASE_URL is not set, cannot start.")
        raise ValueError("DATABASE_URL environment variable is not set. Copy .env.example to .env and configure it.")

    # Total capacity of the key-value store, same order as a browser origin quota
    STORE_QUOTA_BYTES = int(os.getenv('STORE_QUOTA_BYTES', str(5 * 1024 * 1024)))

    # Tiering
    ARCHIVE_THRESHOLD_DAYS = int(os.getenv('ARCHIVE_THRESHOLD_DAYS', '100'))
    MAX_ACTIVE_VISITS = int(os.getenv('MAX_ACTIVE_VISITS', '500'))

    # Maintenance schedule (seconds)
    MAINTENANCE_INITIAL_DELAY_SECONDS = float(os.getenv('MAINTENANCE_INITIAL_DELAY_SECONDS', '300'))
    MAINTENANCE_INTERVAL_SECONDS = float(os.getenv('MAINTENANCE_INTERVAL_SECONDS', '3600'))

    # Email relay (EmailJS REST API)
    EMAILJS_API_URL = os.getenv('EMAILJS_API_URL', 'https://api.emailjs.com/api/v1.0/email/send')
    EMAILJS_SERVICE_ID = os.getenv('EMAILJS_SERVICE_ID', '')
    EMAILJS_TEMPLATE_ID = os.getenv('EMAILJS_TEMPLATE_ID', '')
    EMAILJS_USER_ID = os.getenv('EMAILJS_USER_ID', '')
    EMAILJS_ACCESS_TOKEN = os.getenv('EMAILJS_ACCESS_TOKEN', '')

    # Sender identity used in template signatures and the relay payload
    SENDER_NAME = os.getenv('SENDER_NAME', '')
    SENDER_EMAIL = os.getenv('SENDER_EMAIL', '')
    SENDER_COMPANY = os.getenv('SENDER_COMPANY', '')
    SENDER_PHONE = os.getenv('SENDER_PHONE', '')

    EMAIL_HISTORY_LIMIT = int(os.getenv('EMAIL_HISTORY_LIMIT', '100'))
    # What to do with {placeholders} in a template that are not known fields: 'drop' or 'error'
    EMAIL_UNKNOWN_PLACEHOLDERS = os.getenv('EMAIL_UNKNOWN_PLACEHOLDERS', 'drop').lower()

    _relay = urlparse(EMAILJS_API_URL)
    if _relay.scheme == 'http' and _relay.hostname not in _LOCAL_HOSTS:
        _logger.warning(
            f"EMAILJS_API_URL uses plain HTTP to {_relay.hostname}: relay credentials and "
            "recipient data will travel unencrypted. Use HTTPS."
        )


# Singleton instance
config = Config()
