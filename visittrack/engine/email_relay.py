"""
Email Relay - delivery through the EmailJS REST API.
The relay only transports an already-rendered payload; templates and history
live in the email composer.
"""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class RelayError(RuntimeError):
    """The relay could not deliver a message (transport, HTTP or configuration failure)."""


class EmailJSRelay:

    def __init__(
        self,
        api_url: str,
        service_id: Optional[str],
        template_id: Optional[str],
        user_id: Optional[str],
        access_token: Optional[str] = None,
        timeout=(10, 30),
    ):
        self.api_url = api_url
        self.service_id = service_id
        self.template_id = template_id
        self.user_id = user_id
        self.access_token = access_token
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.service_id and self.template_id and self.user_id)

    def send(self, template_params: Dict[str, Any]) -> str:
        """
        Post one message. Returns the relay's response text as the message id.
        Raises RelayError on any failure; there are no retries.
        """
        if not self.configured:
            raise RelayError("EmailJS is not configured (EMAILJS_SERVICE_ID, EMAILJS_TEMPLATE_ID, EMAILJS_USER_ID)")

        payload = {
            'service_id': self.service_id,
            'template_id': self.template_id,
            'user_id': self.user_id,
            'template_params': template_params,
        }
        if self.access_token:
            payload['accessToken'] = self.access_token

        try:
            logger.debug(f"Posting email to relay for {template_params.get('to_email')}")
            response = requests.post(self.api_url, json=payload, timeout=self.timeout, verify=True)
            response.raise_for_status()
            return response.text.strip() or 'OK'

        except requests.exceptions.RequestException as e:
            logger.error(f"EmailJS relay error: {e}")
            raise RelayError(f"Failed to send via EmailJS: {e}")
