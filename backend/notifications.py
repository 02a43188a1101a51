"""Outbound WhatsApp messages through the Green API.

Delivery is fire-and-forget: callers run these after their transaction has
committed, and broadcast() logs failures instead of raising.
"""

import logging
import re
from contextlib import contextmanager
from typing import Iterable, Optional

import httpx

from config import (
    APP_URL,
    GREEN_API_ACCESS_TOKEN,
    GREEN_API_ID_INSTANCE,
    GREEN_API_URL,
    NOTIFICATION_TIMEOUT_SECONDS,
)
from constants import PRIORITY_OPEN_MESSAGE, SYSTEM_OPEN_MESSAGE
from errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


def format_chat_id(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise NotificationDeliveryError(f"Invalid phone number '{phone}'")
    return f"{digits}@c.us"


class NotificationGateway:
    def __init__(
        self,
        id_instance: str = GREEN_API_ID_INSTANCE,
        access_token: str = GREEN_API_ACCESS_TOKEN,
        base_url: str = GREEN_API_URL,
        timeout: float = NOTIFICATION_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self.id_instance = id_instance
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.id_instance and self.access_token)

    @contextmanager
    def _session(self):
        if self._client is not None:
            yield self._client
            return
        with httpx.Client(timeout=self.timeout) as client:
            yield client

    def _send(self, client: httpx.Client, phone: str, message: str) -> Optional[str]:
        chat_id = format_chat_id(phone)
        url = f"{self.base_url}/waInstance{self.id_instance}/sendMessage/{self.access_token}"
        try:
            response = client.post(url, json={"chatId": chat_id, "message": message})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryError(
                f"Green API rejected message to {chat_id}: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Green API request failed: {e}") from e

        logger.info(f"WhatsApp message sent to {chat_id}")
        try:
            body = response.json()
        except ValueError:
            logger.debug(f"Green API accepted message to {chat_id} without a JSON body")
            return None
        return body.get("idMessage") if isinstance(body, dict) else None

    def notify(self, phone: str, message: str) -> Optional[str]:
        """Send one message, returning the Green API message id."""
        if not self.configured:
            raise NotificationDeliveryError("Green API credentials not configured")
        with self._session() as client:
            return self._send(client, phone, message)

    def send_many(self, messages: Iterable[tuple[str, str]]) -> int:
        """Send each (phone, message) pair; returns how many were delivered."""
        messages = list(messages)
        if not messages:
            return 0
        if not self.configured:
            logger.warning(f"Skipping {len(messages)} notifications: Green API credentials not configured")
            return 0

        delivered = 0
        with self._session() as client:
            for phone, message in messages:
                try:
                    self._send(client, phone, message)
                    delivered += 1
                except NotificationDeliveryError as e:
                    logger.warning(f"Notification to {phone} failed: {e.message}")
        logger.info(f"Delivered {delivered}/{len(messages)} notifications")
        return delivered

    def broadcast(self, phones: Iterable[str], message: str) -> int:
        return self.send_many((phone, message) for phone in phones)


gateway = NotificationGateway()


def system_open_messages(phones: list[str]) -> list[tuple[str, str]]:
    message = SYSTEM_OPEN_MESSAGE.format(app_url=APP_URL)
    return [(phone, message) for phone in phones]


def priority_open_messages(queued: list[tuple[str, int]]) -> list[tuple[str, str]]:
    return [
        (phone, PRIORITY_OPEN_MESSAGE.format(position=position, app_url=APP_URL))
        for phone, position in queued
    ]


def deliver(messages: list[tuple[str, str]]) -> int:
    """Background-task entry point; never raises."""
    try:
        return gateway.send_many(messages)
    except Exception:
        logger.exception("Notification delivery crashed")
        return 0
