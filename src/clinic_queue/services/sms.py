"""Outbound SMS transports.

``TwilioSmsTransport`` posts to the Twilio Messages API through httpx with a
hard timeout. When credentials are missing the application runs with
``SimulatedSmsTransport``, which only logs the would-be message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from clinic_queue.core.errors import NotificationTransportError
from clinic_queue.core.settings import Settings, settings

logger = logging.getLogger(__name__)

HTTP_CREATED = 201


@dataclass(frozen=True)
class SmsResult:
    """Transport acknowledgement for one message."""

    simulated: bool
    provider_id: str | None = None


class SmsTransport(Protocol):
    def send(self, to: str, body: str) -> SmsResult:
        """Deliver ``body`` to ``to`` or raise NotificationTransportError."""
        ...


class SimulatedSmsTransport:
    """Logs messages instead of sending them."""

    simulated = True

    def send(self, to: str, body: str) -> SmsResult:
        logger.info("SMS simulation to %s: %s", to, body)
        return SmsResult(simulated=True)


class TwilioSmsTransport:
    """Twilio Messages API client."""

    simulated = False

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.account_sid = account_sid
        self.from_number = from_number
        self._url = f"{base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            auth=(account_sid, auth_token),
        )

    def send(self, to: str, body: str) -> SmsResult:
        try:
            response = self._client.post(
                self._url,
                data={"From": self.from_number, "To": to, "Body": body},
            )
        except httpx.TimeoutException as exc:
            raise NotificationTransportError("Twilio API timeout") from exc
        except httpx.HTTPError as exc:
            raise NotificationTransportError(f"Twilio request failed: {exc}") from exc

        if response.status_code != HTTP_CREATED:
            try:
                message = response.json().get("message", f"HTTP {response.status_code}")
            except ValueError:
                message = f"HTTP {response.status_code}: {response.text[:200]}"
            raise NotificationTransportError(message)

        try:
            sid = response.json().get("sid")
        except ValueError:
            # Accepted but unreadable; the message is still queued by Twilio.
            logger.warning("Twilio returned 201 with a non-JSON body for message to %s", to)
            sid = None
        logger.debug("Twilio accepted message %s to %s", sid, to)
        return SmsResult(simulated=False, provider_id=sid)

    def close(self) -> None:
        self._client.close()


def build_sms_transport(config: Settings = settings) -> SmsTransport:
    """Return the Twilio transport when configured, else the simulation."""
    if not config.sms_configured:
        logger.warning("Twilio credentials not configured; SMS runs in simulation mode")
        return SimulatedSmsTransport()
    return TwilioSmsTransport(
        config.twilio_account_sid or "",
        config.twilio_auth_token or "",
        config.twilio_from_number or "",
        base_url=config.twilio_base_url,
        timeout=config.sms_timeout_seconds,
    )
