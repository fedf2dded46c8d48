"""Tests for the SMS transports."""

import httpx
import pytest

from clinic_queue.core.errors import NotificationTransportError
from clinic_queue.core.settings import Settings
from clinic_queue.services.sms import (
    SimulatedSmsTransport,
    TwilioSmsTransport,
    build_sms_transport,
)

ACCOUNT_SID = "AC0123456789"


def _transport(handler) -> TwilioSmsTransport:
    client = httpx.Client(transport=httpx.MockTransport(handler), auth=(ACCOUNT_SID, "token"))
    return TwilioSmsTransport(ACCOUNT_SID, "token", "+15550001111", client=client)


def test_twilio_posts_form_and_returns_sid() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(201, json={"sid": "SM42", "status": "queued"})

    result = _transport(handler).send("+212600000001", "It's your turn!")

    assert result.provider_id == "SM42"
    assert result.simulated is False
    (request,) = captured
    assert request.method == "POST"
    assert request.url.path == f"/2010-04-01/Accounts/{ACCOUNT_SID}/Messages.json"
    form = dict(httpx.QueryParams(request.content.decode()))
    assert form == {"From": "+15550001111", "To": "+212600000001", "Body": "It's your turn!"}
    assert request.headers["authorization"].startswith("Basic ")


def test_twilio_accepted_without_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, text="OK")

    result = _transport(handler).send("+212600000001", "hello")

    assert result.simulated is False
    assert result.provider_id is None


def test_twilio_error_response_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

    with pytest.raises(NotificationTransportError, match="Invalid 'To' Phone Number"):
        _transport(handler).send("not-a-number", "hello")


def test_twilio_non_json_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(NotificationTransportError, match="HTTP 502"):
        _transport(handler).send("+212600000001", "hello")


def test_twilio_timeout_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NotificationTransportError, match="timeout"):
        _transport(handler).send("+212600000001", "hello")


def test_twilio_connection_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NotificationTransportError):
        _transport(handler).send("+212600000001", "hello")


def test_simulated_transport_never_fails() -> None:
    result = SimulatedSmsTransport().send("+212600000001", "hello")
    assert result.simulated is True
    assert result.provider_id is None


def test_build_transport_without_credentials_simulates() -> None:
    config = Settings(TWILIO_ACCOUNT_SID=None, TWILIO_AUTH_TOKEN=None, TWILIO_PHONE_NUMBER=None)
    assert isinstance(build_sms_transport(config), SimulatedSmsTransport)


def test_build_transport_with_credentials() -> None:
    config = Settings(
        TWILIO_ACCOUNT_SID=ACCOUNT_SID,
        TWILIO_AUTH_TOKEN="token",
        TWILIO_PHONE_NUMBER="+15550001111",
        SMS_TIMEOUT_SECONDS=3,
    )
    transport = build_sms_transport(config)
    try:
        assert isinstance(transport, TwilioSmsTransport)
        assert transport.from_number == "+15550001111"
    finally:
        transport.close()
