import asyncio
import json
from datetime import datetime

import httpx
import pytest

from shared.config import Settings
from shared.events import DeliveryStatusNotificationEvent
from services.notification_service.notifier import SmsNotifier, format_phone_number

DELIVERY_ID = "3f2b8c1a-9d4e-4f6a-8b7c-1d2e3f4a5b6c"


def notification(status, **kwargs):
    return DeliveryStatusNotificationEvent(
        delivery_id=DELIVERY_ID,
        status=status,
        customer_phone="0771234567",
        **kwargs,
    )


@pytest.fixture
def notifier(settings):
    return SmsNotifier(settings)


@pytest.mark.parametrize("phone, expected", [
    ("0771234567", "+263771234567"),
    ("+263771234567", "+263771234567"),
    ("263771234567", "263771234567"),
])
def test_format_phone_number(phone, expected):
    assert format_phone_number(phone) == expected


def test_assigned_message_has_eta_and_link(notifier):
    message = notifier.build_message(
        notification("assigned", estimated_arrival=datetime(2024, 5, 1, 14, 5))
    )

    assert "#3f2b8c1a" in message
    assert "ETA: 14:05" in message
    assert message.endswith(f"Track: http://localhost:3000/track/{DELIVERY_ID}")


def test_failed_message_includes_reason(notifier):
    assert "Reason: Customer not home." in notifier.build_message(
        notification("failed", notes="Customer not home")
    )
    assert "Reason: Unknown reason." in notifier.build_message(notification("failed"))


@pytest.mark.parametrize("status", ["picked_up", "in_transit", "delivered"])
def test_progress_messages(notifier, status):
    assert "FreshRoute" in notifier.build_message(notification(status))


@pytest.mark.parametrize("status", ["pending", "cancelled"])
def test_silent_statuses(notifier, status):
    assert notifier.build_message(notification(status)) is None


def test_send_without_api_key_only_logs(notifier, caplog):
    with caplog.at_level("INFO"):
        sent = asyncio.run(notifier.send_sms("+263771234567", "hello"))

    assert sent is False
    assert "[SMS] To: +263771234567" in caplog.text


def test_send_posts_to_gateway():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"status": "queued"})

    settings = Settings(sms_api_key="secret", sms_gateway_url="https://sms.test/send")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = SmsNotifier(settings, http_client=client)
            await notifier.handle_status_change(notification("picked_up"))

    asyncio.run(run())

    [request] = requests
    assert str(request.url) == "https://sms.test/send"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["to"] == "+263771234567"
    assert body["from"] == "FreshRoute"
    assert "picked up" in body["message"]


def test_send_failure_returns_false():
    settings = Settings(sms_api_key="secret")
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    async def run():
        async with httpx.AsyncClient(transport=transport) as client:
            return await SmsNotifier(settings, http_client=client).send_sms("+263771234567", "hi")

    assert asyncio.run(run()) is False


def test_silent_status_sends_nothing():
    requests = []
    settings = Settings(sms_api_key="secret")

    def handler(request):
        requests.append(request)
        return httpx.Response(200)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await SmsNotifier(settings, http_client=client).handle_status_change(notification("cancelled"))

    asyncio.run(run())

    assert requests == []
