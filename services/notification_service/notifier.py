"""Customer SMS notifications for delivery status changes."""
import logging
from datetime import datetime
from typing import Optional

import httpx

from shared.config import Settings
from shared.events import DeliveryStatusNotificationEvent, EventType
from shared.message_broker import MessageBroker

logger = logging.getLogger(__name__)


def format_phone_number(phone: str) -> str:
    """Convert a local Zimbabwe number (0XXXXXXXXX) to +263 form."""
    if phone.startswith("0"):
        return "+263" + phone[1:]
    return phone


def _eta_suffix(estimated_arrival: Optional[datetime]) -> str:
    return f" ETA: {estimated_arrival.strftime('%H:%M')}" if estimated_arrival else ""


class SmsNotifier:
    """
    Sends one SMS per delivery status change.

    Without an API key messages are only logged. Send failures are logged
    and never reach the delivery core.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client

    def subscribe(self, broker: MessageBroker):
        broker.subscribe_to_event(EventType.DELIVERY_STATUS_NOTIFICATION, self.handle_status_change)

    def build_message(self, event: DeliveryStatusNotificationEvent) -> Optional[str]:
        """Message text for a status, or None if the customer is not told."""
        short_id = event.delivery_id[:8]
        link = self.settings.tracking_link(event.delivery_id)
        eta = _eta_suffix(event.estimated_arrival)

        if event.status == "assigned":
            return f"Your FreshRoute delivery #{short_id} has been assigned to a driver.{eta} Track: {link}"
        if event.status == "picked_up":
            return f"Your FreshRoute order has been picked up and is on its way! Track: {link}"
        if event.status == "in_transit":
            return f"Your FreshRoute delivery is nearby!{eta} Track: {link}"
        if event.status == "delivered":
            return "Your FreshRoute order has been delivered successfully! Thank you for your order."
        if event.status == "failed":
            reason = event.notes or "Unknown reason"
            return (
                f"We couldn't complete your FreshRoute delivery #{short_id}. "
                f"Reason: {reason}. Please contact support."
            )
        return None

    async def handle_status_change(self, event: DeliveryStatusNotificationEvent):
        message = self.build_message(event)
        if message is None:
            return
        await self.send_sms(format_phone_number(event.customer_phone), message)

    async def send_sms(self, recipient: str, message: str) -> bool:
        """
        Send SMS notification.

        Returns:
            True if the gateway accepted the message
        """
        logger.info(f"[SMS] To: {recipient}")
        logger.info(f"[SMS] Message: {message}")

        if not self.settings.sms_api_key:
            logger.warning("[SMS] sms_api_key not configured. SMS not sent.")
            return False

        client = self.http_client or httpx.AsyncClient(timeout=self.settings.sms_timeout_seconds)
        try:
            response = await client.post(
                self.settings.sms_gateway_url,
                headers={"Authorization": f"Bearer {self.settings.sms_api_key}"},
                json={
                    "to": recipient,
                    "from": self.settings.sms_sender_id,
                    "message": message,
                },
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"[SMS] Error sending SMS to {recipient}: {str(e)}")
            return False
        finally:
            if client is not self.http_client:
                await client.aclose()
