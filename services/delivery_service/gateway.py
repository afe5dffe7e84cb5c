"""Real-time location and status channel."""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.events import (
    AdminSubscribedEvent,
    BaseEvent,
    DeliveryStatusChangedEvent,
    DeliveryStatusNotificationEvent,
    DeliveryStatusUpdatedEvent,
    DeliveryStatusUpdateEvent,
    DeliveryTrackEvent,
    DeliveryTrackingDataEvent,
    DriverLocationUpdatedEvent,
    DriverLocationUpdateEvent,
    DriverStatusChangedEvent,
    DriverStatusUpdatedEvent,
    DriverStatusUpdateEvent,
    ErrorEvent,
    EventType,
    LocationBroadcastEvent,
    StatusBroadcastEvent,
    parse_inbound,
)
from shared.message_broker import Connection, MessageBroker

from .delivery_registry import DeliveryRegistry
from .driver_registry import DriverRegistry
from .models import Coordinate, Delivery, DeliveryStatus, DriverStatus
from .tracking import TrackingLog

logger = logging.getLogger(__name__)

ADMIN_GROUP = "admin"


def delivery_group(delivery_id: str) -> str:
    return f"delivery:{delivery_id}"


class LocationEventGateway:
    """
    Routes inbound client events to the registries and fans results out.

    Failures are reported to the sender as ``error`` events; the
    connection is never closed by the gateway.
    """

    def __init__(
        self,
        broker: MessageBroker,
        drivers: DriverRegistry,
        deliveries: DeliveryRegistry,
        tracking: TrackingLog,
    ):
        self.broker = broker
        self.drivers = drivers
        self.deliveries = deliveries
        self.tracking = tracking
        self.handlers: Dict[EventType, Callable[[Connection, Any], Awaitable[None]]] = {
            EventType.DRIVER_LOCATION_UPDATE: self.handle_driver_location_update,
            EventType.DELIVERY_TRACK: self.handle_delivery_track,
            EventType.DRIVER_STATUS_UPDATE: self.handle_driver_status_update,
            EventType.DELIVERY_STATUS_UPDATE: self.handle_delivery_status_update,
            EventType.ADMIN_SUBSCRIBE: self.handle_admin_subscribe,
        }

    async def on_connect(self, connection: Connection):
        logger.info(f"Client connected: {connection.id}")

    async def on_disconnect(self, connection: Connection):
        """Stop all broadcasts to a closed connection."""
        self.broker.disconnect(connection)
        logger.info(f"Client disconnected: {connection.id}")

    async def dispatch(
        self,
        connection: Connection,
        event_name: str,
        data: Optional[Dict[str, Any]] = None,
    ):
        """Parse one wire frame and run its handler."""
        try:
            event = parse_inbound(event_name, data)
        except ValueError as e:
            logger.warning(f"Rejected event {event_name!r} from {connection.id}: {str(e)}")
            await self._error(connection, f"Invalid event: {event_name}")
            return

        try:
            await self.handlers[event.event_type](connection, event)
        except Exception as e:
            logger.error(f"Error handling {event_name}: {str(e)}", exc_info=True)
            await self._error(connection, f"Failed to process {event_name}")

    async def _error(self, connection: Connection, message: str):
        await connection.send(ErrorEvent(message=message))

    async def handle_driver_location_update(
        self, connection: Connection, event: DriverLocationUpdateEvent
    ):
        location = Coordinate(
            latitude=event.location.latitude,
            longitude=event.location.longitude,
            timestamp=event.timestamp,
        )

        driver = self.drivers.update_location(event.driver_id, location)
        if not driver:
            await self._error(connection, "Driver not found")
            return

        if event.delivery_id:
            delivery = self.deliveries.get(event.delivery_id)
            if delivery:
                self.tracking.append(
                    delivery.id,
                    driver.id,
                    location,
                    delivery.status,
                    delivery.estimated_arrival,
                )
                await self.broadcast_location_update(delivery.id, location)

        await connection.send(DriverLocationUpdatedEvent(driver_id=driver.id))

    async def handle_delivery_track(self, connection: Connection, event: DeliveryTrackEvent):
        delivery = self.deliveries.get(event.delivery_id)
        if not delivery:
            await self._error(connection, "Delivery not found")
            return

        self.broker.join(delivery_group(delivery.id), connection)

        current_location = self.tracking.current_location(delivery.id)
        await connection.send(DeliveryTrackingDataEvent(
            delivery=delivery.model_dump(mode="json"),
            current_location=current_location.model_dump(mode="json") if current_location else None,
            tracking_history=[
                update.model_dump(mode="json") for update in self.tracking.history(delivery.id)
            ],
        ))
        logger.info(f"Client {connection.id} subscribed to delivery {delivery.id}")

    async def handle_driver_status_update(
        self, connection: Connection, event: DriverStatusUpdateEvent
    ):
        try:
            status = DriverStatus(event.status)
        except ValueError:
            await self._error(connection, "Invalid driver status")
            return

        driver = self.drivers.update_status(event.driver_id, status, event.is_available)
        if not driver:
            await self._error(connection, "Driver not found")
            return

        snapshot = driver.model_dump(mode="json")
        await connection.send(DriverStatusUpdatedEvent(driver=snapshot))
        await self.broker.publish(ADMIN_GROUP, DriverStatusChangedEvent(driver=snapshot))

    async def handle_delivery_status_update(
        self, connection: Connection, event: DeliveryStatusUpdateEvent
    ):
        try:
            status = DeliveryStatus(event.status)
        except ValueError:
            await self._error(connection, "Invalid delivery status")
            return

        delivery = self.deliveries.update_status(event.delivery_id, status, event.notes)
        if not delivery:
            if self.deliveries.get(event.delivery_id):
                await self._error(connection, "Invalid status transition")
            else:
                await self._error(connection, "Delivery not found")
            return

        await connection.send(DeliveryStatusUpdatedEvent(delivery=delivery.model_dump(mode="json")))
        await self.announce_delivery_status(delivery, event.notes)

    async def handle_admin_subscribe(self, connection: Connection, event: BaseEvent):
        self.broker.join(ADMIN_GROUP, connection)
        await connection.send(AdminSubscribedEvent())

    async def announce_delivery_status(self, delivery: Delivery, notes: Optional[str] = None):
        """Fan an accepted status change out to trackers, admins and notifiers."""
        await self.broadcast_status_update(delivery.id, delivery.status)
        await self.broker.publish(
            ADMIN_GROUP, DeliveryStatusChangedEvent(delivery=delivery.model_dump(mode="json"))
        )
        await self.broker.publish_event(DeliveryStatusNotificationEvent(
            delivery_id=delivery.id,
            status=delivery.status.value,
            customer_phone=delivery.customer_phone,
            driver_id=delivery.driver_id,
            estimated_arrival=delivery.estimated_arrival,
            notes=notes,
        ))

    async def broadcast_location_update(self, delivery_id: str, location: Coordinate) -> int:
        """Push a position to everyone tracking a delivery."""
        return await self.broker.publish(
            delivery_group(delivery_id),
            LocationBroadcastEvent(delivery_id=delivery_id, location=location.model_dump(mode="json")),
        )

    async def broadcast_status_update(self, delivery_id: str, status: DeliveryStatus) -> int:
        """Push a status change to everyone tracking a delivery."""
        return await self.broker.publish(
            delivery_group(delivery_id),
            StatusBroadcastEvent(delivery_id=delivery_id, status=status.value),
        )
