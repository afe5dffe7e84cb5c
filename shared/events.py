"""Event definitions for the real-time delivery channel."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Event names used on the wire and on the internal broker."""

    # Inbound (client -> server)
    DRIVER_LOCATION_UPDATE = "driver:location:update"
    DELIVERY_TRACK = "delivery:track"
    DRIVER_STATUS_UPDATE = "driver:status:update"
    DELIVERY_STATUS_UPDATE = "delivery:status:update"
    ADMIN_SUBSCRIBE = "admin:subscribe"

    # Replies to the originating connection
    DRIVER_LOCATION_UPDATED = "driver:location:updated"
    DELIVERY_TRACKING_DATA = "delivery:tracking:data"
    DRIVER_STATUS_UPDATED = "driver:status:updated"
    DELIVERY_STATUS_UPDATED = "delivery:status:updated"
    ADMIN_SUBSCRIBED = "admin:subscribed"
    ERROR = "error"

    # Group broadcasts
    LOCATION_UPDATE = "location:update"
    STATUS_UPDATE = "status:update"
    DRIVER_STATUS_CHANGED = "driver:status:changed"
    DELIVERY_STATUS_CHANGED = "delivery:status:changed"

    # Internal, consumed by the notification service
    DELIVERY_STATUS_NOTIFICATION = "notification.delivery.status"


class BaseEvent(BaseModel):
    """Base event model with common fields."""

    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_message(self) -> Dict[str, Any]:
        """Wire frame: event name plus JSON-safe payload."""
        data = self.model_dump(mode="json", exclude={"event_type"})
        return {"event": self.event_type.value, "data": data}


class LocationPayload(BaseModel):
    """Raw position reported by a driver's device."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


# Inbound events
class DriverLocationUpdateEvent(BaseEvent):
    """Driver reports a new position, optionally for an active delivery."""
    event_type: EventType = EventType.DRIVER_LOCATION_UPDATE
    driver_id: str
    location: LocationPayload
    delivery_id: Optional[str] = None


class DeliveryTrackEvent(BaseEvent):
    """Customer subscribes to a delivery's live updates."""
    event_type: EventType = EventType.DELIVERY_TRACK
    delivery_id: str


class DriverStatusUpdateEvent(BaseEvent):
    """Driver changes availability. Status is checked by the gateway."""
    event_type: EventType = EventType.DRIVER_STATUS_UPDATE
    driver_id: str
    status: str
    is_available: Optional[bool] = None


class DeliveryStatusUpdateEvent(BaseEvent):
    """Driver or dispatcher moves a delivery along its lifecycle."""
    event_type: EventType = EventType.DELIVERY_STATUS_UPDATE
    delivery_id: str
    status: str
    notes: Optional[str] = None


class AdminSubscribeEvent(BaseEvent):
    """Dashboard joins the admin broadcast group."""
    event_type: EventType = EventType.ADMIN_SUBSCRIBE


# Replies
class DriverLocationUpdatedEvent(BaseEvent):
    event_type: EventType = EventType.DRIVER_LOCATION_UPDATED
    success: bool = True
    driver_id: str


class DeliveryTrackingDataEvent(BaseEvent):
    """Full snapshot sent to a new tracking subscriber."""
    event_type: EventType = EventType.DELIVERY_TRACKING_DATA
    delivery: Dict[str, Any]
    current_location: Optional[Dict[str, Any]] = None
    tracking_history: List[Dict[str, Any]] = Field(default_factory=list)


class DriverStatusUpdatedEvent(BaseEvent):
    event_type: EventType = EventType.DRIVER_STATUS_UPDATED
    success: bool = True
    driver: Dict[str, Any]


class DeliveryStatusUpdatedEvent(BaseEvent):
    event_type: EventType = EventType.DELIVERY_STATUS_UPDATED
    success: bool = True
    delivery: Dict[str, Any]


class AdminSubscribedEvent(BaseEvent):
    event_type: EventType = EventType.ADMIN_SUBSCRIBED
    success: bool = True


class ErrorEvent(BaseEvent):
    """Failure reply. The connection stays open."""
    event_type: EventType = EventType.ERROR
    message: str


# Broadcasts
class LocationBroadcastEvent(BaseEvent):
    event_type: EventType = EventType.LOCATION_UPDATE
    delivery_id: str
    location: Dict[str, Any]


class StatusBroadcastEvent(BaseEvent):
    event_type: EventType = EventType.STATUS_UPDATE
    delivery_id: str
    status: str


class DriverStatusChangedEvent(BaseEvent):
    event_type: EventType = EventType.DRIVER_STATUS_CHANGED
    driver: Dict[str, Any]


class DeliveryStatusChangedEvent(BaseEvent):
    event_type: EventType = EventType.DELIVERY_STATUS_CHANGED
    delivery: Dict[str, Any]


# Internal
class DeliveryStatusNotificationEvent(BaseEvent):
    """Emitted after every accepted delivery status change."""
    event_type: EventType = EventType.DELIVERY_STATUS_NOTIFICATION
    delivery_id: str
    status: str
    customer_phone: str
    driver_id: Optional[str] = None
    estimated_arrival: Optional[datetime] = None
    notes: Optional[str] = None


# Registry of events a client may send
INBOUND_REGISTRY: Dict[EventType, Type[BaseEvent]] = {
    EventType.DRIVER_LOCATION_UPDATE: DriverLocationUpdateEvent,
    EventType.DELIVERY_TRACK: DeliveryTrackEvent,
    EventType.DRIVER_STATUS_UPDATE: DriverStatusUpdateEvent,
    EventType.DELIVERY_STATUS_UPDATE: DeliveryStatusUpdateEvent,
    EventType.ADMIN_SUBSCRIBE: AdminSubscribeEvent,
}


def parse_inbound(event_name: str, data: Optional[Dict[str, Any]] = None) -> BaseEvent:
    """
    Build an inbound event from a wire frame.

    Raises:
        ValueError: If the event name is not an inbound event
        pydantic.ValidationError: If the payload does not match
    """
    event_type = EventType(event_name)
    event_class = INBOUND_REGISTRY.get(event_type)
    if event_class is None:
        raise ValueError(f"Not an inbound event: {event_name}")
    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Payload for {event_name} must be an object")
    payload = {k: v for k, v in (data or {}).items() if k != "event_type"}
    return event_class(**payload)
