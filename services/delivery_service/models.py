"""Domain models for the Delivery Service."""
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid4())


class DriverStatus(str, Enum):
    """Driver availability status."""
    AVAILABLE = "available"
    ON_DELIVERY = "on_delivery"
    OFFLINE = "offline"
    BREAK = "break"


class DeliveryStatus(str, Enum):
    """Delivery lifecycle status."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class VehicleType(str, Enum):
    """Vehicle types used by drivers."""
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    VAN = "van"
    TRUCK = "truck"


TERMINAL_STATUSES: FrozenSet[DeliveryStatus] = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.FAILED,
    DeliveryStatus.CANCELLED,
})

ACTIVE_STATUSES: FrozenSet[DeliveryStatus] = frozenset({
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
})

# Allowed status edges. Terminal statuses have no way out.
DELIVERY_STATUS_TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset(DeliveryStatus),
    DeliveryStatus.ASSIGNED: frozenset(DeliveryStatus),
    DeliveryStatus.PICKED_UP: frozenset(DeliveryStatus),
    DeliveryStatus.IN_TRANSIT: frozenset(DeliveryStatus),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
}


class Coordinate(BaseModel):
    """A timestamped point on the globe."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class Address(BaseModel):
    """Street address with its coordinates."""
    street: str
    city: str
    province: str
    postal_code: Optional[str] = None
    coordinates: Coordinate


class DriverCreate(BaseModel):
    """Registration payload for a driver."""
    name: str
    phone: str
    email: str
    vehicle_type: VehicleType
    vehicle_number: str


class DriverUpdate(BaseModel):
    """Partial driver update. Unset fields are left alone."""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None
    vehicle_number: Optional[str] = None
    status: Optional[DriverStatus] = None
    is_available: Optional[bool] = None


class Driver(DriverCreate):
    """Driver record owned by the DriverRegistry."""
    id: str = Field(default_factory=new_id)
    status: DriverStatus = DriverStatus.OFFLINE
    is_available: bool = False
    current_location: Optional[Coordinate] = None
    completed_deliveries: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DeliveryCreate(BaseModel):
    """Payload for a new delivery."""
    order_id: str
    customer_name: str
    customer_phone: str
    pickup_location: Address
    delivery_location: Address
    notes: Optional[str] = None


class Delivery(DeliveryCreate):
    """Delivery record owned by the DeliveryRegistry."""
    id: str = Field(default_factory=new_id)
    driver_id: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    estimated_arrival: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    tracking_url: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Route(BaseModel):
    """Ordered stop sequence for one driver. Never changed once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    driver_id: str
    deliveries: List[str]
    waypoints: List[Coordinate]
    total_distance: float  # km
    estimated_duration: float  # minutes
    optimized: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TrackingUpdate(BaseModel):
    """One location/status observation for a delivery."""

    model_config = ConfigDict(frozen=True)

    delivery_id: str
    driver_id: str
    location: Coordinate
    status: DeliveryStatus
    estimated_arrival: Optional[datetime] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
