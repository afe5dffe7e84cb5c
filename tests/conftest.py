import pytest

from shared.config import Settings
from shared.events import BaseEvent
from shared.message_broker import Connection, MessageBroker

from services.delivery_service.delivery_registry import DeliveryRegistry
from services.delivery_service.dispatcher import Dispatcher
from services.delivery_service.driver_registry import DriverRegistry
from services.delivery_service.gateway import LocationEventGateway
from services.delivery_service.models import (
    Address,
    Coordinate,
    DeliveryCreate,
    DriverCreate,
    DriverStatus,
    VehicleType,
)
from services.delivery_service.route_optimizer import RouteOptimizer
from services.delivery_service.tracking import TrackingLog


class RecordingConnection(Connection):
    """Connection that keeps every event it is sent."""

    def __init__(self, connection_id=None):
        super().__init__(connection_id)
        self.events = []

    async def send(self, event: BaseEvent):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.event_type == event_type]


def address(latitude, longitude, street="123 Samora Machel Ave"):
    return Address(
        street=street,
        city="Harare",
        province="Harare",
        coordinates=Coordinate(latitude=latitude, longitude=longitude),
    )


@pytest.fixture
def settings():
    return Settings(sms_api_key=None)


@pytest.fixture
def drivers():
    return DriverRegistry()


@pytest.fixture
def deliveries(drivers):
    return DeliveryRegistry(drivers)


@pytest.fixture
def dispatcher(deliveries, drivers):
    return Dispatcher(deliveries, drivers)


@pytest.fixture
def optimizer(deliveries, drivers):
    return RouteOptimizer(deliveries, drivers)


@pytest.fixture
def tracking(deliveries, drivers):
    return TrackingLog(deliveries, drivers)


@pytest.fixture
def broker():
    return MessageBroker()


@pytest.fixture
def gateway(broker, drivers, deliveries, tracking):
    return LocationEventGateway(broker, drivers, deliveries, tracking)


@pytest.fixture
def make_driver(drivers):
    """Register a driver, optionally available and positioned."""

    def _make(name="Tendai Moyo", location=None, available=False):
        driver = drivers.create(DriverCreate(
            name=name,
            phone="+263771234567",
            email="driver@example.com",
            vehicle_type=VehicleType.MOTORCYCLE,
            vehicle_number="ABC1234",
        ))
        if location is not None:
            driver = drivers.update_location(
                driver.id, Coordinate(latitude=location[0], longitude=location[1])
            )
        if available:
            driver = drivers.update_status(driver.id, DriverStatus.AVAILABLE, True)
        return driver

    return _make


@pytest.fixture
def make_delivery(deliveries):
    """Create a pending delivery dropping off at `destination`."""

    def _make(
        destination=(-17.8300, 31.0400),
        pickup=(-17.8252, 31.0335),
        phone="0771234567",
        registry=None,
    ):
        return (registry or deliveries).create(DeliveryCreate(
            order_id="550e8400-e29b-41d4-a716-446655440000",
            customer_name="Rudo Chikwanha",
            customer_phone=phone,
            pickup_location=address(*pickup),
            delivery_location=address(*destination, street="456 Julius Nyerere Way"),
            notes="Please call on arrival",
        ))

    return _make
