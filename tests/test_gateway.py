import asyncio

import pytest

from shared.events import EventType
from services.delivery_service.gateway import ADMIN_GROUP, delivery_group
from services.delivery_service.models import DeliveryStatus, DriverStatus

from .conftest import RecordingConnection


def send(gateway, connection, event, data=None):
    asyncio.run(gateway.dispatch(connection, event, data))


def errors(connection):
    return [e.message for e in connection.of_type(EventType.ERROR)]


@pytest.fixture
def assigned(dispatcher, make_delivery, make_driver):
    delivery = make_delivery()
    driver = make_driver(location=(-17.8252, 31.0335), available=True)
    return dispatcher.assign(delivery.id, driver.id), driver


def test_location_update_moves_driver(gateway, drivers, make_driver):
    driver = make_driver()
    connection = RecordingConnection()

    send(gateway, connection, "driver:location:update", {
        "driver_id": driver.id,
        "location": {"latitude": -17.83, "longitude": 31.04},
    })

    [reply] = connection.events
    assert reply.event_type == EventType.DRIVER_LOCATION_UPDATED
    assert reply.driver_id == driver.id
    location = drivers.get(driver.id).current_location
    assert (location.latitude, location.longitude) == (-17.83, 31.04)


def test_location_update_for_delivery_fans_out(gateway, broker, tracking, assigned):
    delivery, driver = assigned
    tracker = RecordingConnection()
    bystander = RecordingConnection()
    broker.join(delivery_group(delivery.id), tracker)
    broker.join(delivery_group("other"), bystander)
    connection = RecordingConnection()

    send(gateway, connection, "driver:location:update", {
        "driver_id": driver.id,
        "location": {"latitude": -17.84, "longitude": 31.05},
        "delivery_id": delivery.id,
    })

    [broadcast] = tracker.of_type(EventType.LOCATION_UPDATE)
    assert broadcast.delivery_id == delivery.id
    assert broadcast.location["latitude"] == -17.84
    assert bystander.events == []
    assert tracking.latest(delivery.id).status == DeliveryStatus.ASSIGNED
    assert connection.of_type(EventType.DRIVER_LOCATION_UPDATED)


def test_location_update_unknown_driver(gateway, tracking, assigned):
    delivery, _ = assigned
    connection = RecordingConnection()

    send(gateway, connection, "driver:location:update", {
        "driver_id": "missing",
        "location": {"latitude": 0, "longitude": 0},
        "delivery_id": delivery.id,
    })

    assert errors(connection) == ["Driver not found"]
    assert tracking.history(delivery.id) == []


def test_location_update_out_of_range(gateway, make_driver):
    driver = make_driver()
    connection = RecordingConnection()

    send(gateway, connection, "driver:location:update", {
        "driver_id": driver.id,
        "location": {"latitude": 91, "longitude": 0},
    })

    assert errors(connection) == ["Invalid event: driver:location:update"]


def test_track_joins_group_and_sends_snapshot(gateway, broker, tracking, assigned):
    delivery, driver = assigned
    tracking.append(delivery.id, driver.id, driver.current_location, delivery.status)
    connection = RecordingConnection()

    send(gateway, connection, "delivery:track", {"delivery_id": delivery.id})

    [snapshot] = connection.events
    assert snapshot.event_type == EventType.DELIVERY_TRACKING_DATA
    assert snapshot.delivery["id"] == delivery.id
    assert snapshot.current_location["latitude"] == driver.current_location.latitude
    assert len(snapshot.tracking_history) == 1
    assert connection in broker.members(delivery_group(delivery.id))


def test_track_unknown_delivery(gateway, broker):
    connection = RecordingConnection()

    send(gateway, connection, "delivery:track", {"delivery_id": "missing"})

    assert errors(connection) == ["Delivery not found"]
    assert broker.members(delivery_group("missing")) == []


def test_driver_status_update_notifies_admins(gateway, broker, drivers, make_driver):
    driver = make_driver()
    admin = RecordingConnection()
    broker.join(ADMIN_GROUP, admin)
    connection = RecordingConnection()

    send(gateway, connection, "driver:status:update", {
        "driver_id": driver.id,
        "status": "available",
        "is_available": True,
    })

    [reply] = connection.of_type(EventType.DRIVER_STATUS_UPDATED)
    assert reply.driver["status"] == "available"
    [changed] = admin.of_type(EventType.DRIVER_STATUS_CHANGED)
    assert changed.driver["id"] == driver.id
    assert drivers.get(driver.id).status == DriverStatus.AVAILABLE


def test_driver_status_update_errors(gateway, make_driver):
    driver = make_driver()
    connection = RecordingConnection()

    send(gateway, connection, "driver:status:update", {"driver_id": driver.id, "status": "asleep"})
    send(gateway, connection, "driver:status:update", {"driver_id": "missing", "status": "offline"})

    assert errors(connection) == ["Invalid driver status", "Driver not found"]


def test_delivery_status_update_fans_out(gateway, broker, drivers, assigned):
    delivery, driver = assigned
    tracker = RecordingConnection()
    admin = RecordingConnection()
    broker.join(delivery_group(delivery.id), tracker)
    broker.join(ADMIN_GROUP, admin)
    notifications = []

    async def record(event):
        notifications.append(event)

    broker.subscribe_to_event(EventType.DELIVERY_STATUS_NOTIFICATION, record)
    connection = RecordingConnection()

    send(gateway, connection, "delivery:status:update", {
        "delivery_id": delivery.id,
        "status": "delivered",
        "notes": "Left with guard",
    })

    [reply] = connection.of_type(EventType.DELIVERY_STATUS_UPDATED)
    assert reply.delivery["status"] == "delivered"
    [broadcast] = tracker.of_type(EventType.STATUS_UPDATE)
    assert broadcast.status == "delivered"
    assert admin.of_type(EventType.DELIVERY_STATUS_CHANGED)
    [notification] = notifications
    assert notification.event_type.value == "notification.delivery.status"
    assert notification.customer_phone == delivery.customer_phone
    assert notification.notes == "Left with guard"
    assert drivers.get(driver.id).completed_deliveries == 1


def test_delivery_status_update_errors(gateway, broker, deliveries, assigned):
    delivery, _ = assigned
    deliveries.update_status(delivery.id, DeliveryStatus.CANCELLED)
    tracker = RecordingConnection()
    broker.join(delivery_group(delivery.id), tracker)
    connection = RecordingConnection()

    send(gateway, connection, "delivery:status:update", {"delivery_id": delivery.id, "status": "lost"})
    send(gateway, connection, "delivery:status:update", {"delivery_id": delivery.id, "status": "delivered"})
    send(gateway, connection, "delivery:status:update", {"delivery_id": "missing", "status": "delivered"})

    assert errors(connection) == [
        "Invalid delivery status",
        "Invalid status transition",
        "Delivery not found",
    ]
    assert tracker.events == []


def test_admin_subscribe(gateway, broker):
    connection = RecordingConnection()

    send(gateway, connection, "admin:subscribe")

    assert connection.of_type(EventType.ADMIN_SUBSCRIBED)
    assert connection in broker.members(ADMIN_GROUP)


@pytest.mark.parametrize("event, data", [
    ("driver:teleport", {}),
    ("error", {"message": "spoofed"}),
    ("delivery:track", {}),
    ("delivery:track", ["not", "an", "object"]),
])
def test_invalid_events_are_reported(gateway, event, data):
    connection = RecordingConnection()

    send(gateway, connection, event, data)

    assert errors(connection) == [f"Invalid event: {event}"]


def test_disconnected_client_gets_nothing(gateway, broker, assigned):
    delivery, _ = assigned
    connection = RecordingConnection()
    send(gateway, connection, "delivery:track", {"delivery_id": delivery.id})
    send(gateway, connection, "admin:subscribe")

    asyncio.run(gateway.on_disconnect(connection))
    received = len(connection.events)
    count = asyncio.run(gateway.broadcast_status_update(delivery.id, DeliveryStatus.PICKED_UP))

    assert count == 0
    assert len(connection.events) == received
    assert broker.groups == {}
