"""Binding drivers to deliveries."""
import logging
from typing import Optional

from .delivery_registry import DeliveryRegistry
from .driver_registry import DriverRegistry
from .models import ACTIVE_STATUSES, Delivery

logger = logging.getLogger(__name__)


class Dispatcher:
    """Assigns drivers to deliveries. Holds no state of its own."""

    def __init__(self, deliveries: DeliveryRegistry, drivers: DriverRegistry):
        self.deliveries = deliveries
        self.drivers = drivers

    def assign(self, delivery_id: str, driver_id: str) -> Optional[Delivery]:
        """
        Assign a driver to a delivery.

        Fails without touching either record if the delivery or driver is
        unknown, the driver is not available, or the delivery is already
        underway with a driver or finished.

        Args:
            delivery_id: Delivery to dispatch
            driver_id: Driver to send

        Returns:
            The assigned delivery, or None on failure
        """
        with self.deliveries.lock:
            delivery = self.deliveries.get(delivery_id)
            if not delivery:
                logger.warning(f"Cannot assign: delivery {delivery_id} not found")
                return None
            if delivery.is_terminal and self.deliveries.enforce_terminal_statuses:
                logger.warning(
                    f"Cannot assign: delivery {delivery_id} is already {delivery.status.value}"
                )
                return None
            if delivery.driver_id and delivery.status in ACTIVE_STATUSES:
                logger.warning(
                    f"Cannot assign: delivery {delivery_id} is already with driver {delivery.driver_id}"
                )
                return None

            if not self.drivers.claim(driver_id):
                logger.warning(f"Cannot assign: driver {driver_id} missing or unavailable")
                return None

            assigned = self.deliveries.attach_driver(delivery_id, driver_id)

        logger.info(f"Assigned driver {driver_id} to delivery {delivery_id}")
        return assigned

    def assign_nearest(self, delivery_id: str) -> Optional[Delivery]:
        """Assign the available driver closest to the pickup point."""
        delivery = self.deliveries.get(delivery_id)
        if not delivery:
            return None

        driver = self.drivers.find_nearest(delivery.pickup_location.coordinates)
        if not driver:
            logger.warning(f"No available driver with a known location for delivery {delivery_id}")
            return None

        return self.assign(delivery_id, driver.id)
