"""In-memory driver records."""
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from .geo import haversine_distance
from .models import Coordinate, Driver, DriverCreate, DriverStatus, DriverUpdate

logger = logging.getLogger(__name__)


def is_dispatchable(driver: Driver) -> bool:
    """Free to take a delivery: flagged available and in AVAILABLE status."""
    return driver.is_available and driver.status == DriverStatus.AVAILABLE


class DriverRegistry:
    """
    Owns every Driver record.

    Records are replaced on each write rather than mutated, so callers can
    hold on to a returned Driver without seeing later changes. All mutations
    run under one re-entrant lock.
    """

    def __init__(self):
        self._drivers: Dict[str, Driver] = {}
        self._lock = threading.RLock()

    def create(self, data: DriverCreate) -> Driver:
        """Register a new driver. New drivers start offline and unavailable."""
        driver = Driver(**data.model_dump())
        with self._lock:
            self._drivers[driver.id] = driver
        logger.info(f"Registered driver {driver.id} ({driver.name})")
        return driver

    def get(self, driver_id: str) -> Optional[Driver]:
        return self._drivers.get(driver_id)

    def list_all(self) -> List[Driver]:
        with self._lock:
            return list(self._drivers.values())

    def list_available(self) -> List[Driver]:
        return [
            driver for driver in self.list_all()
            if is_dispatchable(driver)
        ]

    def _replace(self, driver_id: str, **changes: Any) -> Optional[Driver]:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if not driver:
                return None

            changes.pop("id", None)
            changes.pop("created_at", None)
            updated = driver.model_copy(
                update={**changes, "updated_at": datetime.utcnow()}
            )
            self._drivers[driver_id] = updated
            return updated

    def update(self, driver_id: str, changes: DriverUpdate) -> Optional[Driver]:
        """Merge the fields set on `changes` into the driver."""
        return self._replace(
            driver_id, **changes.model_dump(exclude_unset=True, exclude_none=True)
        )

    def update_location(self, driver_id: str, location: Coordinate) -> Optional[Driver]:
        return self._replace(driver_id, current_location=location)

    def update_status(
        self,
        driver_id: str,
        status: DriverStatus,
        is_available: Optional[bool] = None,
    ) -> Optional[Driver]:
        """
        Set a driver's status.

        Args:
            driver_id: Driver to update
            status: New status
            is_available: New availability flag; keeps the current one if None

        Returns:
            Updated driver, or None if unknown
        """
        with self._lock:
            driver = self._drivers.get(driver_id)
            if not driver:
                return None
            if is_available is None:
                is_available = driver.is_available
            updated = self._replace(driver_id, status=status, is_available=is_available)

        logger.info(f"Driver {driver_id} status -> {status.value} (available={is_available})")
        return updated

    def increment_completed_deliveries(self, driver_id: str) -> Optional[Driver]:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if not driver:
                return None
            return self._replace(
                driver_id, completed_deliveries=driver.completed_deliveries + 1
            )

    def claim(self, driver_id: str) -> Optional[Driver]:
        """
        Atomically take an available driver for a delivery.

        Check and update happen under the registry lock, so of several
        concurrent claims on the same driver exactly one succeeds. A failed
        claim leaves the driver untouched.
        """
        with self._lock:
            driver = self._drivers.get(driver_id)
            if not driver or not is_dispatchable(driver):
                return None
            return self.update_status(driver_id, DriverStatus.ON_DELIVERY, False)

    def release(self, driver_id: str) -> Optional[Driver]:
        """Put a driver back into the available pool."""
        return self.update_status(driver_id, DriverStatus.AVAILABLE, True)

    def find_nearest(self, location: Coordinate) -> Optional[Driver]:
        """
        Closest available driver with a known position.

        Ties go to the driver registered first.
        """
        nearest: Optional[Driver] = None
        min_distance = float("inf")

        for driver in self.list_available():
            if not driver.current_location:
                continue
            distance = haversine_distance(location, driver.current_location)
            if distance < min_distance:
                min_distance = distance
                nearest = driver

        return nearest

    def delete(self, driver_id: str) -> bool:
        with self._lock:
            return self._drivers.pop(driver_id, None) is not None
