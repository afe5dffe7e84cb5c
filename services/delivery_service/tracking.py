"""Per-delivery location/status history."""
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .delivery_registry import DeliveryRegistry
from .driver_registry import DriverRegistry
from .geo import path_length
from .models import Coordinate, DeliveryStatus, TrackingUpdate

logger = logging.getLogger(__name__)


class TrackingLog:
    """
    Append-only tracking events keyed by delivery id.

    The log never reorders or drops entries; insertion order is
    chronological order. Deliveries and drivers are looked up through the
    registries, not owned here.
    """

    def __init__(self, deliveries: DeliveryRegistry, drivers: DriverRegistry):
        self.deliveries = deliveries
        self.drivers = drivers
        self._updates: Dict[str, List[TrackingUpdate]] = {}
        self._lock = threading.Lock()

    def initialize(self, delivery_id: str) -> bool:
        """Start tracking a delivery. Requires an assigned driver."""
        delivery = self.deliveries.get(delivery_id)
        if not delivery or not delivery.driver_id:
            return False

        with self._lock:
            self._updates.setdefault(delivery_id, [])
        logger.info(f"Tracking initialized for delivery {delivery_id}")
        return True

    def append(
        self,
        delivery_id: str,
        driver_id: str,
        location: Coordinate,
        status: DeliveryStatus,
        estimated_arrival: Optional[datetime] = None,
    ) -> TrackingUpdate:
        """Record an observation and move the driver to `location`."""
        update = TrackingUpdate(
            delivery_id=delivery_id,
            driver_id=driver_id,
            location=location,
            status=status,
            estimated_arrival=estimated_arrival,
        )

        with self._lock:
            self._updates.setdefault(delivery_id, []).append(update)

        self.drivers.update_location(driver_id, location)
        return update

    def history(self, delivery_id: str) -> List[TrackingUpdate]:
        with self._lock:
            return list(self._updates.get(delivery_id, []))

    def latest(self, delivery_id: str) -> Optional[TrackingUpdate]:
        with self._lock:
            updates = self._updates.get(delivery_id)
            return updates[-1] if updates else None

    def current_location(self, delivery_id: str) -> Optional[Coordinate]:
        """Live position of the assigned driver, whatever the log says."""
        delivery = self.deliveries.get(delivery_id)
        if not delivery or not delivery.driver_id:
            return None

        driver = self.drivers.get(delivery.driver_id)
        return driver.current_location if driver else None

    def distance_covered(self, delivery_id: str) -> float:
        """Kilometres between consecutive logged locations."""
        return path_length([update.location for update in self.history(delivery_id)])

    def active_sessions(self) -> List[str]:
        return [delivery.id for delivery in self.deliveries.list_active()]

    def purge_older_than(self, cutoff_days: int = 30, now: Optional[datetime] = None) -> int:
        """
        Drop history for deliveries completed before the cutoff.

        Returns:
            Number of delivery logs removed
        """
        cutoff = (now or datetime.utcnow()) - timedelta(days=cutoff_days)
        removed = 0

        with self._lock:
            for delivery_id in list(self._updates):
                delivery = self.deliveries.get(delivery_id)
                if delivery and delivery.completed_at and delivery.completed_at < cutoff:
                    del self._updates[delivery_id]
                    removed += 1

        if removed:
            logger.info(f"Purged tracking data for {removed} deliveries")
        return removed
