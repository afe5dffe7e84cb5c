"""In-memory delivery records and their status side effects."""
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .driver_registry import DriverRegistry
from .models import (
    ACTIVE_STATUSES,
    DELIVERY_STATUS_TRANSITIONS,
    Delivery,
    DeliveryCreate,
    DeliveryStatus,
)

logger = logging.getLogger(__name__)


class DeliveryRegistry:
    """
    Owns every Delivery record.

    Status changes that end a delivery hand the driver back to the
    DriverRegistry. Lock order is always this registry first, then the
    driver registry.
    """

    def __init__(
        self,
        drivers: DriverRegistry,
        tracking_base_path: str = "/track",
        enforce_terminal_statuses: bool = True,
    ):
        self.drivers = drivers
        self.tracking_base_path = tracking_base_path.rstrip("/")
        self.enforce_terminal_statuses = enforce_terminal_statuses
        self._deliveries: Dict[str, Delivery] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def create(self, data: DeliveryCreate) -> Delivery:
        """Create a pending delivery with a fresh tracking URL."""
        delivery = Delivery(
            **data.model_dump(),
            tracking_url=f"{self.tracking_base_path}/{uuid4()}",
        )
        with self._lock:
            self._deliveries[delivery.id] = delivery
        logger.info(f"Created delivery {delivery.id} for order {delivery.order_id}")
        return delivery

    def get(self, delivery_id: str) -> Optional[Delivery]:
        return self._deliveries.get(delivery_id)

    def list_all(self) -> List[Delivery]:
        with self._lock:
            return list(self._deliveries.values())

    def list_by_driver(self, driver_id: str) -> List[Delivery]:
        return [d for d in self.list_all() if d.driver_id == driver_id]

    def list_by_status(self, status: DeliveryStatus) -> List[Delivery]:
        return [d for d in self.list_all() if d.status == status]

    def list_pending(self) -> List[Delivery]:
        return self.list_by_status(DeliveryStatus.PENDING)

    def list_active(self) -> List[Delivery]:
        return [d for d in self.list_all() if d.status in ACTIVE_STATUSES]

    def _replace(self, delivery_id: str, **changes: Any) -> Optional[Delivery]:
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if not delivery:
                return None
            updated = delivery.model_copy(
                update={**changes, "updated_at": datetime.utcnow()}
            )
            self._deliveries[delivery_id] = updated
            return updated

    def can_transition(self, delivery: Delivery, status: DeliveryStatus) -> bool:
        """Whether `delivery` may move to `status`."""
        if status == DeliveryStatus.ASSIGNED and not delivery.driver_id:
            return False
        if not self.enforce_terminal_statuses:
            return True
        return status in DELIVERY_STATUS_TRANSITIONS[delivery.status]

    def update_status(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        notes: Optional[str] = None,
    ) -> Optional[Delivery]:
        """
        Move a delivery to a new status.

        Delivered, failed and cancelled deliveries get a completion time and
        release their driver; only a delivered one counts towards the
        driver's completed total.

        Args:
            delivery_id: Delivery to update
            status: Target status
            notes: Replacement notes; existing notes are kept if None

        Returns:
            Updated delivery, or None if unknown or the transition is not allowed
        """
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if not delivery:
                return None

            if not self.can_transition(delivery, status):
                logger.warning(
                    f"Rejected status change for delivery {delivery_id}: "
                    f"{delivery.status.value} -> {status.value}"
                )
                return None

            now = datetime.utcnow()
            changes: Dict[str, Any] = {
                "status": status,
                "notes": notes if notes is not None else delivery.notes,
            }

            if status == DeliveryStatus.DELIVERED:
                changes["completed_at"] = now
                changes["actual_arrival"] = now
                if delivery.driver_id:
                    self.drivers.increment_completed_deliveries(delivery.driver_id)
                    self.drivers.release(delivery.driver_id)

            elif status in (DeliveryStatus.FAILED, DeliveryStatus.CANCELLED):
                changes["completed_at"] = now
                if delivery.driver_id:
                    self.drivers.release(delivery.driver_id)

            updated = self._replace(delivery_id, **changes)

        logger.info(f"Delivery {delivery_id} status -> {status.value}")
        return updated

    def attach_driver(self, delivery_id: str, driver_id: str) -> Optional[Delivery]:
        """Record an assignment. Driver availability is the caller's concern."""
        return self._replace(
            delivery_id,
            driver_id=driver_id,
            status=DeliveryStatus.ASSIGNED,
            assigned_at=datetime.utcnow(),
        )

    def update_estimated_arrival(
        self, delivery_id: str, estimated_arrival: datetime
    ) -> Optional[Delivery]:
        return self._replace(delivery_id, estimated_arrival=estimated_arrival)

    def delete(self, delivery_id: str) -> bool:
        with self._lock:
            return self._deliveries.pop(delivery_id, None) is not None
