"""Multi-stop route planning."""
import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .delivery_registry import DeliveryRegistry
from .driver_registry import DriverRegistry
from .geo import haversine_distance, path_length, travel_minutes
from .models import Coordinate, Delivery, Route

logger = logging.getLogger(__name__)


class RouteOptimizer:
    """
    Orders a driver's stops with a greedy nearest-neighbour heuristic.

    From the driver's position, the closest unvisited drop-off is always
    taken next. This is O(n^2) and fast, but not an exact TSP solution.
    Routes built here are kept by id so ETAs can be computed later.
    """

    def __init__(
        self,
        deliveries: DeliveryRegistry,
        drivers: DriverRegistry,
        average_speed_kmh: float = 40.0,
    ):
        self.deliveries = deliveries
        self.drivers = drivers
        self.average_speed_kmh = average_speed_kmh
        self._routes: Dict[str, Route] = {}
        self._lock = threading.Lock()

    def optimize_route(self, driver_id: str, delivery_ids: List[str]) -> Optional[Route]:
        """
        Build a route for one driver.

        Unknown delivery ids are skipped.

        Args:
            driver_id: Driver whose current location is the start point
            delivery_ids: Deliveries to visit, in any order

        Returns:
            The new route, or None if the driver is unknown or has no
            location, or no delivery could be resolved
        """
        driver = self.drivers.get(driver_id)
        if not driver or not driver.current_location:
            logger.warning(f"Cannot optimize route: driver {driver_id} missing or has no location")
            return None

        remaining: List[Delivery] = [
            delivery for delivery in map(self.deliveries.get, delivery_ids) if delivery
        ]
        if not remaining:
            logger.warning(f"Cannot optimize route for driver {driver_id}: no deliveries resolved")
            return None

        current: Coordinate = driver.current_location
        waypoints: List[Coordinate] = [current]
        ordered: List[str] = []
        total_distance = 0.0

        while remaining:
            nearest_index = 0
            min_distance = math.inf
            for index, delivery in enumerate(remaining):
                distance = haversine_distance(current, delivery.delivery_location.coordinates)
                if distance < min_distance:
                    min_distance = distance
                    nearest_index = index

            nearest = remaining.pop(nearest_index)
            current = nearest.delivery_location.coordinates
            ordered.append(nearest.id)
            waypoints.append(current)
            total_distance += min_distance

        route = Route(
            driver_id=driver_id,
            deliveries=ordered,
            waypoints=waypoints,
            total_distance=total_distance,
            estimated_duration=travel_minutes(total_distance, self.average_speed_kmh),
        )

        with self._lock:
            self._routes[route.id] = route

        logger.info(
            f"Optimized route {route.id} for driver {driver_id}: "
            f"{len(ordered)} stops, {total_distance:.2f} km"
        )
        return route

    def generate_optimized_routes(self) -> List[Route]:
        """
        Spread all pending deliveries over all available drivers.

        Deliveries are split in list order into equal chunks, one per
        driver; only the visiting order inside a chunk is optimized.
        """
        available = self.drivers.list_available()
        pending = self.deliveries.list_pending()

        if not available or not pending:
            return []

        per_driver = math.ceil(len(pending) / len(available))
        routes: List[Route] = []

        for index, driver in enumerate(available):
            chunk = pending[index * per_driver:(index + 1) * per_driver]
            if not chunk:
                break

            route = self.optimize_route(driver.id, [delivery.id for delivery in chunk])
            if route:
                routes.append(route)

        logger.info(f"Generated {len(routes)} routes for {len(pending)} pending deliveries")
        return routes

    def get_route(self, route_id: str) -> Optional[Route]:
        return self._routes.get(route_id)

    def list_routes_by_driver(self, driver_id: str) -> List[Route]:
        with self._lock:
            return [route for route in self._routes.values() if route.driver_id == driver_id]

    def calculate_eta(
        self,
        route_id: str,
        delivery_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Arrival time at a stop, driving the route from its start."""
        route = self._routes.get(route_id)
        if not route or delivery_id not in route.deliveries:
            return None

        # waypoints[0] is the start, so stop i sits at waypoints[i + 1]
        position = route.deliveries.index(delivery_id)
        distance = path_length(route.waypoints[:position + 2])
        minutes = travel_minutes(distance, self.average_speed_kmh)

        return (now or datetime.utcnow()) + timedelta(minutes=minutes)
