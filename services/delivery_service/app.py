"""Delivery Service FastAPI application."""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from shared.config import Settings
from shared.events import BaseEvent, ErrorEvent, LocationPayload
from shared.message_broker import Connection, MessageBroker

from services.notification_service.notifier import SmsNotifier

from .delivery_registry import DeliveryRegistry
from .dispatcher import Dispatcher
from .driver_registry import DriverRegistry
from .gateway import LocationEventGateway
from .models import (
    Coordinate,
    Delivery,
    DeliveryCreate,
    DeliveryStatus,
    Driver,
    DriverCreate,
    DriverStatus,
    DriverUpdate,
    Route,
    TrackingUpdate,
)
from .route_optimizer import RouteOptimizer
from .tracking import TrackingLog

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response models
class DriverStatusRequest(BaseModel):
    """Request to change a driver's status."""
    status: DriverStatus
    is_available: Optional[bool] = None


class AssignDriverRequest(BaseModel):
    """Request to assign a specific driver."""
    delivery_id: str
    driver_id: str


class AssignNearestRequest(BaseModel):
    """Request to assign the closest available driver."""
    delivery_id: str


class DeliveryStatusRequest(BaseModel):
    """Request to move a delivery to a new status."""
    status: DeliveryStatus
    notes: Optional[str] = None


class TrackingInitRequest(BaseModel):
    delivery_id: str


class TrackingInitResponse(BaseModel):
    delivery_id: str
    tracking_url: str


class TrackingInfoResponse(BaseModel):
    """Delivery with its live position and history."""
    delivery: Delivery
    current_location: Optional[Coordinate] = None
    latest_update: Optional[TrackingUpdate] = None
    tracking_history: List[TrackingUpdate]
    distance_covered: float


class OptimizeRouteRequest(BaseModel):
    driver_id: str
    delivery_ids: List[str]


class EtaResponse(BaseModel):
    route_id: str
    delivery_id: str
    estimated_arrival: datetime


class PurgeRequest(BaseModel):
    cutoff_days: Optional[int] = Field(default=None, ge=0)


class PurgeResponse(BaseModel):
    removed: int


# Dependencies
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_drivers(request: Request) -> DriverRegistry:
    return request.app.state.drivers


def get_deliveries(request: Request) -> DeliveryRegistry:
    return request.app.state.deliveries


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_route_optimizer(request: Request) -> RouteOptimizer:
    return request.app.state.route_optimizer


def get_tracking(request: Request) -> TrackingLog:
    return request.app.state.tracking


def get_gateway(request: Request) -> LocationEventGateway:
    return request.app.state.gateway


# Drivers
@router.get("/drivers", response_model=List[Driver])
def list_drivers(available: bool = False, drivers: DriverRegistry = Depends(get_drivers)):
    """List drivers, optionally only available ones."""
    return drivers.list_available() if available else drivers.list_all()


@router.post("/drivers", response_model=Driver, status_code=201)
def create_driver(request: DriverCreate, drivers: DriverRegistry = Depends(get_drivers)):
    return drivers.create(request)


@router.post("/drivers/assign", response_model=Delivery)
async def assign_driver(
    request: AssignDriverRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
    gateway: LocationEventGateway = Depends(get_gateway),
):
    """Assign a driver to a delivery."""
    delivery = dispatcher.assign(request.delivery_id, request.driver_id)
    if not delivery:
        raise HTTPException(
            status_code=400,
            detail="Failed to assign driver. Driver may not be available.",
        )
    await gateway.announce_delivery_status(delivery)
    return delivery


@router.post("/drivers/assign-nearest", response_model=Delivery)
async def assign_nearest_driver(
    request: AssignNearestRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
    deliveries: DeliveryRegistry = Depends(get_deliveries),
    gateway: LocationEventGateway = Depends(get_gateway),
):
    if not deliveries.get(request.delivery_id):
        raise HTTPException(status_code=404, detail="Delivery not found")

    delivery = dispatcher.assign_nearest(request.delivery_id)
    if not delivery:
        raise HTTPException(status_code=400, detail="No available driver near the pickup point")
    await gateway.announce_delivery_status(delivery)
    return delivery


@router.get("/drivers/{driver_id}", response_model=Driver)
def get_driver(driver_id: str, drivers: DriverRegistry = Depends(get_drivers)):
    driver = drivers.get(driver_id)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.put("/drivers/{driver_id}", response_model=Driver)
def update_driver(
    driver_id: str,
    request: DriverUpdate,
    drivers: DriverRegistry = Depends(get_drivers),
):
    driver = drivers.update(driver_id, request)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.put("/drivers/{driver_id}/location", response_model=Driver)
def update_driver_location(
    driver_id: str,
    request: LocationPayload,
    drivers: DriverRegistry = Depends(get_drivers),
):
    location = Coordinate(latitude=request.latitude, longitude=request.longitude)
    driver = drivers.update_location(driver_id, location)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.put("/drivers/{driver_id}/status", response_model=Driver)
def update_driver_status(
    driver_id: str,
    request: DriverStatusRequest,
    drivers: DriverRegistry = Depends(get_drivers),
):
    driver = drivers.update_status(driver_id, request.status, request.is_available)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.get("/drivers/{driver_id}/deliveries", response_model=List[Delivery])
def get_driver_deliveries(
    driver_id: str,
    drivers: DriverRegistry = Depends(get_drivers),
    deliveries: DeliveryRegistry = Depends(get_deliveries),
):
    if not drivers.get(driver_id):
        raise HTTPException(status_code=404, detail="Driver not found")
    return deliveries.list_by_driver(driver_id)


# Deliveries
@router.get("/deliveries", response_model=List[Delivery])
def list_deliveries(
    status: Optional[DeliveryStatus] = None,
    driver_id: Optional[str] = None,
    deliveries: DeliveryRegistry = Depends(get_deliveries),
):
    """List deliveries, filtered by status or driver."""
    if status:
        return deliveries.list_by_status(status)
    if driver_id:
        return deliveries.list_by_driver(driver_id)
    return deliveries.list_all()


@router.post("/deliveries", response_model=Delivery, status_code=201)
def create_delivery(request: DeliveryCreate, deliveries: DeliveryRegistry = Depends(get_deliveries)):
    return deliveries.create(request)


@router.get("/deliveries/pending", response_model=List[Delivery])
def list_pending_deliveries(deliveries: DeliveryRegistry = Depends(get_deliveries)):
    return deliveries.list_pending()


@router.get("/deliveries/active", response_model=List[Delivery])
def list_active_deliveries(deliveries: DeliveryRegistry = Depends(get_deliveries)):
    return deliveries.list_active()


@router.post("/deliveries/track", response_model=TrackingInitResponse)
def initialize_tracking(
    request: TrackingInitRequest,
    deliveries: DeliveryRegistry = Depends(get_deliveries),
    tracking: TrackingLog = Depends(get_tracking),
):
    """Start tracking an assigned delivery."""
    if not tracking.initialize(request.delivery_id):
        raise HTTPException(
            status_code=400,
            detail="Failed to initialize tracking. Delivery may not be assigned to a driver.",
        )
    delivery = deliveries.get(request.delivery_id)
    return TrackingInitResponse(delivery_id=delivery.id, tracking_url=delivery.tracking_url)


@router.get("/deliveries/{delivery_id}", response_model=Delivery)
def get_delivery(delivery_id: str, deliveries: DeliveryRegistry = Depends(get_deliveries)):
    delivery = deliveries.get(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return delivery


@router.put("/deliveries/{delivery_id}/status", response_model=Delivery)
async def update_delivery_status(
    delivery_id: str,
    request: DeliveryStatusRequest,
    deliveries: DeliveryRegistry = Depends(get_deliveries),
    gateway: LocationEventGateway = Depends(get_gateway),
):
    """Move a delivery to a new status and notify subscribers."""
    delivery = deliveries.update_status(delivery_id, request.status, request.notes)
    if not delivery:
        if deliveries.get(delivery_id):
            raise HTTPException(status_code=400, detail="Invalid status transition")
        raise HTTPException(status_code=404, detail="Delivery not found")

    await gateway.announce_delivery_status(delivery, request.notes)
    return delivery


@router.get("/deliveries/{delivery_id}/tracking", response_model=TrackingInfoResponse)
def get_tracking_info(
    delivery_id: str,
    deliveries: DeliveryRegistry = Depends(get_deliveries),
    tracking: TrackingLog = Depends(get_tracking),
):
    delivery = deliveries.get(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")

    return TrackingInfoResponse(
        delivery=delivery,
        current_location=tracking.current_location(delivery_id),
        latest_update=tracking.latest(delivery_id),
        tracking_history=tracking.history(delivery_id),
        distance_covered=tracking.distance_covered(delivery_id),
    )


# Routes
@router.post("/routes/optimize", response_model=Route)
def optimize_route(
    request: OptimizeRouteRequest,
    optimizer: RouteOptimizer = Depends(get_route_optimizer),
):
    """Order one driver's deliveries by nearest neighbour."""
    route = optimizer.optimize_route(request.driver_id, request.delivery_ids)
    if not route:
        raise HTTPException(
            status_code=400,
            detail="Failed to optimize route. Check driver location and delivery IDs.",
        )
    return route


@router.post("/routes/generate", response_model=List[Route])
def generate_routes(optimizer: RouteOptimizer = Depends(get_route_optimizer)):
    """Split pending deliveries across available drivers."""
    return optimizer.generate_optimized_routes()


@router.get("/routes/{route_id}", response_model=Route)
def get_route(route_id: str, optimizer: RouteOptimizer = Depends(get_route_optimizer)):
    route = optimizer.get_route(route_id)
    if not route:
        raise HTTPException(status_code=404, detail="Route not found")
    return route


@router.get("/routes/{route_id}/eta/{delivery_id}", response_model=EtaResponse)
def get_route_eta(
    route_id: str,
    delivery_id: str,
    optimizer: RouteOptimizer = Depends(get_route_optimizer),
):
    eta = optimizer.calculate_eta(route_id, delivery_id)
    if eta is None:
        raise HTTPException(status_code=404, detail="Route or delivery not found")
    return EtaResponse(route_id=route_id, delivery_id=delivery_id, estimated_arrival=eta)


# Tracking maintenance
@router.post("/tracking/purge", response_model=PurgeResponse)
def purge_tracking(
    request: PurgeRequest,
    settings: Settings = Depends(get_settings),
    tracking: TrackingLog = Depends(get_tracking),
):
    cutoff_days = request.cutoff_days
    if cutoff_days is None:
        cutoff_days = settings.tracking_retention_days
    return PurgeResponse(removed=tracking.purge_older_than(cutoff_days))


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.service_name}


# Real-time channel
class WebSocketConnection(Connection):
    """Gateway connection backed by a websocket."""

    def __init__(self, websocket: WebSocket):
        super().__init__()
        self.websocket = websocket

    async def send(self, event: BaseEvent):
        await self.websocket.send_json(event.to_message())


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Bridge JSON frames ``{"event": ..., "data": {...}}`` to the gateway."""
    gateway: LocationEventGateway = websocket.app.state.gateway

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    await gateway.on_connect(connection)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                frame = None

            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await connection.send(ErrorEvent(message="Malformed message"))
                continue

            await gateway.dispatch(connection, frame["event"], frame.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.on_disconnect(connection)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the service and its components."""
    settings = settings or Settings()

    broker = MessageBroker()
    drivers = DriverRegistry()
    deliveries = DeliveryRegistry(
        drivers,
        tracking_base_path=settings.tracking_base_path,
        enforce_terminal_statuses=settings.enforce_terminal_statuses,
    )
    tracking = TrackingLog(deliveries, drivers)
    notifier = SmsNotifier(settings)
    notifier.subscribe(broker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for the application."""
        # Startup
        logger.info(f"Starting {settings.service_name}...")
        notifier.http_client = httpx.AsyncClient(timeout=settings.sms_timeout_seconds)
        logger.info(f"{settings.service_name} started successfully")

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.service_name}...")
        await notifier.http_client.aclose()
        notifier.http_client = None

    app = FastAPI(title="Delivery Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.broker = broker
    app.state.drivers = drivers
    app.state.deliveries = deliveries
    app.state.dispatcher = Dispatcher(deliveries, drivers)
    app.state.route_optimizer = RouteOptimizer(
        deliveries, drivers, average_speed_kmh=settings.average_speed_kmh
    )
    app.state.tracking = tracking
    app.state.gateway = LocationEventGateway(broker, drivers, deliveries, tracking)
    app.state.notifier = notifier
    app.include_router(router)
    return app


settings = Settings(service_name="delivery-service", service_port=8007)

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port)
