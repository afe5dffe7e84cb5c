"""Shared configuration."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Base settings for all services."""

    # Service info
    service_name: str = "delivery-service"
    service_port: int = 8000
    public_base_url: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # Dispatch and routing
    average_speed_kmh: float = 40.0
    enforce_terminal_statuses: bool = True

    # Tracking
    tracking_base_path: str = "/track"
    tracking_retention_days: int = 30

    # SMS gateway
    sms_gateway_url: str = "https://api.sms-gateway.zw/send"
    sms_api_key: Optional[str] = None
    sms_sender_id: str = "FreshRoute"
    sms_timeout_seconds: float = 10.0

    def tracking_link(self, delivery_id: str) -> str:
        """Public tracking link sent to customers."""
        return f"{self.public_base_url.rstrip('/')}{self.tracking_base_path}/{delivery_id}"

    class Config:
        env_file = ".env"
        case_sensitive = False
