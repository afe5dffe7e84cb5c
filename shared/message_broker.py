"""In-process message broker for real-time fan-out."""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from .events import BaseEvent, EventType

logger = logging.getLogger(__name__)


class Connection:
    """
    One subscriber endpoint, such as a websocket.

    Subclasses implement `send`; a send that raises gets the connection
    dropped from every group.
    """

    def __init__(self, connection_id: Optional[str] = None):
        self.id = connection_id or str(uuid4())

    async def send(self, event: BaseEvent):
        raise NotImplementedError


class MessageBroker:
    """
    Named broadcast groups plus typed event subscriptions.

    Groups (e.g. ``delivery:<id>``, ``admin``) fan events out to
    connections. Event subscriptions call handlers for one event type.
    Publishing to nobody is not an error.
    """

    def __init__(self):
        self.groups: Dict[str, Dict[str, Connection]] = {}
        self.event_handlers: Dict[EventType, List[Callable[[BaseEvent], Awaitable[Any]]]] = {}

    def join(self, group: str, connection: Connection):
        """Add a connection to a broadcast group."""
        self.groups.setdefault(group, {})[connection.id] = connection
        logger.info(f"Connection {connection.id} joined {group}")

    def leave(self, group: str, connection: Connection):
        members = self.groups.get(group)
        if not members:
            return
        members.pop(connection.id, None)
        if not members:
            del self.groups[group]

    def disconnect(self, connection: Connection):
        """Remove a connection from every group."""
        for group in list(self.groups):
            self.leave(group, connection)
        logger.info(f"Connection {connection.id} disconnected")

    def members(self, group: str) -> List[Connection]:
        return list(self.groups.get(group, {}).values())

    async def publish(self, group: str, event: BaseEvent) -> int:
        """
        Send an event to every member of a group.

        Returns:
            Number of connections that received it
        """
        delivered = 0
        for connection in self.members(group):
            try:
                await connection.send(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Dropping connection {connection.id} after failed send: {str(e)}",
                    exc_info=True,
                )
                self.disconnect(connection)

        logger.debug(f"Published {event.event_type.value} to {group} ({delivered} recipients)")
        return delivered

    def subscribe_to_event(
        self,
        event_type: EventType,
        handler: Callable[[BaseEvent], Awaitable[Any]],
    ):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Type of event to subscribe to
            handler: Async function to handle the event
        """
        self.event_handlers.setdefault(event_type, []).append(handler)
        logger.info(f"Subscribed to {event_type.value}")

    async def publish_event(self, event: BaseEvent):
        """
        Hand an event to every handler subscribed to its type.

        Handler failures are logged and do not reach the publisher.
        """
        for handler in self.event_handlers.get(event.event_type, []):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"Error processing event {event.event_type.value} "
                    f"(id={event.event_id}): {str(e)}",
                    exc_info=True,
                )
