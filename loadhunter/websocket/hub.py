import logging
import uuid
from typing import Dict, List

from fastapi import WebSocket

from loadhunter.core.errors import PresenceChannelFailure
from loadhunter.schemas.load_hunter import PresenceViewer
from loadhunter.services.event_dispatcher import (
    Event,
    EventDispatcher,
    Subscription,
    load_bids_topic,
    load_topic,
)
from loadhunter.services.presence import PresenceRegistry

logger = logging.getLogger(__name__)


class LoadViewConnection:
    """One open load detail view: its socket, presence session and subscriptions."""

    def __init__(self, load_id: str, email: str, name: str, websocket: WebSocket) -> None:
        self.session_id = str(uuid.uuid4())
        self.load_id = load_id
        self.email = email
        self.name = name
        self.websocket = websocket
        self.subscriptions: List[Subscription] = []

    async def send_viewers(self, viewers: List[PresenceViewer]) -> None:
        await self.websocket.send_json({
            "type": "presence_sync",
            "data": {"load_id": self.load_id, "viewers": [v.model_dump(mode="json") for v in viewers]},
        })

    async def forward(self, event: Event) -> None:
        await self.websocket.send_json({
            "type": event.type.value,
            "data": event.data,
            "timestamp": event.timestamp.isoformat(),
        })


class LoadChannelHub:
    """Tracks open load views and wires them to presence and push updates."""

    def __init__(self, presence: PresenceRegistry, events: EventDispatcher) -> None:
        self.presence = presence
        self.events = events
        self.connections: Dict[str, LoadViewConnection] = {}

    async def connect(self, load_id: str, email: str, name: str, websocket: WebSocket) -> LoadViewConnection:
        await websocket.accept()
        connection = LoadViewConnection(load_id, email, name, websocket)
        self.connections[connection.session_id] = connection

        connection.subscriptions.append(self.events.subscribe(load_topic(load_id), connection.forward))
        connection.subscriptions.append(self.events.subscribe(load_bids_topic(load_id), connection.forward))

        try:
            await self.presence.track(load_id, connection.session_id, email, name, connection.send_viewers)
        except PresenceChannelFailure as e:
            # Degrade to "no other viewers"; match and bid updates keep flowing
            logger.info(f"Presence unavailable for {email} on load {load_id}: {e}")
        return connection

    async def heartbeat(self, connection: LoadViewConnection) -> None:
        await self.presence.heartbeat(connection.load_id, connection.session_id)

    async def disconnect(self, connection: LoadViewConnection) -> None:
        # Stop pushes first; writes already sent to the store are not affected
        for subscription in connection.subscriptions:
            subscription.close()
        connection.subscriptions.clear()
        self.connections.pop(connection.session_id, None)
        await self.presence.untrack(connection.load_id, connection.session_id)

    def get_connection_count(self) -> int:
        return len(self.connections)
