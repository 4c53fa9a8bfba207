"""WebSocket endpoint for a dispatcher's open load detail view."""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from loadhunter.core.config import get_settings
from loadhunter.services.event_dispatcher import get_dispatcher
from loadhunter.services.presence import PresenceRegistry
from loadhunter.websocket.hub import LoadChannelHub

router = APIRouter()
logger = logging.getLogger(__name__)

presence_registry = PresenceRegistry(ttl_seconds=get_settings().presence_ttl_seconds)
load_hub = LoadChannelHub(presence_registry, get_dispatcher())


@router.websocket("/ws/loads/{load_id}")
async def load_view_socket(
    websocket: WebSocket,
    load_id: str,
    email: str = Query(...),
    name: Optional[str] = Query(None),
):
    """
    Live channel for one load detail view.

    Server -> Client:
    - presence_sync: other dispatchers currently viewing this load
    - match.updated: a match on this load changed status
    - load_bid.created: a bid was recorded; carries the current warning banner

    Client -> Server:
    - ping: keep-alive, refreshes presence
    """
    connection = await load_hub.connect(load_id, email, name or email, websocket)
    try:
        while True:
            data = await websocket.receive_json()
            if data.get("type") == "ping":
                await load_hub.heartbeat(connection)
                await websocket.send_json({"type": "pong"})
            else:
                logger.warning(f"Unknown message type from {email}: {data.get('type')}")
    except WebSocketDisconnect:
        logger.info(f"Load view closed - {email} on load {load_id}")
    except Exception as e:
        logger.error(f"WebSocket error - {email} on load {load_id}: {e}", exc_info=True)
    finally:
        await load_hub.disconnect(connection)
