"""
Live stream WebSocket route.

``/stream?resource=<resource id>&api_key=<key>`` sends a snapshot of the
resource, then one message per content change. The client ends the
subscription by sending ``{"type": "unsubscribe"}`` or closing the socket.
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from jsonoracle.container import ServiceContainer
from jsonoracle.exceptions import (
    AuthError,
    IntegrationSuspendedError,
    JsonOracleError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])

# Application close codes (4000-4999), mirroring the HTTP statuses
CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404
CLOSE_INVALID = 4422


def close_code_for(error: JsonOracleError) -> int:
    if isinstance(error, IntegrationSuspendedError):
        return CLOSE_FORBIDDEN
    if isinstance(error, AuthError):
        return CLOSE_UNAUTHORIZED
    if isinstance(error, NotFoundError):
        return CLOSE_NOT_FOUND
    if isinstance(error, ValidationError):
        return CLOSE_INVALID
    return CLOSE_FORBIDDEN


@router.websocket("/stream")
async def stream(
    websocket: WebSocket,
    resource: str = Query(..., description="Resource id, e.g. analysis:<uuid> or file:<path>"),
    api_key: Optional[str] = Query(None),
) -> None:
    container: ServiceContainer = websocket.app.state.container

    try:
        await asyncio.to_thread(container.service.authorize_stream, api_key, resource)
    except JsonOracleError as e:
        logger.info(f"Rejected stream subscription to {resource}: {e}")
        await websocket.close(code=close_code_for(e), reason=str(e))
        return

    await websocket.accept()
    try:
        subscription_id = await container.streamer.subscribe(resource, websocket)
    except (ValidationError, NotFoundError) as e:
        await websocket.send_json({"type": "error", "error": str(e)})
        await websocket.close(code=close_code_for(e))
        return

    unsubscribed = False
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "unsubscribe":
                unsubscribed = True
                break
    except WebSocketDisconnect:
        logger.debug(f"Stream client for {resource} disconnected")
    finally:
        await container.streamer.unsubscribe(subscription_id)

    if unsubscribed:
        await websocket.close()
