from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging

from streamwatch.services.event_emitter import event_emitter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Live stream events: update, signal, sprite, added and deleted."""
    await websocket.accept()
    await websocket.send_json({
        "type": "connected",
        "message": "Connected to stream events"
    })
    event_emitter.subscribe(websocket)

    try:
        # Incoming text is only used as keep-alive
        while True:
            data = await websocket.receive_text()
            logger.debug(f"Received from client: {data}")
    except WebSocketDisconnect:
        logger.info("Client disconnected from stream events")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await event_emitter.unsubscribe(websocket)
