from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from pydantic import ValidationError as SchemaValidationError
import json
import logging
from supportchat.database import get_db
from supportchat.errors import ChatError, UnauthenticatedError
from supportchat.schemas import WSClientMessage
from supportchat.services.access_guard import AccessGuard
from supportchat.services.message_service import MessageService
from supportchat.services.realtime import RealtimeHub, get_realtime_hub
from supportchat.utils.security import resolve_identity

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """
    WebSocket endpoint for conversation events.

    Connect with: ws://localhost:8000/ws?token=YOUR_JWT_TOKEN

    Client frames:
    {"type": "join", "conversation_id": 1}
    {"type": "leave", "conversation_id": 1}
    {"type": "ping"}

    Event frames:
    {"kind": "newMessage", "conversation_id": 1, "payload": {"message": {...}}}
    """
    try:
        identity = resolve_identity(db, token)
    except UnauthenticatedError as e:
        logger.warning(f"WebSocket authentication failed: {e.message}")
        await websocket.close(code=1008, reason=e.message)
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for user {identity.user_id}")

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                frame = WSClientMessage.model_validate(json.loads(raw))
            except (ValueError, SchemaValidationError):
                await websocket.send_json({"type": "error", "detail": "Invalid frame"})
                continue

            if frame.type == "ping":
                await websocket.send_json({"type": "pong"})
                continue

            if frame.conversation_id is None:
                await websocket.send_json({"type": "error", "detail": "conversation_id is required"})
                continue

            if frame.type == "leave":
                hub.unsubscribe(websocket, frame.conversation_id)
                await websocket.send_json({"type": "left", "conversation_id": frame.conversation_id})
                continue

            # join: membership is checked against current data, not the session cache
            db.expire_all()
            try:
                AccessGuard.get_conversation(db, identity, frame.conversation_id)
                hub.subscribe(websocket, frame.conversation_id, identity.user_id)
                MessageService.mark_delivered(db, identity, frame.conversation_id)
            except ChatError as e:
                await websocket.send_json({
                    "type": "error",
                    "conversation_id": frame.conversation_id,
                    "detail": e.message,
                    "error": e.code
                })
                continue
            except SQLAlchemyError as e:
                logger.error(f"Database error while joining conversation {frame.conversation_id}: {e}")
                db.rollback()
                await websocket.send_json({"type": "error", "detail": "Failed to join conversation"})
                continue

            await websocket.send_json({"type": "joined", "conversation_id": frame.conversation_id})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {identity.user_id}")
    finally:
        hub.disconnect(websocket)
