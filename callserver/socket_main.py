# socket_main.py
import base64
import binascii
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from callserver import auth, crud, models, translation_service
from callserver.database import get_db
from callserver.dependencies import message_response, room_response, user_response
from callserver.signaling import Connection, hub, safe_send

logger = logging.getLogger(__name__)

router = APIRouter()

RELAYED_SIGNALS = ("webrtc_offer", "webrtc_answer", "webrtc_ice_candidate")


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


async def send_error(connection: Connection, message: str):
    await safe_send(connection.websocket, {"type": "error", "message": message})


def _current_room(connection: Connection, msg: dict) -> Optional[str]:
    """The room an event refers to; it must be the connection's current room."""
    room_id = msg.get("roomId") or connection.current_room_id
    if room_id is None or room_id != connection.current_room_id:
        return None
    return room_id


# ---------- Room membership ----------

async def announce_departure(connection: Connection, room_id: str):
    logger.info(f"[socket] [Room: {room_id}] {connection.user.get('username')} left")
    # Other tabs of the same user keep them in the room
    if not hub.user_in_room(connection.user_id, room_id):
        await hub.send_to_room(room_id, {"type": "user_left", "userId": connection.user_id})


async def leave_current_room(connection: Connection, room_id: str):
    if hub.leave(connection.connection_id, room_id):
        await announce_departure(connection, room_id)


async def handle_join_room(connection: Connection, user: models.User, db: Session, msg: dict):
    room_id = msg.get("roomId")
    if not room_id:
        return await send_error(connection, "roomId is required")

    db_room = crud.get_room(db, room_id)
    if not db_room:
        logger.info(f"[socket] Room not found for roomId: {room_id}")
        return await send_error(connection, "Room not found")

    previous = connection.current_room_id
    if previous and previous != room_id:
        await leave_current_room(connection, previous)

    first_in_room = not hub.user_in_room(connection.user_id, room_id)
    hub.join(connection.connection_id, room_id)

    await safe_send(connection.websocket, {
        "type": "room_joined",
        "room": _dump(room_response(db_room)),
        "participants": hub.participants(room_id),
    })
    if first_in_room:
        await hub.send_to_room(
            room_id,
            {"type": "user_joined", "user": connection.user},
            exclude=connection.connection_id,
        )
    logger.info(f"[socket] [Room: {room_id}] {user.username} joined")


async def handle_leave_room(connection: Connection, user: models.User, db: Session, msg: dict):
    room_id = msg.get("roomId")
    if room_id:
        await leave_current_room(connection, room_id)


# ---------- Point-to-point signaling ----------

async def handle_signal(connection: Connection, user: models.User, db: Session, msg: dict):
    target = msg.get("targetUserId")
    if target is None:
        return await send_error(connection, "targetUserId is required")
    target = str(target)
    if target == connection.user_id:
        return await send_error(connection, "Cannot signal yourself")

    room_id = connection.current_room_id
    if room_id is None or not hub.user_in_room(target, room_id):
        return await send_error(connection, "Target user is not in your room")

    # Forward verbatim; only the addressing changes.
    relayed = {k: v for k, v in msg.items() if k != "targetUserId"}
    relayed["fromUserId"] = connection.user_id
    await hub.send_to_user(target, relayed, room_id=room_id)


# ---------- Room broadcasts ----------

async def handle_preferences_updated(connection: Connection, user: models.User, db: Session, msg: dict):
    room_id = _current_room(connection, msg)
    if room_id is None:
        return await send_error(connection, "You are not in this room")

    preferences = msg.get("preferences") or {}
    if not isinstance(preferences, dict):
        return await send_error(connection, "preferences must be an object")

    # Keep the registry's view in sync so translations follow the new language.
    for cid in list(hub.user_connections.get(connection.user_id, ())):
        peer = hub.get(cid)
        if peer:
            peer.user.setdefault("preferences", {}).update(preferences)

    await hub.send_to_room(
        room_id,
        {"type": "user_preferences_updated", "userId": connection.user_id, "preferences": preferences},
        exclude=connection.connection_id,
    )


def _room_languages(room_id: str) -> set:
    return {
        (p.get("preferences") or {}).get("language") or "en"
        for p in hub.participants(room_id)
    }


async def handle_send_message(connection: Connection, user: models.User, db: Session, msg: dict):
    room_id = _current_room(connection, msg)
    if room_id is None:
        return await send_error(connection, "You are not in this room")

    message = msg.get("message")
    if isinstance(message, dict):
        text = message.get("text")
        language = message.get("language")
    else:
        text, language = message, None
    if not isinstance(text, str) or not text.strip():
        return await send_error(connection, "Message text is required")
    text = text.strip()

    db_room = crud.get_room(db, room_id)
    if not db_room:
        return await send_error(connection, "Room not found")

    if not language:
        language = await translation_service.detect_language_async(text)
    db_message = crud.create_text_message(db, db_room, user, text, language)

    for target_language in sorted(_room_languages(room_id) - {language}):
        result = await translation_service.translate_text_async(text, target_language, language)
        if result:
            db_message = crud.add_translation(db, db_message, target_language, result.text, result.confidence)

    await hub.send_to_room(room_id, {"type": "new_message", "message": _dump(message_response(db_message))})


async def handle_message_reaction(connection: Connection, user: models.User, db: Session, msg: dict):
    room_id = _current_room(connection, msg)
    if room_id is None:
        return await send_error(connection, "You are not in this room")

    emoji = msg.get("emoji")
    if not isinstance(emoji, str) or not emoji.strip() or len(emoji) > 32:
        return await send_error(connection, "A valid emoji is required")

    try:
        message_id = int(msg.get("messageId"))
    except (TypeError, ValueError):
        return await send_error(connection, "messageId is required")

    db_message = crud.get_message(db, message_id)
    if not db_message or db_message.is_deleted or db_message.room.room_id != room_id:
        return await send_error(connection, "Message not found")

    db_message = crud.add_reaction(db, db_message, user, emoji.strip())
    await hub.send_to_room(room_id, {"type": "message_updated", "message": _dump(message_response(db_message))})


async def handle_audio_data(connection: Connection, user: models.User, db: Session, msg: dict):
    room_id = _current_room(connection, msg)
    if room_id is None:
        return await send_error(connection, "You are not in this room")

    db_room = crud.get_room(db, room_id)
    if not db_room:
        return await send_error(connection, "Room not found")
    if not db_room.enable_subtitles:
        return await send_error(connection, "Subtitles are disabled for this room")

    try:
        audio = base64.b64decode(msg.get("audio") or "", validate=True)
    except (binascii.Error, TypeError, ValueError):
        return await send_error(connection, "Invalid audio payload")
    if not audio:
        return await send_error(connection, "Invalid audio payload")
    audio_format = msg.get("format") or "webm"

    transcription = await translation_service.transcribe_audio_async(audio, audio_format)
    if not transcription.text or not transcription.text.strip():
        return

    db_message = crud.create_subtitle_message(
        db, db_room, user, transcription, audio_format=audio_format, audio_size=len(audio)
    )
    source = transcription.language
    timestamp = datetime.now(timezone.utc).isoformat()
    translated = {}

    for peer in hub.room_connections(room_id):
        target_language = (peer.user.get("preferences") or {}).get("language") or "en"
        if target_language not in translated:
            result = await translation_service.translate_text_async(transcription.text, target_language, source)
            translated[target_language] = result
            if result and target_language != source:
                db_message = crud.add_translation(db, db_message, target_language, result.text, result.confidence)
        result = translated[target_language]
        await safe_send(peer.websocket, {
            "type": "new_subtitle",
            "messageId": db_message.id,
            "userId": connection.user_id,
            "username": user.username,
            "text": transcription.text,
            "language": source,
            "translatedText": result.text if result else transcription.text,
            "targetLanguage": target_language,
            "timestamp": timestamp,
        })


HANDLERS = {
    "join_room": handle_join_room,
    "leave_room": handle_leave_room,
    "user_preferences_updated": handle_preferences_updated,
    "send_message": handle_send_message,
    "message_reaction": handle_message_reaction,
    "audio_data": handle_audio_data,
}
HANDLERS.update({signal: handle_signal for signal in RELAYED_SIGNALS})


# ---------- Main WebSocket endpoint ----------

@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    user = auth.authenticate_websocket_token(db, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    connection = Connection(
        connection_id=uuid.uuid4().hex,
        user_id=str(user.id),
        user=_dump(user_response(user)),
        websocket=websocket,
    )
    hub.register(connection)
    crud.set_user_online(db, user, True)
    connection.user["isOnline"] = True

    await safe_send(websocket, {
        "type": "connected",
        "connectionId": connection.connection_id,
        "user": connection.user,
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await send_error(connection, "Malformed message")
                continue
            if not isinstance(msg, dict):
                await send_error(connection, "Malformed message")
                continue

            mtype = msg.get("type")
            handler = HANDLERS.get(mtype)
            if handler is None:
                await send_error(connection, f"Unknown event: {mtype}")
                continue

            # Other sessions (REST, other sockets) may have changed rows since the last event.
            db.expire_all()
            try:
                await handler(connection, user, db, msg)
            except Exception:
                logger.exception(f"[socket] ⚠️ Error handling '{mtype}' from {user.username}")
                db.rollback()
                await send_error(connection, f"Internal server error while handling {mtype}")

    except WebSocketDisconnect:
        logger.info(f"[socket] {user.username} disconnected")

    finally:
        # Registry and presence are updated before anything is awaited.
        room_id = connection.current_room_id
        hub.unregister(connection.connection_id)
        if not hub.is_user_connected(connection.user_id):
            try:
                crud.set_user_online(db, user, False)
            except Exception:
                logger.exception(f"[socket] Failed to mark {user.username} offline")
                db.rollback()
        if room_id:
            await announce_departure(connection, room_id)
