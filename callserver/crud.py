# crud.py
import json
import logging
import random
import string
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from callserver import auth, models, schemas, translation_service
from callserver.models import MessageTypeEnum, RoomStatusEnum

logger = logging.getLogger(__name__)

ROOM_ID_CHARS = string.ascii_uppercase + string.digits
ROOM_ID_LENGTH = 8
ROOM_ID_ATTEMPTS = 10
USER_ROOMS_LIMIT = 20


# --- Domain errors (mapped to HTTP codes by the routers) ---
class UserAlreadyExists(ValueError):
    pass

class RoomNotFound(ValueError):
    pass

class RoomEnded(ValueError):
    pass

class RoomFull(ValueError):
    pass

class InvalidRoomPassword(ValueError):
    pass

class RoomIdExhausted(ValueError):
    pass


def _now():
    return datetime.now(timezone.utc)

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- User CRUD ---

def get_user(db: Session, user_id: int):
    return db.query(models.User).filter(models.User.id == user_id).first()

def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()

def get_user_by_username(db: Session, username: str):
    return db.query(models.User).filter(models.User.username == username.strip()).first()

def create_user(db: Session, user: schemas.UserRegister):
    email = user.email.strip().lower()
    username = user.username.strip()

    if get_user_by_email(db, email):
        raise UserAlreadyExists("Email is already registered")
    if get_user_by_username(db, username):
        raise UserAlreadyExists("Username is already taken")

    try:
        db_user = models.User(
            username=username,
            email=email,
            hashed_password=auth.get_password_hash(user.password),
            first_name=user.first_name or "",
            last_name=user.last_name or "",
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        return db_user
    except IntegrityError:
        db.rollback()
        raise UserAlreadyExists("User with this email or username already exists.")

def authenticate_user(db: Session, email: str, password: str):
    user = get_user_by_email(db, email)
    if not user or not auth.verify_password(password, user.hashed_password):
        return None
    return user

def set_user_online(db: Session, user: models.User, is_online: bool):
    user.is_online = is_online
    user.last_seen = _now()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def update_preferences(db: Session, user: models.User, update_data: schemas.PreferencesUpdate):
    update_dict = update_data.model_dump(exclude_none=True)

    for key, value in update_dict.items():
        setattr(user, key, value)

    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def update_profile(db: Session, user: models.User, update_data: schemas.ProfileUpdate):
    # Explicit nulls are ignored, empty strings clear the field.
    update_dict = update_data.model_dump(exclude_none=True)

    for key, value in update_dict.items():
        setattr(user, key, value)

    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def search_users(db: Session, query: str, exclude_user_id: int, limit: int = 10):
    pattern = f"%{query.strip().lower()}%"
    return db.query(models.User).filter(
        or_(
            func.lower(models.User.username).like(pattern),
            func.lower(models.User.first_name).like(pattern),
            func.lower(models.User.last_name).like(pattern),
        ),
        models.User.id != exclude_user_id,
    ).order_by(
        desc(models.User.is_online),
        desc(models.User.last_seen),
    ).limit(limit).all()

def get_online_users(db: Session, exclude_user_id: int, limit: int = 20):
    return db.query(models.User).filter(
        models.User.is_online.is_(True),
        models.User.id != exclude_user_id,
    ).order_by(desc(models.User.last_seen)).limit(limit).all()


# --- Room CRUD ---

def generate_room_id():
    """Generates a random room ID of 8 uppercase letters and digits."""
    return "".join(random.choice(ROOM_ID_CHARS) for _ in range(ROOM_ID_LENGTH))

def get_room(db: Session, room_id: str):
    return db.query(models.Room).options(
        joinedload(models.Room.host),
        joinedload(models.Room.participants).joinedload(models.RoomParticipant.user),
    ).filter(models.Room.room_id == room_id).first()

def create_room(db: Session, host: models.User, room: schemas.RoomCreate):
    name = (room.name or "").strip()
    if not name:
        raise ValueError("Room name is required")
    if len(name) > 100:
        raise ValueError("Room name must be at most 100 characters")

    room_id = None
    for _ in range(ROOM_ID_ATTEMPTS):
        candidate = generate_room_id()
        if not db.query(models.Room.id).filter(models.Room.room_id == candidate).first():
            room_id = candidate
            break
    if room_id is None:
        raise RoomIdExhausted("Unable to generate unique room ID")

    password_hash = None
    if room.is_private and room.password:
        password_hash = auth.get_password_hash(room.password)

    db_room = models.Room(
        room_id=room_id,
        name=name,
        description=(room.description or "").strip(),
        host_id=host.id,
        max_participants=room.max_participants,
        is_private=room.is_private,
        password_hash=password_hash,
        allow_recording=room.allow_recording,
        enable_subtitles=room.enable_subtitles,
        enable_sign_language=room.enable_sign_language,
    )
    # Host is the first participant
    db_room.participants.append(models.RoomParticipant(user_id=host.id, joined_at=_now(), is_active=True))

    db.add(db_room)
    db.commit()
    logger.info(f"[rooms] Room {room_id} created by {host.username}")
    return get_room(db, room_id)

def _active_participant(db_room: models.Room, user_id: int):
    for participant in db_room.participants:
        if participant.user_id == user_id and participant.is_active:
            return participant
    return None

def join_room(db: Session, room_id: str, user: models.User, password: Optional[str] = None):
    db_room = get_room(db, room_id)
    if not db_room:
        raise RoomNotFound("The specified room does not exist")
    if db_room.status == RoomStatusEnum.ENDED.value:
        raise RoomEnded("This room has already ended")
    if db_room.is_private and db_room.password_hash and not auth.verify_password(password, db_room.password_hash):
        raise InvalidRoomPassword("Incorrect room password")

    if not _active_participant(db_room, user.id):
        if db_room.active_participants_count >= db_room.max_participants:
            raise RoomFull("This room has reached its maximum capacity")
        db_room.participants.append(models.RoomParticipant(user_id=user.id, joined_at=_now(), is_active=True))

    if db_room.status == RoomStatusEnum.WAITING.value:
        db_room.status = RoomStatusEnum.ACTIVE.value
        db_room.started_at = _now()

    db.add(db_room)
    db.commit()
    db.expire_all()
    return get_room(db, room_id)

def leave_room(db: Session, room_id: str, user: models.User):
    db_room = get_room(db, room_id)
    if not db_room:
        raise RoomNotFound("The specified room does not exist")

    participant = _active_participant(db_room, user.id)
    if participant:
        participant.is_active = False
        participant.left_at = _now()

    if db_room.active_participants_count == 0 and db_room.status != RoomStatusEnum.ENDED.value:
        ended_at = _now()
        db_room.status = RoomStatusEnum.ENDED.value
        db_room.ended_at = ended_at
        if db_room.started_at:
            elapsed = ended_at - _as_utc(db_room.started_at)
            db_room.duration = round(elapsed.total_seconds() / 60)
        logger.info(f"[rooms] Room {room_id} ended after {db_room.duration or 0} min")

    db.add(db_room)
    db.commit()
    return db_room

def get_user_rooms(db: Session, user: models.User, limit: int = USER_ROOMS_LIMIT):
    participated = db.query(models.RoomParticipant.room_pk).filter(models.RoomParticipant.user_id == user.id)
    return db.query(models.Room).options(
        joinedload(models.Room.host),
        joinedload(models.Room.participants).joinedload(models.RoomParticipant.user),
    ).filter(
        or_(models.Room.host_id == user.id, models.Room.id.in_(participated))
    ).order_by(desc(models.Room.created_at), desc(models.Room.id)).limit(limit).all()

def room_languages(db_room: models.Room) -> List[str]:
    if not db_room.languages_json:
        return []
    try:
        return json.loads(db_room.languages_json)
    except json.JSONDecodeError:
        return []

def _record_language(db_room: models.Room, language: Optional[str]):
    if not language or language == "auto":
        return
    languages = room_languages(db_room)
    if language not in languages:
        languages.append(language)
        db_room.languages_json = json.dumps(languages)


# --- Message CRUD ---

def get_message(db: Session, message_id: int):
    return db.query(models.Message).options(
        joinedload(models.Message.sender),
        joinedload(models.Message.room),
        joinedload(models.Message.translations),
        joinedload(models.Message.reactions),
    ).filter(models.Message.id == message_id).first()

def create_text_message(db: Session, db_room: models.Room, sender: models.User, text: str, language: Optional[str] = None):
    if language is None:
        language = translation_service.detect_language(text)

    db_message = models.Message(
        room_pk=db_room.id,
        sender_id=sender.id,
        type=MessageTypeEnum.TEXT.value,
        original_text=text,
        original_language=language,
    )
    db_room.total_messages = (db_room.total_messages or 0) + 1
    _record_language(db_room, language)

    db.add(db_message)
    db.add(db_room)
    db.commit()
    return get_message(db, db_message.id)

def create_subtitle_message(
    db: Session,
    db_room: models.Room,
    sender: models.User,
    transcription: schemas.TranscriptionResult,
    audio_format: Optional[str] = None,
    audio_size: Optional[int] = None,
):
    db_message = models.Message(
        room_pk=db_room.id,
        sender_id=sender.id,
        type=MessageTypeEnum.SUBTITLE.value,
        original_text=transcription.text,
        original_language=transcription.language,
        audio_duration=transcription.duration,
        audio_format=audio_format,
        audio_size=audio_size,
        transcription_text=transcription.text,
        transcription_language=transcription.language,
        transcription_confidence=transcription.confidence,
    )
    db_room.total_messages = (db_room.total_messages or 0) + 1
    _record_language(db_room, transcription.language)

    db.add(db_message)
    db.add(db_room)
    db.commit()
    return get_message(db, db_message.id)

def get_translation(db_message: models.Message, language: str):
    for translation in db_message.translations:
        if translation.language == language:
            return translation
    return None

def add_translation(db: Session, db_message: models.Message, language: str, text: str, confidence: float = 1.0):
    existing = get_translation(db_message, language)
    if existing:
        existing.text = text
        existing.confidence = confidence
    else:
        db_message.translations.append(
            models.MessageTranslation(language=language, text=text, confidence=confidence)
        )
        db_message.room.total_translations = (db_message.room.total_translations or 0) + 1

    db.add(db_message)
    db.commit()
    db.refresh(db_message)
    return db_message

def add_reaction(db: Session, db_message: models.Message, user: models.User, emoji: str):
    for reaction in db_message.reactions:
        if reaction.user_id == user.id:
            reaction.emoji = emoji
            reaction.timestamp = _now()
            break
    else:
        db_message.reactions.append(models.MessageReaction(user_id=user.id, emoji=emoji, timestamp=_now()))

    db.add(db_message)
    db.commit()
    db.refresh(db_message)
    return db_message

def get_chat_history(db: Session, db_room: models.Room, limit: int = 50) -> List[models.Message]:
    db_messages = db.query(models.Message).options(
        joinedload(models.Message.sender),
        joinedload(models.Message.room),
        joinedload(models.Message.translations),
        joinedload(models.Message.reactions),
    ).filter(
        models.Message.room_pk == db_room.id,
        models.Message.is_deleted.is_(False),
    ).order_by(desc(models.Message.created_at), desc(models.Message.id)).limit(limit).all()

    return list(reversed(db_messages))
