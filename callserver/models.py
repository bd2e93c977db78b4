# models.py
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from callserver.database import Base


class RoomStatusEnum(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"


class MessageTypeEnum(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    SUBTITLE = "subtitle"
    SYSTEM = "system"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(30), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)

    # Preferences
    language = Column(String(8), default="en", nullable=False)
    deaf_mode = Column(Boolean, default=False, nullable=False)
    avatar_style = Column(String(20), default="default", nullable=False)

    # Profile
    first_name = Column(String(100), default="")
    last_name = Column(String(100), default="")
    avatar = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)

    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime(timezone=True), default=func.now())
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    hosted_rooms = relationship("Room", back_populates="host")


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(String(16), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(String(500), default="")
    host_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Settings
    max_participants = Column(Integer, default=10, nullable=False)
    is_private = Column(Boolean, default=False, nullable=False)
    password_hash = Column(String, nullable=True)
    allow_recording = Column(Boolean, default=False, nullable=False)
    enable_subtitles = Column(Boolean, default=True, nullable=False)
    enable_sign_language = Column(Boolean, default=True, nullable=False)

    status = Column(String(20), default=RoomStatusEnum.WAITING.value, nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)  # minutes

    total_messages = Column(Integer, default=0, nullable=False)
    total_translations = Column(Integer, default=0, nullable=False)
    languages_json = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    host = relationship("User", back_populates="hosted_rooms")
    participants = relationship(
        "RoomParticipant",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="RoomParticipant.id",
    )
    messages = relationship("Message", back_populates="room", cascade="all, delete-orphan")

    @property
    def active_participants_count(self) -> int:
        return sum(1 for p in self.participants if p.is_active)


class RoomParticipant(Base):
    __tablename__ = "room_participants"

    id = Column(Integer, primary_key=True, index=True)
    room_pk = Column(Integer, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), default=func.now())
    left_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    room = relationship("Room", back_populates="participants")
    user = relationship("User")


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    room_pk = Column(Integer, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), default=MessageTypeEnum.TEXT.value, nullable=False)

    original_text = Column(Text, nullable=True)
    original_language = Column(String(8), nullable=True)

    # Audio metadata, only set for audio/subtitle messages
    audio_duration = Column(Float, nullable=True)
    audio_format = Column(String(20), nullable=True)
    audio_size = Column(Integer, nullable=True)
    transcription_text = Column(Text, nullable=True)
    transcription_language = Column(String(8), nullable=True)
    transcription_confidence = Column(Float, nullable=True)

    edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    room = relationship("Room", back_populates="messages")
    sender = relationship("User")
    translations = relationship(
        "MessageTranslation",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageTranslation.id",
    )
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReaction.id",
    )


class MessageTranslation(Base):
    __tablename__ = "message_translations"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    language = Column(String(8), nullable=False)
    text = Column(Text, nullable=False)
    confidence = Column(Float, default=1.0)

    message = relationship("Message", back_populates="translations")

    __table_args__ = (
        UniqueConstraint("message_id", "language", name="uix_message_translation_language"),
    )


class MessageReaction(Base):
    __tablename__ = "message_reactions"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(String(32), nullable=False)
    timestamp = Column(DateTime(timezone=True), default=func.now())

    message = relationship("Message", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uix_message_reaction_user"),
    )
