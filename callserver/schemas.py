# schemas.py
from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional, Dict, Any
from datetime import datetime

LANGUAGE_PATTERN = "^(en|es|fr|de|it|pt|ru|zh|ja|ko|hi|ta|ar)$"
AVATAR_STYLE_PATTERN = "^(default|animated|realistic)$"


# --- User Schemas ---
class UserPreferences(BaseModel):
    language: str = "en"
    deaf_mode: bool = Field(False, alias="deafMode")
    avatar_style: str = Field("default", alias="avatarStyle")

    class Config:
        populate_by_name = True


class UserProfile(BaseModel):
    first_name: Optional[str] = Field("", alias="firstName")
    last_name: Optional[str] = Field("", alias="lastName")
    avatar: Optional[str] = None
    bio: Optional[str] = None

    class Config:
        populate_by_name = True


class User(BaseModel):
    id: int
    username: str
    email: EmailStr
    preferences: UserPreferences
    profile: UserProfile
    is_online: bool = Field(False, alias="isOnline")
    last_seen: Optional[datetime] = Field(None, alias="lastSeen")
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    class Config:
        populate_by_name = True


class UserRegister(BaseModel):
    # Presence is checked by the route so missing fields answer 400, not 422.
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")

    class Config:
        populate_by_name = True


class UserLogin(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class PreferencesUpdate(BaseModel):
    language: Optional[str] = Field(None, pattern=LANGUAGE_PATTERN)
    deaf_mode: Optional[bool] = Field(None, alias="deafMode")
    avatar_style: Optional[str] = Field(None, alias="avatarStyle", pattern=AVATAR_STYLE_PATTERN)

    class Config:
        populate_by_name = True


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=100)
    bio: Optional[str] = Field(None, max_length=500)

    class Config:
        populate_by_name = True


class AuthResponse(BaseModel):
    message: str
    user: User
    token: str


class UserEnvelope(BaseModel):
    user: User


class UserListEnvelope(BaseModel):
    users: List[User]


class UserMessageEnvelope(BaseModel):
    message: str
    user: User


class PreferencesEnvelope(BaseModel):
    preferences: UserPreferences


class MessageResponse(BaseModel):
    message: str


# --- Room Schemas ---
class RoomCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    max_participants: int = Field(10, alias="maxParticipants", ge=2, le=50)
    is_private: bool = Field(False, alias="isPrivate")
    password: Optional[str] = None
    allow_recording: bool = Field(False, alias="allowRecording")
    enable_subtitles: bool = Field(True, alias="enableSubtitles")
    enable_sign_language: bool = Field(True, alias="enableSignLanguage")

    class Config:
        populate_by_name = True


class RoomJoin(BaseModel):
    password: Optional[str] = None


class RoomSettings(BaseModel):
    max_participants: int = Field(10, alias="maxParticipants")
    is_private: bool = Field(False, alias="isPrivate")
    allow_recording: bool = Field(False, alias="allowRecording")
    enable_subtitles: bool = Field(True, alias="enableSubtitles")
    enable_sign_language: bool = Field(True, alias="enableSignLanguage")

    class Config:
        populate_by_name = True


class RoomMetadata(BaseModel):
    total_messages: int = Field(0, alias="totalMessages")
    total_translations: int = Field(0, alias="totalTranslations")
    languages: List[str] = []

    class Config:
        populate_by_name = True


class RoomParticipant(BaseModel):
    user: User
    joined_at: Optional[datetime] = Field(None, alias="joinedAt")
    left_at: Optional[datetime] = Field(None, alias="leftAt")
    is_active: bool = Field(True, alias="isActive")

    class Config:
        populate_by_name = True


class Room(BaseModel):
    id: int
    room_id: str = Field(alias="roomId")
    name: str
    description: Optional[str] = ""
    host: User
    participants: List[RoomParticipant] = []
    settings: RoomSettings
    status: str
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    ended_at: Optional[datetime] = Field(None, alias="endedAt")
    duration: Optional[int] = None
    metadata: RoomMetadata
    active_participants_count: int = Field(0, alias="activeParticipantsCount")
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    class Config:
        populate_by_name = True


class RoomEnvelope(BaseModel):
    room: Room


class RoomMessageEnvelope(BaseModel):
    message: str
    room: Room


class RoomListEnvelope(BaseModel):
    rooms: List[Room]


# --- Chat Message Schemas ---
class SenderSummary(BaseModel):
    id: int
    username: str


class MessageText(BaseModel):
    text: Optional[str] = None
    language: Optional[str] = None


class MessageTranslation(BaseModel):
    language: str
    text: str
    confidence: float = 1.0

    class Config:
        from_attributes = True


class MessageContent(BaseModel):
    original: MessageText
    translations: List[MessageTranslation] = []


class Transcription(BaseModel):
    text: Optional[str] = None
    language: Optional[str] = None
    confidence: Optional[float] = None


class AudioData(BaseModel):
    duration: Optional[float] = None
    format: Optional[str] = None
    size: Optional[int] = None
    transcription: Transcription


class Reaction(BaseModel):
    user_id: int = Field(alias="userId")
    emoji: str
    timestamp: Optional[datetime] = None

    class Config:
        populate_by_name = True


class MessageMetadata(BaseModel):
    timestamp: Optional[datetime] = None
    edited: bool = False
    edited_at: Optional[datetime] = Field(None, alias="editedAt")
    reactions: List[Reaction] = []

    class Config:
        populate_by_name = True


class ChatMessage(BaseModel):
    id: int
    room_id: str = Field(alias="roomId")
    sender: SenderSummary
    type: str
    content: MessageContent
    audio_data: Optional[AudioData] = Field(None, alias="audioData")
    metadata: MessageMetadata

    class Config:
        populate_by_name = True


class ChatHistoryEnvelope(BaseModel):
    messages: List[ChatMessage]


# --- Translation ---
class TranslationResult(BaseModel):
    text: str
    confidence: float
    source_language: str = Field(alias="sourceLanguage")
    target_language: str = Field(alias="targetLanguage")
    provider: Optional[str] = None

    class Config:
        populate_by_name = True


class TranscriptionResult(BaseModel):
    text: str
    language: str = "auto"
    confidence: float = 0.9
    duration: float = 0
    segments: List[Dict[str, Any]] = []


# --- Misc ---
class Health(BaseModel):
    status: str
    message: str
    timestamp: datetime
