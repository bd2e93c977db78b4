# dependencies.py
from callserver import crud, models, schemas


# Response builders shared by the REST routers and the signaling endpoint.

def user_response(user: models.User) -> schemas.User:
    return schemas.User(
        id=user.id,
        username=user.username,
        email=user.email,
        preferences=schemas.UserPreferences(
            language=user.language,
            deaf_mode=user.deaf_mode,
            avatar_style=user.avatar_style,
        ),
        profile=schemas.UserProfile(
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            bio=user.bio,
        ),
        is_online=user.is_online,
        last_seen=user.last_seen,
        created_at=user.created_at,
    )


def room_response(room: models.Room) -> schemas.Room:
    return schemas.Room(
        id=room.id,
        room_id=room.room_id,
        name=room.name,
        description=room.description,
        host=user_response(room.host),
        participants=[
            schemas.RoomParticipant(
                user=user_response(p.user),
                joined_at=p.joined_at,
                left_at=p.left_at,
                is_active=p.is_active,
            )
            for p in room.participants
        ],
        settings=schemas.RoomSettings(
            max_participants=room.max_participants,
            is_private=room.is_private,
            allow_recording=room.allow_recording,
            enable_subtitles=room.enable_subtitles,
            enable_sign_language=room.enable_sign_language,
        ),
        status=room.status,
        started_at=room.started_at,
        ended_at=room.ended_at,
        duration=room.duration,
        metadata=schemas.RoomMetadata(
            total_messages=room.total_messages or 0,
            total_translations=room.total_translations or 0,
            languages=crud.room_languages(room),
        ),
        active_participants_count=room.active_participants_count,
        created_at=room.created_at,
    )


def message_response(message: models.Message) -> schemas.ChatMessage:
    audio_data = None
    if message.transcription_text is not None or message.audio_format:
        audio_data = schemas.AudioData(
            duration=message.audio_duration,
            format=message.audio_format,
            size=message.audio_size,
            transcription=schemas.Transcription(
                text=message.transcription_text,
                language=message.transcription_language,
                confidence=message.transcription_confidence,
            ),
        )

    return schemas.ChatMessage(
        id=message.id,
        room_id=message.room.room_id,
        sender=schemas.SenderSummary(id=message.sender.id, username=message.sender.username),
        type=message.type,
        content=schemas.MessageContent(
            original=schemas.MessageText(text=message.original_text, language=message.original_language),
            translations=[schemas.MessageTranslation.model_validate(t) for t in message.translations],
        ),
        audio_data=audio_data,
        metadata=schemas.MessageMetadata(
            timestamp=message.created_at,
            edited=message.edited,
            edited_at=message.edited_at,
            reactions=[
                schemas.Reaction(user_id=r.user_id, emoji=r.emoji, timestamp=r.timestamp)
                for r in message.reactions
            ],
        ),
    )
