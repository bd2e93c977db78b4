# api_main.py
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from callserver import auth, crud, models, schemas
from callserver.database import get_db
from callserver.dependencies import message_response, room_response, user_response

logger = logging.getLogger(__name__)

router = APIRouter()


def _auth_response(message: str, user: models.User) -> schemas.AuthResponse:
    return schemas.AuthResponse(
        message=message,
        user=user_response(user),
        token=auth.create_access_token(user.id, user.username),
    )


# --- Health ---
@router.get("/health", response_model=schemas.Health)
async def health():
    return schemas.Health(
        status="OK",
        message="Video Call Server is running",
        timestamp=datetime.now(timezone.utc),
    )


# --- Auth Routes ---
@router.post("/auth/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserRegister, db: Session = Depends(get_db)):
    if not user.username or not user.email or not user.password:
        raise HTTPException(status_code=400, detail="Username, email, and password are required")
    if len(user.password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters long")
    if not 3 <= len(user.username.strip()) <= 30:
        raise HTTPException(status_code=400, detail="Username must be between 3 and 30 characters long")

    try:
        db_user = crud.create_user(db, user)
    except crud.UserAlreadyExists as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info(f"[auth] Registered user {db_user.username}")
    return _auth_response("User registered successfully", db_user)

@router.post("/auth/login", response_model=schemas.AuthResponse)
def login(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    if not credentials.email or not credentials.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = crud.authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email or password is incorrect",
            headers={"WWW-Authenticate": "Bearer"},
        )

    crud.set_user_online(db, user, True)
    return _auth_response("Login successful", user)

@router.post("/auth/logout", response_model=schemas.MessageResponse)
def logout(
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    crud.set_user_online(db, current_user, False)
    return {"message": "Logout successful"}

@router.get("/auth/me", response_model=schemas.UserEnvelope)
def read_me(current_user: models.User = Depends(auth.get_current_user)):
    return {"user": user_response(current_user)}

@router.put("/auth/preferences", response_model=schemas.UserMessageEnvelope)
def update_auth_preferences(
    update_data: schemas.PreferencesUpdate,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    user = crud.update_preferences(db, current_user, update_data)
    return {"message": "Preferences updated successfully", "user": user_response(user)}


# --- User Routes ---
# Fixed paths are declared before /users/{user_id} so they are not captured by it.
@router.get("/users/preferences", response_model=schemas.PreferencesEnvelope)
def get_preferences(current_user: models.User = Depends(auth.get_current_user)):
    return {"preferences": user_response(current_user).preferences}

@router.put("/users/preferences", response_model=schemas.UserMessageEnvelope)
def update_user_preferences(
    update_data: schemas.PreferencesUpdate,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    user = crud.update_preferences(db, current_user, update_data)
    return {"message": "Preferences updated successfully", "user": user_response(user)}

@router.put("/users/profile", response_model=schemas.UserMessageEnvelope)
def update_user_profile(
    update_data: schemas.ProfileUpdate,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    user = crud.update_profile(db, current_user, update_data)
    return {"message": "Profile updated successfully", "user": user_response(user)}

@router.get("/users/search/{query}", response_model=schemas.UserListEnvelope)
def search_users(
    query: str,
    limit: int = Query(10, ge=1, le=100),
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    if len(query.strip()) < 2:
        raise HTTPException(status_code=400, detail="Search query must be at least 2 characters long")
    users = crud.search_users(db, query, exclude_user_id=current_user.id, limit=limit)
    return {"users": [user_response(u) for u in users]}

@router.get("/users/status/online", response_model=schemas.UserListEnvelope)
def online_users(
    limit: int = Query(20, ge=1, le=100),
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    users = crud.get_online_users(db, exclude_user_id=current_user.id, limit=limit)
    return {"users": [user_response(u) for u in users]}

@router.get("/users/{user_id}", response_model=schemas.UserEnvelope)
def get_user(
    user_id: int,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="The specified user does not exist")
    return {"user": user_response(user)}


# --- Room Routes ---
@router.post("/rooms/create", response_model=schemas.RoomMessageEnvelope, status_code=status.HTTP_201_CREATED)
def create_room(
    room: schemas.RoomCreate,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    try:
        db_room = crud.create_room(db, current_user, room)
    except crud.RoomIdExhausted as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Room created successfully", "room": room_response(db_room)}

@router.post("/rooms/join/{room_id}", response_model=schemas.RoomMessageEnvelope)
def join_room(
    room_id: str,
    body: Optional[schemas.RoomJoin] = None,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    try:
        db_room = crud.join_room(db, room_id, current_user, password=body.password if body else None)
    except crud.RoomNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except crud.InvalidRoomPassword as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (crud.RoomEnded, crud.RoomFull) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Joined room successfully", "room": room_response(db_room)}

@router.post("/rooms/leave/{room_id}", response_model=schemas.MessageResponse)
def leave_room(
    room_id: str,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    try:
        crud.leave_room(db, room_id, current_user)
    except crud.RoomNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Left room successfully"}

@router.get("/rooms/user/my-rooms", response_model=schemas.RoomListEnvelope)
def my_rooms(
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    rooms = crud.get_user_rooms(db, current_user)
    return {"rooms": [room_response(r) for r in rooms]}

@router.get("/rooms/{room_id}", response_model=schemas.RoomEnvelope)
def get_room(
    room_id: str,
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    db_room = crud.get_room(db, room_id)
    if not db_room:
        raise HTTPException(status_code=404, detail="The specified room does not exist")
    return {"room": room_response(db_room)}

@router.get("/rooms/{room_id}/messages", response_model=schemas.ChatHistoryEnvelope)
def get_room_messages(
    room_id: str,
    limit: int = Query(50, ge=1, le=200),
    current_user: models.User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    db_room = crud.get_room(db, room_id)
    if not db_room:
        raise HTTPException(status_code=404, detail="The specified room does not exist")
    messages = crud.get_chat_history(db, db_room, limit=limit)
    return {"messages": [message_response(m) for m in messages]}
