# main.py
import argparse
import asyncio
import logging
import os

import requests
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder

from callpeer.rtc_peer import PeerManager
from callpeer.signaling_client import SignalingClient

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    pass


def _post(server: str, path: str, token=None, json=None) -> dict:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    response = requests.post(f"{server.rstrip('/')}/api{path}", json=json, headers=headers, timeout=15)
    if response.status_code >= 400:
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = response.text
        raise ApiError(f"{path} failed ({response.status_code}): {detail}")
    return response.json()


def login(server: str, email: str, password: str) -> dict:
    return _post(server, "/auth/login", json={"email": email, "password": password})


def create_room(server: str, token: str, name: str, password=None) -> dict:
    body = {"name": name}
    if password:
        body.update(isPrivate=True, password=password)
    return _post(server, "/rooms/create", token=token, json=body)["room"]


def join_room(server: str, token: str, room_id: str, password=None) -> dict:
    body = {"password": password} if password else None
    return _post(server, f"/rooms/join/{room_id}", token=token, json=body)["room"]


def leave_room(server: str, token: str, room_id: str) -> dict:
    return _post(server, f"/rooms/leave/{room_id}", token=token)


class CallPeer:
    """Signaling client, peer connections and local/remote media for one user."""

    def __init__(self, server: str, token: str, user_id, play=None, record_dir=None, ice_servers=None):
        self.server = server
        self.token = token
        self.player = MediaPlayer(play) if play else None
        self.record_dir = record_dir
        self.sinks = []
        self.signaling = SignalingClient(server, token, self.on_message)
        tracks = []
        if self.player:
            tracks = [t for t in (self.player.audio, self.player.video) if t is not None]
        self.peers = PeerManager(
            user_id,
            self.signaling,
            local_tracks=tracks,
            on_track=self.on_track,
            on_connection_state=self.on_connection_state,
            ice_servers=ice_servers,
        )

    async def on_message(self, data: dict):
        mtype = data.get("type")
        if mtype == "new_message":
            message = data.get("message") or {}
            sender = (message.get("sender") or {}).get("username")
            text = ((message.get("content") or {}).get("original") or {}).get("text")
            logger.info(f"[chat] {sender}: {text}")
        elif mtype == "new_subtitle":
            logger.info(f"[subtitle] {data.get('username')}: {data.get('translatedText')}")
        await self.peers.handle_message(data)

    async def on_track(self, track, peer_id: str):
        if self.record_dir:
            ext = "wav" if track.kind == "audio" else "mp4"
            sink = MediaRecorder(os.path.join(self.record_dir, f"{peer_id}-{track.kind}.{ext}"))
        else:
            sink = MediaBlackhole()
        sink.addTrack(track)
        self.sinks.append(sink)
        await sink.start()

    def on_connection_state(self, peer_id: str, state: str):
        logger.info(f"[peer] {peer_id} is {state}")

    async def run(self, room_id: str):
        async with self.signaling:
            await self.peers.join(room_id)
            try:
                await self.signaling.listen()
            finally:
                room_id = self.peers.room_id or room_id
                await self.peers.leave()
                await self.stop_sinks()
                await self.leave_room(room_id)

    async def leave_room(self, room_id: str):
        try:
            await asyncio.to_thread(leave_room, self.server, self.token, room_id)
            logger.info(f"[peer] Left room {room_id}")
        except (ApiError, requests.RequestException) as e:
            logger.warning(f"[peer] Could not leave room {room_id}: {e}")

    async def stop_sinks(self):
        for sink in self.sinks:
            await sink.stop()
        self.sinks.clear()


def main():
    parser = argparse.ArgumentParser(description="Headless video call participant")
    parser.add_argument("--server", default=None, help="Call server base URL")
    parser.add_argument("--email", default=None, help="Account email")
    parser.add_argument("--password", default=None, help="Account password")
    parser.add_argument("--room", default=None, help="Room id to join")
    parser.add_argument("--create-room", default=None, metavar="NAME", help="Create a room and join it")
    parser.add_argument("--room-password", default=None, help="Password for private rooms")
    parser.add_argument("--play", default=None, help="Media file or device to send")
    parser.add_argument("--record-dir", default=None, help="Directory for recorded remote tracks")
    parser.add_argument("--no-stun", action="store_true", help="Do not use public STUN servers")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Fallback to environment variables if not provided as args
    server = args.server or os.getenv("CALLPEER_SERVER_URL", "http://localhost:5000")
    email = args.email or os.getenv("CALLPEER_EMAIL")
    password = args.password or os.getenv("CALLPEER_PASSWORD")
    if not email or not password:
        parser.error("--email and --password (or CALLPEER_EMAIL / CALLPEER_PASSWORD) are required")
    if not args.room and not args.create_room:
        parser.error("either --room or --create-room is required")

    try:
        auth = login(server, email, password)
        token, user = auth["token"], auth["user"]
        if args.create_room:
            room = create_room(server, token, args.create_room, args.room_password)
            logger.info(f"[peer] Created room {room['roomId']}")
        else:
            room = join_room(server, token, args.room, args.room_password)
    except (ApiError, requests.RequestException) as e:
        logger.error(f"[peer] ❌ {e}")
        raise SystemExit(1)

    if args.record_dir:
        os.makedirs(args.record_dir, exist_ok=True)

    peer = CallPeer(
        server,
        token,
        user["id"],
        play=args.play,
        record_dir=args.record_dir,
        ice_servers=[] if args.no_stun else None,
    )
    logger.info(f"[peer] 🚀 {user['username']} joining room '{room['roomId']}' on {server}")
    try:
        asyncio.run(peer.run(room["roomId"]))
    except KeyboardInterrupt:
        logger.info("[peer] Shutting down.")


if __name__ == "__main__":
    main()
