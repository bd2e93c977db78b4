# rtc_peer.py
import asyncio
import inspect
import logging
from typing import Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

logger = logging.getLogger(__name__)

DEFAULT_ICE_SERVERS = ["stun:stun.l.google.com:19302", "stun:stun1.l.google.com:19302"]


def parse_ice_candidate(payload: dict):
    """Build an aiortc candidate from a browser-style candidate dict.

    Returns None for end-of-candidates markers (empty candidate string).
    """
    if not payload or not payload.get("candidate"):
        return None
    sdp = payload["candidate"]
    if sdp.startswith("candidate:"):
        sdp = sdp[len("candidate:"):]
    ice = candidate_from_sdp(sdp)
    ice.sdpMid = payload.get("sdpMid")
    ice.sdpMLineIndex = payload.get("sdpMLineIndex")
    return ice


def describe(description) -> dict:
    return {"type": description.type, "sdp": description.sdp}


class PeerManager:
    """Keeps one RTCPeerConnection per remote participant of the current room.

    The participant whose user id sorts lower sends the offer, so two peers
    never both start a negotiation for the same pair.
    """

    def __init__(
        self,
        user_id,
        signaling,
        local_tracks=None,
        on_track=None,
        on_connection_state=None,
        ice_servers=None,
        pc_factory=None,
    ):
        self.user_id = str(user_id)
        self.signaling = signaling
        self.local_tracks = list(local_tracks or [])
        self.on_track_callback = on_track
        self.on_connection_state = on_connection_state
        self.ice_servers = DEFAULT_ICE_SERVERS if ice_servers is None else ice_servers
        self._pc_factory = pc_factory or self._default_pc_factory

        self.room_id: Optional[str] = None
        self.participants: Dict[str, dict] = {}
        self.peers: Dict[str, RTCPeerConnection] = {}
        self.connection_states: Dict[str, str] = {}
        self.remote_tracks: Dict[str, List] = {}
        self.pending_candidates: Dict[str, List[dict]] = {}
        self.state_lock = asyncio.Lock()

    def _default_pc_factory(self) -> RTCPeerConnection:
        servers = [RTCIceServer(urls=url) for url in self.ice_servers]
        return RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))

    def is_initiator(self, peer_id: str) -> bool:
        return self.user_id < str(peer_id)

    # ---------- Room lifecycle ----------

    async def join(self, room_id: str):
        await self.signaling.emit("join_room", roomId=room_id)

    async def leave(self):
        if self.room_id:
            await self.signaling.emit("leave_room", roomId=self.room_id)
        async with self.state_lock:
            for peer_id in list(self.peers):
                await self._close_peer(peer_id)
            self.participants.clear()
            self.room_id = None

    async def close(self):
        async with self.state_lock:
            for peer_id in list(self.peers):
                await self._close_peer(peer_id)

    async def handle_message(self, data: dict):
        """Entry point for every signaling event."""
        mtype = data.get("type")
        if mtype == "connected":
            user = data.get("user") or {}
            if user.get("id") is not None:
                self.user_id = str(user["id"])
        elif mtype == "room_joined":
            self.room_id = (data.get("room") or {}).get("roomId")
            self.participants = {str(p["id"]): p for p in data.get("participants", [])}
            await self.sync_peers()
        elif mtype == "user_joined":
            user = data.get("user") or {}
            if user.get("id") is not None:
                self.participants[str(user["id"])] = user
                await self.sync_peers()
        elif mtype == "user_left":
            self.participants.pop(str(data.get("userId")), None)
            await self.sync_peers()
        elif mtype == "webrtc_offer":
            await self.handle_offer(data)
        elif mtype == "webrtc_answer":
            await self.handle_answer(data)
        elif mtype == "webrtc_ice_candidate":
            await self.handle_ice_candidate(data)
        elif mtype == "error":
            logger.warning(f"[peer] Server error: {data.get('message')}")

    async def sync_peers(self):
        """Open connections to new participants and drop those that left."""
        async with self.state_lock:
            wanted = [pid for pid in self.participants if pid != self.user_id]
            for peer_id in list(self.peers):
                if peer_id not in wanted:
                    await self._close_peer(peer_id)
            for peer_id in wanted:
                if peer_id in self.peers:
                    continue
                self._create_peer(peer_id)
                if self.is_initiator(peer_id):
                    await self._negotiate(peer_id)

    # ---------- Connection management ----------

    def _create_peer(self, peer_id: str):
        pc = self._pc_factory()
        self.peers[peer_id] = pc
        self.connection_states[peer_id] = "new"
        for track in self.local_tracks:
            pc.addTrack(track)

        @pc.on("track")
        async def on_track(track):
            self.remote_tracks.setdefault(peer_id, []).append(track)
            logger.info(f"[pc:{peer_id}] Received {track.kind} track")
            if self.on_track_callback:
                try:
                    await self.on_track_callback(track, peer_id)
                except Exception:
                    logger.exception(f"[pc:{peer_id}] Track handler failed for {track.kind}")

        @pc.on("connectionstatechange")
        async def on_state_change():
            await self._on_connection_state(peer_id, pc)

        return pc

    async def _on_connection_state(self, peer_id: str, pc):
        if self.peers.get(peer_id) is not pc:
            return
        state = pc.connectionState
        self.connection_states[peer_id] = state
        logger.info(f"[pc:{peer_id}] connectionState -> {state}")
        if self.on_connection_state:
            result = self.on_connection_state(peer_id, state)
            if inspect.isawaitable(result):
                await result
        if state == "failed":
            await self._restart(peer_id, pc)

    async def _restart(self, peer_id: str, pc):
        async with self.state_lock:
            if self.peers.get(peer_id) is not pc:
                return
            await self._close_peer(peer_id)
            if peer_id in self.participants and self.is_initiator(peer_id):
                logger.info(f"[pc:{peer_id}] Renegotiating after failure")
                self._create_peer(peer_id)
                await self._negotiate(peer_id)

    async def _close_peer(self, peer_id: str):
        pc = self.peers.pop(peer_id, None)
        self.pending_candidates.pop(peer_id, None)
        self.remote_tracks.pop(peer_id, None)
        self.connection_states.pop(peer_id, None)
        if pc is not None:
            await pc.close()

    async def _negotiate(self, peer_id: str):
        pc = self.peers.get(peer_id)
        if pc is None or pc.signalingState != "stable":
            return
        if not self.local_tracks and not pc.getTransceivers():
            pc.addTransceiver("audio", direction="recvonly")
            pc.addTransceiver("video", direction="recvonly")
        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        await self.signaling.emit(
            "webrtc_offer",
            roomId=self.room_id,
            targetUserId=peer_id,
            offer=describe(pc.localDescription),
        )

    # ---------- Offer / answer / ICE ----------

    async def handle_offer(self, data: dict):
        peer_id = str(data.get("fromUserId"))
        offer = data.get("offer") or {}
        async with self.state_lock:
            self.participants.setdefault(peer_id, {"id": peer_id})
            pc = self.peers.get(peer_id)
            if pc is not None and pc.signalingState != "stable":
                if self.is_initiator(peer_id):
                    logger.info(f"[pc:{peer_id}] Ignoring colliding offer")
                    return
                await self._close_peer(peer_id)
                pc = None
            if pc is None:
                pc = self._create_peer(peer_id)

            try:
                await pc.setRemoteDescription(RTCSessionDescription(sdp=offer["sdp"], type=offer["type"]))
                await self._flush_candidates(peer_id, pc)
                answer = await pc.createAnswer()
                await pc.setLocalDescription(answer)
            except Exception as e:
                logger.error(f"[pc:{peer_id}] Failed to answer offer: {e}")
                await self._close_peer(peer_id)
                return

            await self.signaling.emit(
                "webrtc_answer",
                roomId=self.room_id,
                targetUserId=peer_id,
                answer=describe(pc.localDescription),
            )

    async def handle_answer(self, data: dict):
        peer_id = str(data.get("fromUserId"))
        answer = data.get("answer") or {}
        async with self.state_lock:
            pc = self.peers.get(peer_id)
            if pc is None:
                return
            if pc.signalingState != "have-local-offer":
                logger.warning(f"[pc:{peer_id}] Unexpected answer in state {pc.signalingState}")
                return
            try:
                await pc.setRemoteDescription(RTCSessionDescription(sdp=answer["sdp"], type=answer["type"]))
                await self._flush_candidates(peer_id, pc)
            except Exception as e:
                logger.error(f"[pc:{peer_id}] Failed to apply answer: {e}")
                await self._close_peer(peer_id)

    async def handle_ice_candidate(self, data: dict):
        peer_id = str(data.get("fromUserId"))
        candidate = data.get("candidate")
        if not candidate or not candidate.get("candidate"):
            return
        pc = self.peers.get(peer_id)
        if pc is None and peer_id not in self.participants:
            logger.debug(f"[pc:{peer_id}] Dropping candidate from unknown peer")
            return
        if pc is None or pc.remoteDescription is None:
            self.pending_candidates.setdefault(peer_id, []).append(candidate)
            return
        await self._add_candidate(peer_id, pc, candidate)

    async def _flush_candidates(self, peer_id: str, pc):
        for candidate in self.pending_candidates.pop(peer_id, []):
            await self._add_candidate(peer_id, pc, candidate)

    async def _add_candidate(self, peer_id: str, pc, candidate: dict):
        try:
            ice = parse_ice_candidate(candidate)
            if ice is not None:
                await pc.addIceCandidate(ice)
        except Exception as e:
            logger.warning(f"[pc:{peer_id}] Error adding ICE candidate: {e}")

    # ---------- Local media ----------

    def replace_track(self, kind: str, track):
        """Swap the outgoing track of `kind` on every connection."""
        for pc in self.peers.values():
            for sender in pc.getSenders():
                if sender.kind == kind:
                    sender.replaceTrack(track)
        self.local_tracks = [t for t in self.local_tracks if t.kind != kind]
        if track is not None:
            self.local_tracks.append(track)
