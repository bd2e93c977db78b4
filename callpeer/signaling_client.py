# signaling_client.py
import asyncio
import json
import logging
from urllib.parse import quote, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

logger = logging.getLogger(__name__)


def signaling_url(server_url: str, token: str) -> str:
    """http(s)://host[:port] -> ws(s)://host[:port]/ws?token=..."""
    parts = urlsplit(server_url.rstrip("/"))
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme or "ws")
    path = parts.path.rstrip("/")
    if not path.endswith("/ws"):
        path = f"{path}/ws"
    return urlunsplit((scheme, parts.netloc, path, f"token={quote(token)}", ""))


class SignalingClient:
    """JSON event channel to the call server's /ws endpoint.

    Every decoded event is handed to `on_message`; outgoing events are
    plain dicts with a `type` key.
    """

    def __init__(self, server_url: str, token: str, on_message):
        self.url = signaling_url(server_url, token)
        self.on_message = on_message
        self._socket = None
        self._open = False

    @property
    def is_connected(self) -> bool:
        return self._open

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def connect(self):
        endpoint = self.url.split("?")[0]
        logger.info(f"[Signaling] Connecting to {endpoint}")
        try:
            self._socket = await websockets.connect(self.url)
        except (ConnectionRefusedError, InvalidHandshake, OSError) as e:
            logger.error(f"[Signaling] ❌ Could not reach {endpoint}: {e}")
            raise
        self._open = True
        logger.info("[Signaling] ✅ Connected.")

    async def listen(self):
        """Dispatch events until the server closes the socket."""
        if self._socket is None:
            return
        try:
            async for raw in self._socket:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info(f"[Signaling] 🔌 Closed by server ({e}).")
        except asyncio.CancelledError:
            raise
        finally:
            self._open = False

    async def _dispatch(self, raw):
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[Signaling] ⚠️ Dropped a frame that is not JSON.")
            return
        if not isinstance(event, dict):
            return
        try:
            await self.on_message(event)
        except Exception:
            logger.exception(f"[Signaling] Handler failed for '{event.get('type')}'")

    async def send(self, data: dict):
        if not self._open:
            logger.debug(f"[Signaling] Not connected, dropping '{data.get('type')}'")
            return
        try:
            await self._socket.send(json.dumps(data))
        except ConnectionClosed:
            self._open = False
            logger.warning(f"[Signaling] ⚠️ Socket closed while sending '{data.get('type')}'")

    async def emit(self, event_type: str, **payload):
        await self.send({"type": event_type, **payload})

    async def close(self):
        was_open, self._open = self._open, False
        if self._socket is not None and was_open:
            await self._socket.close()
