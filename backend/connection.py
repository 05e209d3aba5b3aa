"""
Connection - WebSocket transport ownership for the Figma relay.

The connection is opened lazily (first dispatch or join), shared by every
request, and never reopened in the background: after a drop the next caller
reconnects.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from relay_config import RelayConfig
from relay_errors import ConnectionLost, IllegalStateError, RelayConnectionError

logger = logging.getLogger(__name__)

FrameHandler = Callable[[str], Awaitable[None]]
DisconnectListener = Callable[[ConnectionLost], None]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Connection:
    """
    Owns the relay socket and its lifecycle state.

    This class manages:
    - Opening the socket with bounded retries (one attempt in flight at a time)
    - Reading inbound frames and handing them to the frame handler
    - Running the close path exactly once per socket
    """

    def __init__(self, config: RelayConfig, connector: Optional[Callable[..., Awaitable[Any]]] = None):
        """
        Args:
            config: Relay configuration (URL, retry and timeout settings)
            connector: Coroutine factory opening the socket (default: websockets.connect)
        """
        self.config = config
        self._connector = connector or websockets.connect
        self._websocket: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._frame_handler: Optional[FrameHandler] = None
        self._disconnect_listeners: List[DisconnectListener] = []
        self.open_attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def set_frame_handler(self, handler: FrameHandler) -> None:
        self._frame_handler = handler

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        self._disconnect_listeners.append(listener)

    async def connect(self) -> None:
        """Open the connection if needed; concurrent callers share one attempt."""
        if self._state is ConnectionState.CONNECTED:
            return

        if self._connect_task is None:
            self._state = ConnectionState.CONNECTING
            self._connect_task = asyncio.get_running_loop().create_task(self._open_with_retries())
        else:
            logger.debug("🔌 Connect already in flight, awaiting it")

        task = self._connect_task
        # A cancelled waiter must not cancel the attempt other callers rely on
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # The attempt itself was cancelled by close(), not this caller
            if task.cancelled():
                raise RelayConnectionError(f"Connection to {self.config.url} aborted: relay closed") from None
            raise

    async def _open_with_retries(self) -> None:
        max_attempts = self.config.connect_max_attempts
        delay = self.config.connect_retry_delay
        last_error: Optional[BaseException] = None

        try:
            for attempt in range(1, max_attempts + 1):
                self.open_attempts += 1
                logger.info(f"🔌 Connecting to Figma relay at {self.config.url} (attempt {attempt}/{max_attempts})")
                try:
                    websocket = await self._connector(
                        self.config.url,
                        max_size=None,
                        open_timeout=self.config.connect_timeout_s,
                    )
                except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                    last_error = e
                    logger.warning(f"⚠️ Connect attempt {attempt} failed: {e}")
                    if attempt < max_attempts:
                        logger.info(f"Retrying in {delay} seconds...")
                        await asyncio.sleep(delay)
                        delay = min(delay * 2, self.config.connect_max_retry_delay)
                    continue

                self._attach(websocket)
                return

            raise RelayConnectionError(
                f"Could not connect to Figma relay at {self.config.url} after {max_attempts} attempt(s): {last_error}"
            ) from last_error
        finally:
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DISCONNECTED
            self._connect_task = None

    def _attach(self, websocket: Any) -> None:
        self._websocket = websocket
        self._state = ConnectionState.CONNECTED
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop(websocket))
        logger.info("🌉 Connected to Figma relay")

    async def _read_loop(self, websocket: Any) -> None:
        reason = "closed by peer"
        try:
            async for raw in websocket:
                if isinstance(raw, (bytes, bytearray)):
                    raw = raw.decode("utf-8", errors="replace")
                logger.debug(f"📡 Frame received: {raw[:200]}")
                if self._frame_handler is None:
                    continue
                try:
                    await self._frame_handler(raw)
                except Exception as e:
                    logger.error(f"❌ Error handling frame: {e}")
        except ConnectionClosed as e:
            reason = f"closed ({e})"
        except Exception as e:
            reason = f"receive failed ({e})"
            logger.error(f"❌ Error receiving frame: {e}")

        # Only the reader of the current socket may run the close path
        if self._websocket is websocket:
            self._handle_close(reason)

    def _handle_close(self, reason: str) -> Optional[Any]:
        """Transition to DISCONNECTED and notify listeners. Returns the detached socket."""
        if self._state is not ConnectionState.CONNECTED:
            return None

        websocket = self._websocket
        self._websocket = None
        self._state = ConnectionState.DISCONNECTED

        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()

        logger.warning(f"📴 Disconnected from Figma relay: {reason}")
        lost = ConnectionLost(f"Connection to Figma relay lost: {reason}")
        for listener in list(self._disconnect_listeners):
            try:
                listener(lost)
            except Exception as e:
                logger.error(f"Disconnect listener failed: {e}")
        return websocket

    async def send(self, frame: Dict[str, Any]) -> None:
        """Serialize and send one frame. Only permitted while connected."""
        websocket = self._websocket
        if self._state is not ConnectionState.CONNECTED or websocket is None:
            raise IllegalStateError(f"Cannot send while {self._state.value}")

        payload = json.dumps(frame)
        logger.debug(f"📤 Sending frame: {payload[:200]}")
        try:
            await websocket.send(payload)
        except (ConnectionClosed, OSError) as e:
            if self._websocket is websocket:
                self._handle_close(f"send failed ({e})")
            raise ConnectionLost(f"Connection to Figma relay lost while sending: {e}") from e

    async def force_reconnect(self, reason: str) -> None:
        """Drop the current socket; the next dispatch reconnects lazily."""
        websocket = self._handle_close(f"forced: {reason}")
        await self._close_socket(websocket)

    async def close(self) -> None:
        """Orderly shutdown. An in-flight connect is aborted; its waiters get RelayConnectionError."""
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        websocket = self._handle_close("closed by client")
        await self._close_socket(websocket)

    async def _close_socket(self, websocket: Optional[Any]) -> None:
        if websocket is None:
            return
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing websocket: {e}")
