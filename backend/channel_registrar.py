"""
Channel Registrar - relay channel membership.

A command only reaches the plugin through the channel both sides joined. The
registrar sends the join frame, waits for the relay's join-ack, and forgets
the channel when the connection drops.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from connection import Connection
from relay_config import RelayConfig
from relay_errors import ChannelJoinError, ConnectionLost, NoChannelError

logger = logging.getLogger(__name__)

MESSAGE_TYPE_JOIN = "join"


class ChannelRegistrar:
    """
    Tracks which relay channel is current and runs the join handshake.

    The current channel is cleared whenever the connection drops; callers must
    join again explicitly after a reconnect.
    """

    def __init__(self, connection: Connection, config: RelayConfig):
        self._connection = connection
        self._config = config
        self._current_channel: Optional[str] = None
        self._join_waiters: Dict[str, asyncio.Future] = {}

    @property
    def current_channel(self) -> Optional[str]:
        return self._current_channel

    def require_channel(self) -> str:
        if self._current_channel is None:
            raise NoChannelError("Must join a channel before sending commands")
        return self._current_channel

    async def join_channel(self, name: str) -> None:
        """
        Join ``name`` and make it the current channel.

        Raises:
            RelayConnectionError: The connection could not be opened
            ChannelJoinError: The relay rejected the join or did not acknowledge it in time
            ConnectionLost: The connection dropped while waiting for the acknowledgment
        """
        if not isinstance(name, str) or not name:
            raise ChannelJoinError("Channel name must be a non-empty string", channel=name)

        await self._connection.connect()

        waiter = self._join_waiters.get(name)
        if waiter is None:
            waiter = asyncio.get_running_loop().create_future()
            self._join_waiters[name] = waiter
            try:
                await self._connection.send({"type": MESSAGE_TYPE_JOIN, "channel": name})
            except BaseException:
                if self._join_waiters.get(name) is waiter:
                    del self._join_waiters[name]
                if waiter.done() and not waiter.cancelled():
                    waiter.exception()
                else:
                    waiter.cancel()
                raise
            logger.info(f"📨 Sent join for channel: {name}")
        else:
            logger.debug(f"Join for channel {name} already in flight, awaiting it")

        timeout = self._config.join_timeout_ms / 1000.0
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=timeout)
        except asyncio.TimeoutError:
            if self._join_waiters.get(name) is waiter:
                del self._join_waiters[name]
                self._current_channel = None
                # Other joiners sharing this waiter fail the same way
                waiter.set_exception(ChannelJoinError(f"Join for channel '{name}' timed out", channel=name))
                waiter.exception()
            logger.error(f"⏰ Join for channel {name} timed out after {timeout:.1f}s")
            raise ChannelJoinError(
                f"Join for channel '{name}' was not acknowledged within {timeout:.1f} seconds", channel=name
            ) from None

    def on_join_ack(self, frame: Dict[str, Any]) -> bool:
        """Settle the join waiter for the acknowledged channel. Returns False if nobody was waiting."""
        channel = frame.get("channel")
        waiter = self._join_waiters.pop(channel, None) if isinstance(channel, str) else None
        if waiter is None:
            logger.warning(f"❌ Join ack for channel with no pending join: {channel}")
            return False
        if waiter.done():
            return True

        if frame.get("success") is True:
            self._current_channel = channel
            logger.info(f"✅ Joined channel: {channel}")
            waiter.set_result(None)
        else:
            self._current_channel = None
            reason = frame.get("message") or frame.get("error") or "join rejected by relay"
            logger.error(f"❌ Join for channel {channel} rejected: {reason}")
            waiter.set_exception(ChannelJoinError(f"Could not join channel '{channel}': {reason}", channel=channel))
        return True

    def clear(self, lost: ConnectionLost) -> None:
        """Forget the current channel and fail in-flight joins after a disconnect."""
        if self._current_channel is not None:
            logger.info(f"🔕 Left channel {self._current_channel} (connection lost)")
        self._current_channel = None
        waiters = list(self._join_waiters.values())
        self._join_waiters.clear()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(ConnectionLost(str(lost)))
                waiter.exception()
