"""
Figma Communicator - RPC Communication Layer

This module provides the communication layer between the Python agent
and the Figma plugin via a WebSocket relay: one shared connection,
channel membership, correlated requests and chunked results.
"""

import dataclasses
import logging
from typing import Any, Optional, Callable, Awaitable

from channel_registrar import ChannelRegistrar
from chunk_aggregator import ChunkAggregator
from connection import Connection
from relay_config import RelayConfig
from relay_diagnostics import RelayDiagnostics
from relay_errors import ConnectionLost
from request_dispatcher import RequestDispatcher
from response_router import ResponseRouter

logger = logging.getLogger(__name__)


class FigmaRelay:
    """
    Handles RPC communication with the Figma plugin.

    This class wires:
    - The shared Connection (lazy connect, close path)
    - The ChannelRegistrar (join handshake, current channel)
    - The RequestDispatcher (ids, pending requests, timeouts)
    - The ResponseRouter and ChunkAggregator (inbound frames)

    Only connect(), join_channel() and send_command() are meant for the tool layer.
    """

    def __init__(self, config: Optional[RelayConfig] = None, connector: Optional[Callable[..., Awaitable[Any]]] = None):
        """
        Initialize the relay.

        Args:
            config: Relay configuration (default: RelayConfig())
            connector: Optional socket factory, used instead of websockets.connect
        """
        self.config = config or RelayConfig()
        self._diagnostics = RelayDiagnostics()
        self._connection = Connection(self.config, connector=connector)
        self._registrar = ChannelRegistrar(self._connection, self.config)
        self._dispatcher = RequestDispatcher(self._connection, self._registrar, self.config, self._diagnostics)
        self._aggregator = ChunkAggregator(self._diagnostics)
        self._router = ResponseRouter(
            self._connection, self._registrar, self._dispatcher, self._aggregator, self.config, self._diagnostics
        )

        self._connection.set_frame_handler(self._router.on_frame)
        self._connection.add_disconnect_listener(self._on_disconnect)
        self._dispatcher.add_release_listener(self._aggregator.discard)

    def _on_disconnect(self, lost: ConnectionLost) -> None:
        self._diagnostics.connection_losses += 1
        self._dispatcher.fail_all(lost)
        self._aggregator.clear()
        self._registrar.clear(lost)
        self._router.reset()

    @property
    def current_channel(self) -> Optional[str]:
        return self._registrar.current_channel

    async def connect(self) -> None:
        """Open the relay connection (no-op when already open)."""
        await self._connection.connect()

    async def join_channel(self, name: str) -> None:
        """Join a channel; required before any non-channel command."""
        await self._registrar.join_channel(name)

    async def send_command(self, command: str, params: Any = None, timeout_ms: Optional[int] = None) -> Any:
        """
        Send a command to the Figma plugin and wait for the response.

        Args:
            command: The command name (e.g., "get_document_info")
            params: Optional parameters for the command
            timeout_ms: Optional deadline override in milliseconds

        Returns:
            The result from the plugin
        """
        return await self._dispatcher.send_command(command, params, timeout_ms)

    def diagnostics(self) -> RelayDiagnostics:
        """Snapshot of the anomaly counters."""
        return dataclasses.replace(self._diagnostics)

    async def close(self) -> None:
        """Close the connection; pending requests fail with ConnectionLost."""
        await self._connection.close()


# Global communicator instance (will be set by main.py)
_communicator: Optional[FigmaRelay] = None


def set_communicator(communicator: Optional[FigmaRelay]) -> None:
    """Set the global communicator instance."""
    global _communicator
    _communicator = communicator


def get_communicator() -> FigmaRelay:
    """Get the global communicator instance."""
    if _communicator is None:
        raise RuntimeError("Communicator not initialized. Call set_communicator() first.")
    return _communicator


async def send_command(command: str, params: Any = None, timeout_ms: Optional[int] = None) -> Any:
    """
    Convenience function to send a command using the global communicator.

    Args:
        command: The command name
        params: Optional parameters
        timeout_ms: Optional deadline override in milliseconds

    Returns:
        The result from the plugin
    """
    communicator = get_communicator()
    return await communicator.send_command(command, params, timeout_ms)


async def join_channel(name: str) -> None:
    """Convenience function to join a channel using the global communicator."""
    communicator = get_communicator()
    await communicator.join_channel(name)
