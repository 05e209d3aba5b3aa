"""
Request Dispatcher - correlation ids, pending requests and deadlines.

Every command gets a unique id and a one-shot future. The dispatcher is the
sole owner of the pending-request table; each entry leaves it exactly once
(resolve, reject, timeout, abandon or connection loss).
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from channel_registrar import ChannelRegistrar
from connection import Connection
from relay_config import RelayConfig
from relay_diagnostics import RelayDiagnostics
from relay_errors import BackpressureError, ConnectionLost, RequestTimeoutError

logger = logging.getLogger(__name__)

MESSAGE_TYPE_COMMAND = "command"

# Channel-management commands may be sent before any channel is current
CHANNEL_COMMANDS = frozenset({"join", "leave"})


@dataclass
class PendingRequest:
    id: str
    command: str
    params: Any
    future: asyncio.Future
    timeout: float
    deadline: float
    timer: Optional[asyncio.TimerHandle] = None
    created_at: float = field(default_factory=time.time)

    @property
    def elapsed(self) -> float:
        return time.time() - self.created_at


class RequestDispatcher:
    """Issues commands over the shared connection and tracks them until they settle."""

    def __init__(
        self,
        connection: Connection,
        registrar: ChannelRegistrar,
        config: RelayConfig,
        diagnostics: Optional[RelayDiagnostics] = None,
    ):
        self._connection = connection
        self._registrar = registrar
        self._config = config
        self._diagnostics = diagnostics or RelayDiagnostics()
        self._pending: Dict[str, PendingRequest] = {}
        self._release_listeners: List[Callable[[str], None]] = []

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: str) -> bool:
        return request_id in self._pending

    def get(self, request_id: str) -> Optional[PendingRequest]:
        return self._pending.get(request_id)

    def add_release_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the id of every request that leaves the table."""
        self._release_listeners.append(listener)

    def generate_id(self) -> str:
        """Generate an id not used by any outstanding request."""
        request_id = str(uuid.uuid4())
        while request_id in self._pending:
            request_id = str(uuid.uuid4())
        return request_id

    async def send_command(self, command: str, params: Any = None, timeout_ms: Optional[int] = None) -> Any:
        """
        Send a command to the Figma plugin and wait for its response.

        Args:
            command: The command name (e.g., "get_node_info")
            params: Optional parameters for the command (any JSON value), forwarded untouched
            timeout_ms: Optional per-request deadline (default: config.default_timeout_ms)

        Returns:
            The result from the plugin (combined across chunks for chunked commands)

        Raises:
            RelayConnectionError: The lazy connect attempt failed; nothing was sent
            NoChannelError: No channel has been joined
            BackpressureError: Too many requests are already outstanding
            RequestTimeoutError: No response before the deadline
            RemoteError: The plugin reported a failure
            ConnectionLost: The connection dropped before the response arrived
        """
        if not self._connection.is_connected:
            logger.info(f"🔌 Not connected, connecting before sending {command}")
            await self._connection.connect()

        if params is None:
            params = {}
        if command in CHANNEL_COMMANDS:
            channel = params.get("channel") if isinstance(params, dict) else None
        else:
            channel = self._registrar.require_channel()

        max_pending = self._config.max_pending
        if max_pending and len(self._pending) >= max_pending:
            raise BackpressureError(f"Too many outstanding requests ({len(self._pending)}/{max_pending})")

        request = self._register(command, params, timeout_ms)
        envelope = {
            "id": request.id,
            "channel": channel,
            "type": MESSAGE_TYPE_COMMAND,
            "command": command,
            "params": params,
        }

        logger.info(f"🚀 Sending command: {command} with ID: {request.id}")
        try:
            await self._connection.send(envelope)
        except BaseException:
            self.abandon(request.id)
            # The close path may already have failed the future
            if request.future.done() and not request.future.cancelled():
                request.future.exception()
            raise

        try:
            return await request.future
        except asyncio.CancelledError:
            if self.abandon(request.id):
                logger.info(f"🛑 Abandoned command {command} (ID: {request.id})")
            raise

    def _register(self, command: str, params: Any, timeout_ms: Optional[int]) -> PendingRequest:
        loop = asyncio.get_running_loop()
        timeout = (timeout_ms if timeout_ms is not None else self._config.default_timeout_ms) / 1000.0
        request = PendingRequest(
            id=self.generate_id(),
            command=command,
            params=params,
            future=loop.create_future(),
            timeout=timeout,
            deadline=loop.time() + timeout,
        )
        request.timer = loop.call_later(timeout, self._on_timeout, request.id)
        self._pending[request.id] = request
        logger.debug(f"📝 Added to pending requests: {request.id} (total: {len(self._pending)})")
        return request

    def _pop(self, request_id: str) -> Optional[PendingRequest]:
        request = self._pending.pop(request_id, None)
        if request is None:
            return None
        if request.timer is not None:
            request.timer.cancel()
        self._notify_released(request_id)
        return request

    def _notify_released(self, request_id: str) -> None:
        for listener in self._release_listeners:
            try:
                listener(request_id)
            except Exception as e:
                logger.error(f"Release listener failed for {request_id}: {e}")

    def _on_timeout(self, request_id: str) -> None:
        request = self._pop(request_id)
        if request is None:
            return
        self._diagnostics.timeouts += 1
        logger.error(f"⏰ Command {request.command} (ID: {request_id}) timed out after {request.elapsed:.3f}s (limit: {request.timeout}s)")
        if not request.future.done():
            request.future.set_exception(RequestTimeoutError(
                f"Command '{request.command}' timed out after {request.timeout:.1f} seconds",
                command=request.command,
                timeout=request.timeout,
            ))

    def resolve(self, request_id: str, value: Any) -> Optional[PendingRequest]:
        """Settle a request with its result. Returns the released entry, or None if unknown."""
        request = self._pop(request_id)
        if request is not None and not request.future.done():
            request.future.set_result(value)
        return request

    def reject(self, request_id: str, error: BaseException) -> Optional[PendingRequest]:
        """Settle a request with an error. Returns the released entry, or None if unknown."""
        request = self._pop(request_id)
        if request is not None and not request.future.done():
            request.future.set_exception(error)
        return request

    def abandon(self, request_id: str) -> bool:
        """Drop a request locally without telling the host. A late response is then discarded."""
        request = self._pop(request_id)
        if request is None:
            return False
        if not request.future.done():
            request.future.cancel()
        return True

    def extend_deadline(self, request_id: str) -> bool:
        """Restart the timer of a pending request (the host reported progress)."""
        request = self._pending.get(request_id)
        if request is None:
            return False
        loop = asyncio.get_running_loop()
        if request.timer is not None:
            request.timer.cancel()
        request.deadline = loop.time() + request.timeout
        request.timer = loop.call_later(request.timeout, self._on_timeout, request_id)
        return True

    def fail_all(self, lost: ConnectionLost) -> int:
        """Reject every pending request at once. Returns how many were failed."""
        requests = list(self._pending.values())
        self._pending.clear()
        for request in requests:
            if request.timer is not None:
                request.timer.cancel()
            self._notify_released(request.id)
        for request in requests:
            if not request.future.done():
                request.future.set_exception(ConnectionLost(str(lost)))
        if requests:
            logger.warning(f"📴 Failed {len(requests)} pending request(s): {lost}")
        return len(requests)
