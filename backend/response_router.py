"""
Response Router - demultiplexes inbound relay frames.

Frames are routed to the pending request they answer, to the chunk
aggregator, or to the channel registrar. Anything that cannot be routed is
dropped and counted. Only a run of unparsable frames (or objects with neither
an id nor a type) forces a reconnect, since that signals a corrupted stream;
relay error notices and unknown message types are logged and counted.
"""

import json
import logging
from typing import Any, Dict, Optional

from channel_registrar import ChannelRegistrar
from chunk_aggregator import CHUNK_COMPLETE, CHUNK_FAILED, ChunkAggregator
from connection import Connection
from relay_config import RelayConfig
from relay_diagnostics import RelayDiagnostics
from relay_errors import ProtocolError, RemoteError
from request_dispatcher import RequestDispatcher

logger = logging.getLogger(__name__)

# Message type constants to avoid stringly-typed conditionals
MESSAGE_TYPE_JOIN_ACK = "join-ack"
MESSAGE_TYPE_PROGRESS_UPDATE = "progress_update"
MESSAGE_TYPE_SYSTEM = "system"
MESSAGE_TYPE_PONG = "pong"
MESSAGE_TYPE_ERROR = "error"


class ResponseRouter:
    def __init__(
        self,
        connection: Connection,
        registrar: ChannelRegistrar,
        dispatcher: RequestDispatcher,
        aggregator: ChunkAggregator,
        config: RelayConfig,
        diagnostics: RelayDiagnostics,
    ):
        self._connection = connection
        self._registrar = registrar
        self._dispatcher = dispatcher
        self._aggregator = aggregator
        self._config = config
        self._diagnostics = diagnostics
        self._consecutive_malformed = 0

    def reset(self) -> None:
        self._consecutive_malformed = 0

    async def on_frame(self, raw: str) -> None:
        """Route one raw inbound frame. Never raises for protocol anomalies."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            await self._record_malformed(ProtocolError(f"unparsable frame ({e})"))
            return
        if not isinstance(message, dict):
            await self._record_malformed(ProtocolError("frame is not an object"))
            return

        handlers = {
            MESSAGE_TYPE_JOIN_ACK: self._handle_join_ack,
            MESSAGE_TYPE_PROGRESS_UPDATE: self._handle_progress_update,
            MESSAGE_TYPE_SYSTEM: self._handle_system,
            MESSAGE_TYPE_PONG: self._handle_pong,
        }
        handler = handlers.get(message.get("type"))
        if handler is not None:
            self._consecutive_malformed = 0
            handler(message)
            return

        envelope = self._unwrap(message)
        request_id = envelope.get("id")
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            request_id = str(request_id)
        if not isinstance(request_id, str) or not request_id:
            msg_type = message.get("type")
            if msg_type == MESSAGE_TYPE_ERROR:
                self._consecutive_malformed = 0
                self._handle_relay_error(message)
            elif isinstance(msg_type, str):
                self._consecutive_malformed = 0
                self._record_unroutable(msg_type)
            else:
                await self._record_malformed(ProtocolError(f"frame without id (keys: {list(message.keys())})"))
            return

        self._consecutive_malformed = 0
        if "chunkIndex" in envelope:
            self._route_chunk(request_id, envelope)
        elif envelope.get("error") is not None:
            self._route_error(request_id, envelope["error"])
        elif "result" in envelope:
            self._route_result(request_id, envelope["result"])
        else:
            # The relay echoes our own command envelopes back to the channel
            logger.debug(f"Ignoring frame without result for ID {request_id} (keys: {list(envelope.keys())})")

    @staticmethod
    def _unwrap(message: Dict[str, Any]) -> Dict[str, Any]:
        """Broadcast frames carry the response under ``message``."""
        inner = message.get("message")
        if "id" not in message and isinstance(inner, dict):
            return inner
        return message

    def _route_result(self, request_id: str, result: Any) -> None:
        request = self._dispatcher.resolve(request_id, result)
        if request is None:
            self._record_unknown(request_id)
            return
        logger.info(f"✅ Command {request.command} (ID: {request_id}) completed after {request.elapsed:.3f}s")
        logger.debug(f"🎯 Result payload: {result}")

    def _route_error(self, request_id: str, error: Any) -> None:
        request = self._dispatcher.get(request_id)
        if request is None:
            self._record_unknown(request_id)
            return
        remote_error = RemoteError(error, command=request.command, params=request.params)
        self._dispatcher.reject(request_id, remote_error)
        logger.error(f"❌ Command {request.command} (ID: {request_id}) failed after {request.elapsed:.3f}s: code={remote_error.code}, message={remote_error.message}")

    def _route_chunk(self, request_id: str, frame: Dict[str, Any]) -> None:
        request = self._dispatcher.get(request_id)
        if request is None:
            self._aggregator.discard(request_id)
            self._record_unknown(request_id)
            return

        outcome = self._aggregator.accept(frame, command=request.command)
        if outcome.status == CHUNK_COMPLETE:
            self._dispatcher.resolve(request_id, outcome.value)
            logger.info(f"✅ Chunked command {request.command} (ID: {request_id}) completed after {request.elapsed:.3f}s")
        elif outcome.status == CHUNK_FAILED:
            outcome.error.params = request.params
            self._dispatcher.reject(request_id, outcome.error)

    def _record_unknown(self, request_id: str) -> None:
        self._diagnostics.unknown_id_responses += 1
        logger.warning(f"❌ Dropping response for unknown ID: {request_id}")

    def _record_unroutable(self, msg_type: str) -> None:
        self._diagnostics.unroutable_frames += 1
        logger.debug(f"Ignoring unknown message type: {msg_type}")

    async def _record_malformed(self, error: ProtocolError) -> None:
        self._diagnostics.malformed_frames += 1
        self._consecutive_malformed += 1
        logger.warning(f"⚠️ Dropping malformed frame: {error} ({self._consecutive_malformed} in a row)")

        if self._consecutive_malformed >= self._config.max_consecutive_malformed:
            self._consecutive_malformed = 0
            self._diagnostics.forced_reconnects += 1
            logger.error("💔 Too many malformed frames in a row, dropping the connection")
            await self._connection.force_reconnect("stream corrupted")

    def _handle_join_ack(self, message: Dict[str, Any]) -> None:
        if not self._registrar.on_join_ack(message):
            self._diagnostics.unexpected_join_acks += 1

    def _handle_progress_update(self, message: Dict[str, Any]) -> None:
        self._diagnostics.progress_updates += 1
        progress = message.get("message")
        data = progress.get("data") if isinstance(progress, dict) else None
        data = data if isinstance(data, dict) else {}
        request_id: Optional[str] = data.get("commandId") or message.get("id")

        logger.info(f"📈 Progress for {data.get('commandType', 'unknown')}: {data.get('progress', 0)}% - {data.get('message', '')}")
        if isinstance(request_id, str) and self._dispatcher.extend_deadline(request_id):
            logger.debug(f"⏳ Extended deadline for {request_id}")

    def _handle_system(self, message: Dict[str, Any]) -> None:
        logger.info(f"🔧 System message: {message.get('message')}")

    def _handle_relay_error(self, message: Dict[str, Any]) -> None:
        self._diagnostics.relay_errors += 1
        logger.error(f"❌ Relay error: {message.get('message', 'Unknown error')}")

    def _handle_pong(self, _: Dict[str, Any]) -> None:
        logger.debug("🏓 Received pong")
