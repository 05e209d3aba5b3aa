"""
Chunk Aggregator - reassembly of multi-fragment results.

Long scans (e.g. scan_text_nodes) stream their result as chunk frames:
    { id, chunkIndex, chunkCount, payload }
A chunk may instead carry ``error`` (fail fast) or, when the count is not
known up front, ``final: true`` on the last fragment.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from relay_diagnostics import RelayDiagnostics
from relay_errors import RemoteError

logger = logging.getLogger(__name__)

CHUNK_PENDING = "pending"
CHUNK_COMPLETE = "complete"
CHUNK_FAILED = "failed"
CHUNK_IGNORED = "ignored"


@dataclass
class ChunkedResult:
    expected_count: Optional[int] = None
    received: Dict[int, Any] = field(default_factory=dict)
    final_index: Optional[int] = None

    @property
    def total(self) -> Optional[int]:
        if self.expected_count is not None:
            return self.expected_count
        if self.final_index is not None:
            return self.final_index + 1
        return None

    def is_complete(self) -> bool:
        total = self.total
        return total is not None and all(i in self.received for i in range(total))


@dataclass(frozen=True)
class ChunkOutcome:
    status: str
    value: Any = None
    error: Optional[RemoteError] = None


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def combine_payloads(payloads: List[Any]) -> Any:
    """Join chunk payloads in index order.

    Lists concatenate, strings join, dicts merge with list fields concatenated.
    Anything else comes back as the list of payloads.
    """
    if len(payloads) == 1:
        return payloads[0]
    if all(isinstance(p, list) for p in payloads):
        combined: List[Any] = []
        for p in payloads:
            combined.extend(p)
        return combined
    if all(isinstance(p, str) for p in payloads):
        return "".join(payloads)
    if all(isinstance(p, dict) for p in payloads):
        merged: Dict[str, Any] = {}
        for p in payloads:
            for key, value in p.items():
                if isinstance(merged.get(key), list) and isinstance(value, list):
                    merged[key] = merged[key] + value
                else:
                    merged[key] = value
        return merged
    return list(payloads)


class ChunkAggregator:
    """Owns one buffer per request id that is receiving chunks."""

    def __init__(self, diagnostics: Optional[RelayDiagnostics] = None):
        self._buffers: Dict[str, ChunkedResult] = {}
        self._diagnostics = diagnostics or RelayDiagnostics()

    @property
    def buffered_ids(self) -> List[str]:
        return list(self._buffers)

    def accept(self, frame: Dict[str, Any], command: Optional[str] = None) -> ChunkOutcome:
        request_id = str(frame["id"])

        if frame.get("error") is not None:
            self.discard(request_id)
            logger.error(f"❌ Chunked command {command} (ID: {request_id}) failed: {frame['error']}")
            return ChunkOutcome(CHUNK_FAILED, error=RemoteError(frame["error"], command=command))

        index = frame.get("chunkIndex")
        count = frame.get("chunkCount")
        if not _is_index(index) or (count is not None and (not _is_index(count) or count == 0)):
            self._diagnostics.invalid_chunks += 1
            logger.warning(f"⚠️ Ignoring chunk with invalid index/count for {request_id}: index={index}, count={count}")
            return ChunkOutcome(CHUNK_IGNORED)

        buffer = self._buffers.get(request_id)
        if buffer is not None and count is not None and buffer.expected_count not in (None, count):
            self._diagnostics.invalid_chunks += 1
            logger.warning(f"⚠️ Ignoring chunk with inconsistent count for {request_id}: {count} != {buffer.expected_count}")
            return ChunkOutcome(CHUNK_IGNORED)

        total = count if count is not None else (buffer.total if buffer is not None else None)
        if total is not None and index >= total:
            self._diagnostics.invalid_chunks += 1
            logger.warning(f"⚠️ Ignoring out-of-range chunk {index} (count {total}) for {request_id}")
            return ChunkOutcome(CHUNK_IGNORED)

        if buffer is None:
            buffer = ChunkedResult(expected_count=count)
            self._buffers[request_id] = buffer
            logger.info(f"📦 Receiving chunked result for {request_id} (chunks: {count if count is not None else 'unknown'})")
        elif buffer.expected_count is None and count is not None:
            buffer.expected_count = count

        if index in buffer.received:
            self._diagnostics.duplicate_chunks += 1
            logger.warning(f"⚠️ Duplicate chunk {index} for {request_id} ignored")
            return ChunkOutcome(CHUNK_IGNORED)

        buffer.received[index] = frame.get("payload")
        if frame.get("final") is True and buffer.expected_count is None:
            if buffer.received and max(buffer.received) > index:
                self._diagnostics.invalid_chunks += 1
                logger.warning(f"⚠️ Final marker on chunk {index} precedes received chunks for {request_id}; ignoring marker")
            else:
                buffer.final_index = index

        logger.debug(f"📦 Chunk {index + 1}/{buffer.total or '?'} stored for {request_id}")
        if not buffer.is_complete():
            return ChunkOutcome(CHUNK_PENDING)

        del self._buffers[request_id]
        payloads = [buffer.received[i] for i in range(buffer.total)]
        return ChunkOutcome(CHUNK_COMPLETE, value=combine_payloads(payloads))

    def discard(self, request_id: str) -> None:
        if self._buffers.pop(request_id, None) is not None:
            logger.debug(f"🗑️ Discarded partial chunk buffer for {request_id}")

    def clear(self) -> None:
        self._buffers.clear()
