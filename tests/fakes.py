from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

_CLOSE = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, auto_ack_joins: bool = True) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.auto_ack_joins = auto_ack_joins
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        frame = json.loads(data)
        self.sent.append(frame)
        if self.auto_ack_joins and frame.get("type") == "join":
            self.feed({"type": "join-ack", "channel": frame["channel"], "success": True})

    def feed(self, message: Any) -> None:
        self._incoming.put_nowait(message if isinstance(message, (str, bytes)) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the peer closing the socket."""
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def commands(self) -> list[dict[str, Any]]:
        return [f for f in self.sent if f.get("type") == "command"]

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector that fails the first ``failures`` attempts, then hands out FakeWebSockets."""

    def __init__(self, failures: int = 0, auto_ack_joins: bool = True) -> None:
        self.failures = failures
        self.auto_ack_joins = auto_ack_joins
        self.calls = 0
        self.kwargs: list[dict[str, Any]] = []
        self.sockets: list[FakeWebSocket] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.calls += 1
        self.kwargs.append(kwargs)
        await asyncio.sleep(0)
        if self.calls <= self.failures:
            raise ConnectionRefusedError(f"connection refused: {url}")
        websocket = FakeWebSocket(self.auto_ack_joins)
        self.sockets.append(websocket)
        return websocket

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


async def until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)
