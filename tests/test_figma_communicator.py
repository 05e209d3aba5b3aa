from __future__ import annotations

import asyncio

import pytest

from fakes import FakeConnector, until
from figma_communicator import FigmaRelay, get_communicator, send_command, set_communicator
from relay_config import RelayConfig
from relay_errors import ConnectionLost, NoChannelError, RelayConnectionError, RequestTimeoutError


async def _joined(relay: FigmaRelay, connector: FakeConnector, channel: str = "design"):
    await relay.join_channel(channel)
    return connector.latest


@pytest.mark.asyncio
async def test_concurrent_commands_resolve_by_response_order(relay, connector) -> None:
    ws = await _joined(relay, connector)

    first = asyncio.create_task(relay.send_command("get_node_info", {"nodeId": "1:1"}))
    second = asyncio.create_task(relay.send_command("get_node_info", {"nodeId": "2:2"}))
    await until(lambda: len(ws.commands()) == 2)
    first_id, second_id = (c["id"] for c in ws.commands())
    assert first_id != second_id

    ws.feed({"id": second_id, "result": {"id": "2:2"}})
    assert await asyncio.wait_for(second, 1) == {"id": "2:2"}
    assert not first.done()

    ws.feed({"id": first_id, "result": {"id": "1:1"}})
    assert await asyncio.wait_for(first, 1) == {"id": "1:1"}
    assert relay._dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_command_before_join_raises_no_channel(relay, connector) -> None:
    with pytest.raises(NoChannelError):
        await relay.send_command("get_document_info")

    assert connector.calls == 1
    assert connector.latest.commands() == []


@pytest.mark.asyncio
async def test_unknown_id_is_dropped_without_affecting_others(relay, connector) -> None:
    ws = await _joined(relay, connector)

    task = asyncio.create_task(relay.send_command("get_selection"))
    await until(lambda: len(ws.commands()) == 1)
    ws.feed({"id": "not-a-pending-id", "result": "stray"})
    await until(lambda: relay.diagnostics().unknown_id_responses == 1)
    assert not task.done()

    ws.feed({"id": ws.commands()[0]["id"], "result": ["selected"]})
    assert await asyncio.wait_for(task, 1) == ["selected"]


@pytest.mark.asyncio
async def test_chunked_result_equals_unchunked_result(relay, connector) -> None:
    ws = await _joined(relay, connector)

    chunked = asyncio.create_task(relay.send_command("scan_text_nodes", {"nodeId": "1:1"}))
    plain = asyncio.create_task(relay.send_command("scan_text_nodes", {"nodeId": "1:1"}))
    await until(lambda: len(ws.commands()) == 2)
    chunked_id, plain_id = (c["id"] for c in ws.commands())

    ws.feed({"id": chunked_id, "chunkIndex": 0, "chunkCount": 3, "payload": [{"id": "a"}]})
    ws.feed({"id": chunked_id, "chunkIndex": 1, "chunkCount": 3, "payload": [{"id": "b"}]})
    ws.feed({"id": chunked_id, "chunkIndex": 2, "chunkCount": 3, "payload": [{"id": "c"}]})
    ws.feed({"id": plain_id, "result": [{"id": "a"}, {"id": "b"}, {"id": "c"}]})

    assert await asyncio.wait_for(chunked, 1) == await asyncio.wait_for(plain, 1)
    assert relay._aggregator.buffered_ids == []


@pytest.mark.asyncio
async def test_redelivered_chunk_does_not_change_aggregate(relay, connector) -> None:
    ws = await _joined(relay, connector)

    task = asyncio.create_task(relay.send_command("scan_text_nodes", {"nodeId": "1:1"}))
    await until(lambda: len(ws.commands()) == 1)
    request_id = ws.commands()[0]["id"]

    ws.feed({"id": request_id, "chunkIndex": 0, "chunkCount": 3, "payload": ["a"]})
    ws.feed({"id": request_id, "chunkIndex": 1, "chunkCount": 3, "payload": ["b"]})
    ws.feed({"id": request_id, "chunkIndex": 1, "chunkCount": 3, "payload": ["tampered"]})
    ws.feed({"id": request_id, "chunkIndex": 2, "chunkCount": 3, "payload": ["c"]})

    assert await asyncio.wait_for(task, 1) == ["a", "b", "c"]
    assert relay.diagnostics().duplicate_chunks == 1


@pytest.mark.asyncio
async def test_failed_lazy_connect_sends_nothing(config) -> None:
    connector = FakeConnector(failures=1)
    relay = FigmaRelay(config, connector=connector)

    with pytest.raises(RelayConnectionError):
        await relay.send_command("get_document_info")

    assert connector.calls == 1
    assert connector.sockets == []
    assert relay._dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_timeout_then_late_response_is_dropped(relay, connector) -> None:
    ws = await _joined(relay, connector)

    task = asyncio.create_task(relay.send_command("x", {}, 50))
    await until(lambda: len(ws.commands()) == 1)
    request_id = ws.commands()[0]["id"]

    with pytest.raises(RequestTimeoutError):
        await asyncio.wait_for(task, 1)
    assert relay._dispatcher.pending_count == 0

    await asyncio.sleep(0.05)
    ws.feed({"id": request_id, "result": "too late"})
    await until(lambda: relay.diagnostics().unknown_id_responses == 1)
    assert relay.diagnostics().timeouts == 1


@pytest.mark.asyncio
async def test_connection_loss_rejects_all_outstanding(relay, connector) -> None:
    ws = await _joined(relay, connector)

    tasks = [asyncio.create_task(relay.send_command("get_node_info", {"nodeId": str(i)})) for i in range(3)]
    await until(lambda: len(ws.commands()) == 3)

    ws.drop()
    results = await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), 1)

    assert all(isinstance(r, ConnectionLost) for r in results)
    assert relay._dispatcher.pending_count == 0
    assert relay.current_channel is None
    assert relay.diagnostics().connection_losses == 1


@pytest.mark.asyncio
async def test_reconnect_is_lazy_and_requires_rejoin(relay, connector) -> None:
    ws = await _joined(relay, connector)
    ws.drop()
    await until(lambda: not relay._connection.is_connected)
    await asyncio.sleep(0.01)
    assert connector.calls == 1

    with pytest.raises(NoChannelError):
        await relay.send_command("get_styles")
    assert connector.calls == 2

    await relay.join_channel("design")
    task = asyncio.create_task(relay.send_command("get_styles"))
    await until(lambda: len(connector.latest.commands()) == 1)
    connector.latest.feed({"id": connector.latest.commands()[0]["id"], "result": {"styles": []}})
    assert await asyncio.wait_for(task, 1) == {"styles": []}


@pytest.mark.asyncio
async def test_module_level_send_command_uses_registered_relay(relay, connector) -> None:
    ws = await _joined(relay, connector)
    set_communicator(relay)
    assert get_communicator() is relay

    task = asyncio.create_task(send_command("get_document_info"))
    await until(lambda: len(ws.commands()) == 1)
    ws.feed({"id": ws.commands()[0]["id"], "result": {"name": "Doc"}})
    assert await asyncio.wait_for(task, 1) == {"name": "Doc"}


def test_get_communicator_requires_registration() -> None:
    set_communicator(None)
    with pytest.raises(RuntimeError):
        get_communicator()


def test_diagnostics_returns_a_snapshot() -> None:
    relay = FigmaRelay(RelayConfig(), connector=FakeConnector())
    snapshot = relay.diagnostics()
    snapshot.timeouts = 99
    assert relay.diagnostics().timeouts == 0


@pytest.mark.asyncio
async def test_connection_loss_discards_partial_chunks(relay, connector) -> None:
    ws = await _joined(relay, connector)

    task = asyncio.create_task(relay.send_command("scan_text_nodes", {"nodeId": "1:1"}))
    await until(lambda: len(ws.commands()) == 1)
    request_id = ws.commands()[0]["id"]
    ws.feed({"id": request_id, "chunkIndex": 0, "chunkCount": 2, "payload": ["a"]})
    await until(lambda: relay._aggregator.buffered_ids == [request_id])

    ws.drop()

    with pytest.raises(ConnectionLost):
        await asyncio.wait_for(task, 1)
    assert relay._aggregator.buffered_ids == []
