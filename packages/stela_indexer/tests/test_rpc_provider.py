"""
Tests for the Starknet JSON-RPC provider.
"""

import json

import httpx
import pytest

from stela_indexer.chain.base import ExecutionStatus, FinalityStatus
from stela_indexer.chain.rpc import StarknetRpcProvider
from stela_indexer.errors import TransportError

RPC_URL = "https://node.test/rpc"


def rpc_provider(handler) -> StarknetRpcProvider:
    return StarknetRpcProvider(RPC_URL, timeout=5.0, transport=httpx.MockTransport(handler))


def result(request: httpx.Request, value) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": value})


@pytest.fixture
def emitted_events():
    """Sample starknet_getEvents result."""
    return {
        "events": [
            {
                "from_address": "0x5e1a",
                "keys": ["0x1", "0x2"],
                "data": ["0x3"],
                "block_hash": "0xb10c",
                "block_number": 812,
                "transaction_hash": "0x7a",
            },
            {
                "from_address": "0x5e1a",
                "keys": ["0x1"],
                "data": [],
                "transaction_hash": "0x7b",
            },
        ],
        "continuation_token": "812-1",
    }


class TestGetEvents:
    """Tests for starknet_getEvents."""

    @pytest.mark.asyncio
    async def test_builds_filter_and_parses_events(self, emitted_events):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return result(request, emitted_events)

        provider = rpc_provider(handler)
        page = await provider.get_events("0x5e1a", 800, 900, keys=[["0x1"]], chunk_size=50, continuation_token="tok")
        await provider.close()

        assert seen["method"] == "starknet_getEvents"
        event_filter = seen["params"]["filter"]
        assert event_filter["from_block"] == {"block_number": 800}
        assert event_filter["to_block"] == {"block_number": 900}
        assert event_filter["address"] == "0x5e1a"
        assert event_filter["keys"] == [["0x1"]]
        assert event_filter["chunk_size"] == 50
        assert event_filter["continuation_token"] == "tok"

        # The pending event (no block number) is dropped
        assert len(page.events) == 1
        event = page.events[0]
        assert event.keys == ["0x1", "0x2"]
        assert event.block_number == 812
        assert event.transaction_hash == "0x7a"
        assert page.continuation_token == "812-1"

    @pytest.mark.asyncio
    async def test_event_index_is_parsed(self):
        def handler(request):
            return result(
                request,
                {
                    "events": [
                        {
                            "keys": ["0x1"],
                            "data": [],
                            "block_number": 1,
                            "transaction_hash": "0x1",
                            "transaction_index": 3,
                            "event_index": "0x4",
                        }
                    ]
                },
            )

        page = await rpc_provider(handler).get_events("0x1", 0, 1)

        assert page.events[0].transaction_index == 3
        assert page.events[0].event_index == 4
        assert page.continuation_token is None


class TestErrors:
    """Tests for transport error mapping."""

    @pytest.mark.asyncio
    async def test_jsonrpc_error_is_not_retryable(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": 33, "message": "Invalid continuation token"}})

        with pytest.raises(TransportError) as exc:
            await rpc_provider(handler).get_events("0x1", 0, 1)

        assert exc.value.retryable is False
        assert exc.value.code == "33"

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        with pytest.raises(TransportError) as exc:
            await rpc_provider(lambda request: httpx.Response(503, text="busy")).block_number()
        assert exc.value.retryable is True

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self):
        with pytest.raises(TransportError) as exc:
            await rpc_provider(lambda request: httpx.Response(401)).block_number()
        assert exc.value.retryable is False

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransportError) as exc:
            await rpc_provider(handler).block_number()
        assert exc.value.retryable is True
        assert exc.value.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError) as exc:
            await rpc_provider(handler).block_number()
        assert exc.value.retryable is True


class TestOtherMethods:
    """Tests for block, head and transaction status lookups."""

    @pytest.mark.asyncio
    async def test_block_number(self):
        assert await rpc_provider(lambda request: result(request, 1234)).block_number() == 1234

    @pytest.mark.asyncio
    async def test_get_block(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["method"] == "starknet_getBlockWithTxHashes"
            assert body["params"] == {"block_id": {"block_number": 77}}
            return result(request, {"block_number": 77, "block_hash": "0xb", "timestamp": 1_700_000_123})

        header = await rpc_provider(handler).get_block(77)

        assert header.timestamp == 1_700_000_123
        assert header.block_hash == "0xb"

    @pytest.mark.asyncio
    async def test_transaction_status(self):
        def handler(request):
            return result(request, {"finality_status": "ACCEPTED_ON_L2", "execution_status": "SUCCEEDED"})

        status = await rpc_provider(handler).get_transaction_status("0x1")

        assert status.finality_status == FinalityStatus.ACCEPTED_ON_L2
        assert status.execution_status == ExecutionStatus.SUCCEEDED
        assert status.is_included

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_none(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": 29, "message": "Transaction hash not found"}})

        assert await rpc_provider(handler).get_transaction_status("0x1") is None
