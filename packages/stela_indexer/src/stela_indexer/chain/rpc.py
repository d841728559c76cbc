"""
Starknet JSON-RPC provider.

Talks to a node over HTTP with httpx. Network failures, timeouts and 5xx
responses become retryable TransportErrors; JSON-RPC error objects and 4xx
responses are not retryable.

Spec: https://github.com/starkware-libs/starknet-specs
"""

import itertools
import logging
from typing import Any

import httpx
from starknet_py.hash.selector import get_selector_from_name

from stela_indexer.chain.base import (
    BlockHeader,
    ChainProvider,
    EventsPage,
    ExecutionStatus,
    FinalityStatus,
    RawEvent,
    TransactionStatus,
)
from stela_indexer.contracts.u256 import parse_felt
from stela_indexer.errors import TransportError

logger = logging.getLogger(__name__)

# starknet-specs error codes
TXN_HASH_NOT_FOUND = 29


class StarknetRpcProvider(ChainProvider):
    """
    JSON-RPC 2.0 client for a Starknet node.

    A transport can be injected (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self.transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _call(self, method: str, params: dict[str, Any] | list[Any]) -> Any:
        """Make a JSON-RPC call and return its result."""
        client = await self._get_client()
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        try:
            response = await client.post(self.rpc_url, json=request)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} timed out: {e}", code="TIMEOUT", retryable=True)
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise TransportError(f"HTTP request failed: {e}", code="HTTP_ERROR", retryable=True)

        if response.status_code >= 400:
            raise TransportError(
                f"{method} returned HTTP {response.status_code}",
                code=str(response.status_code),
                details={"body": response.text[:500]},
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            body = response.json()
        except ValueError:
            raise TransportError(f"{method} returned a non-JSON body", code="BAD_RESPONSE", retryable=True)

        error = body.get("error")
        if error:
            raise TransportError(
                str(error.get("message", "JSON-RPC error")),
                code=str(error.get("code")),
                details=error,
                retryable=False,
            )

        return body.get("result")

    async def get_events(
        self,
        address: str,
        from_block: int,
        to_block: int,
        keys: list[list[str]] | None = None,
        chunk_size: int = 100,
        continuation_token: str | None = None,
    ) -> EventsPage:
        event_filter: dict[str, Any] = {
            "from_block": {"block_number": from_block},
            "to_block": {"block_number": to_block},
            "address": address,
            "chunk_size": chunk_size,
        }
        if keys:
            event_filter["keys"] = keys
        if continuation_token:
            event_filter["continuation_token"] = continuation_token

        result = await self._call("starknet_getEvents", {"filter": event_filter})

        events = []
        for item in result.get("events", []):
            # Pending events carry no block number; they are picked up once included
            if item.get("block_number") is None:
                continue
            events.append(parse_emitted_event(item))

        return EventsPage(events=events, continuation_token=result.get("continuation_token"))

    async def get_block(self, block_number: int) -> BlockHeader:
        result = await self._call(
            "starknet_getBlockWithTxHashes",
            {"block_id": {"block_number": block_number}},
        )
        return BlockHeader(
            block_number=int(result.get("block_number", block_number)),
            timestamp=int(result["timestamp"]),
            block_hash=result.get("block_hash"),
        )

    async def block_number(self) -> int:
        return int(await self._call("starknet_blockNumber", []))

    async def get_transaction_status(self, tx_hash: str) -> TransactionStatus | None:
        try:
            result = await self._call("starknet_getTransactionStatus", {"transaction_hash": tx_hash})
        except TransportError as e:
            if e.code == str(TXN_HASH_NOT_FOUND):
                return None
            raise

        execution = result.get("execution_status")
        return TransactionStatus(
            finality_status=FinalityStatus(result["finality_status"]),
            execution_status=ExecutionStatus(execution) if execution else None,
            failure_reason=result.get("failure_reason"),
        )

    async def call_contract(self, contract_address: str, entrypoint: str, calldata: list[int]) -> list[int]:
        result = await self._call(
            "starknet_call",
            {
                "request": {
                    "contract_address": contract_address,
                    "entry_point_selector": hex(get_selector_from_name(entrypoint)),
                    "calldata": [hex(value) for value in calldata],
                },
                "block_id": "latest",
            },
        )
        return [parse_felt(value) for value in result]


def parse_emitted_event(item: dict[str, Any]) -> RawEvent:
    """Parse an EMITTED_EVENT object from starknet_getEvents."""
    transaction_index = item.get("transaction_index")
    event_index = item.get("event_index")
    return RawEvent(
        keys=list(item.get("keys", [])),
        data=list(item.get("data", [])),
        transaction_hash=item["transaction_hash"],
        block_number=int(item["block_number"]),
        block_hash=item.get("block_hash"),
        from_address=item.get("from_address"),
        transaction_index=parse_felt(transaction_index) if transaction_index is not None else None,
        event_index=parse_felt(event_index) if event_index is not None else None,
    )
