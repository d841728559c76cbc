"""
Tests for the starknet-py account submitter.

No node is contacted: the account's execute_v3 is mocked and inclusion is
polled from the stub chain.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from starknet_py.hash.selector import get_selector_from_name
from starknet_py.net.client_errors import ClientError

from stela_indexer.chain.account import StarknetAccountSubmitter
from stela_indexer.chain.base import ExecutionStatus, FinalityStatus, TransactionStatus
from stela_indexer.chain.stub import StubChain
from stela_indexer.errors import SubmissionError


@pytest.fixture
def chain():
    return StubChain()


@pytest.fixture
def submitter(chain):
    return StarknetAccountSubmitter(
        rpc_url="http://localhost:5050/rpc",
        address="0x123",
        private_key="0x1",
        chain_id="SN_SEPOLIA",
        provider=chain,
    )


class TestExecute:
    """Tests for signing and sending."""

    @pytest.mark.asyncio
    async def test_execute_builds_call(self, submitter):
        submitter.account.execute_v3 = AsyncMock(return_value=SimpleNamespace(transaction_hash=0xABC))

        tx_hash = await submitter.execute("0x5e1a", "liquidate", [7, 0])

        assert tx_hash == "0xabc"
        call = submitter.account.execute_v3.call_args.kwargs["calls"]
        assert call.to_addr == 0x5E1A
        assert call.selector == get_selector_from_name("liquidate")
        assert list(call.calldata) == [7, 0]

    @pytest.mark.asyncio
    async def test_node_rejection_is_submission_error(self, submitter):
        submitter.account.execute_v3 = AsyncMock(side_effect=ClientError(message="execution reverted"))

        with pytest.raises(SubmissionError):
            await submitter.execute("0x5e1a", "liquidate", [7, 0])

    def test_unknown_chain_id(self, chain):
        with pytest.raises(ValueError):
            StarknetAccountSubmitter("http://localhost", "0x1", "0x1", "SN_NOPE", chain)


class TestWaitForTransaction:
    """Tests for inclusion polling."""

    @pytest.mark.asyncio
    async def test_returns_when_included(self, submitter, chain):
        chain.tx_statuses["0x1"] = TransactionStatus(FinalityStatus.ACCEPTED_ON_L2, ExecutionStatus.SUCCEEDED)

        status = await submitter.wait_for_transaction("0x1", poll_interval=0.01)

        assert status.is_included

    @pytest.mark.asyncio
    async def test_reverted_raises(self, submitter, chain):
        chain.tx_statuses["0x1"] = TransactionStatus(
            FinalityStatus.ACCEPTED_ON_L2, ExecutionStatus.REVERTED, failure_reason="Agreement not overdue"
        )

        with pytest.raises(SubmissionError) as exc:
            await submitter.wait_for_transaction("0x1", poll_interval=0.01)

        assert exc.value.tx_hash == "0x1"

    @pytest.mark.asyncio
    async def test_rejected_raises(self, submitter, chain):
        chain.tx_statuses["0x1"] = TransactionStatus(FinalityStatus.REJECTED)

        with pytest.raises(SubmissionError):
            await submitter.wait_for_transaction("0x1", poll_interval=0.01)
