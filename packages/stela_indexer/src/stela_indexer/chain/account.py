"""
Transaction submission through a starknet-py Account.

The account signs and sends invokes; inclusion is awaited by polling the
read provider so both paths share one node and one error mapping.
"""

import asyncio
import logging

from starknet_py.hash.selector import get_selector_from_name
from starknet_py.net.account.account import Account
from starknet_py.net.client_errors import ClientError
from starknet_py.net.client_models import Call
from starknet_py.net.full_node_client import FullNodeClient
from starknet_py.net.models import StarknetChainId
from starknet_py.net.signer.stark_curve_signer import KeyPair

from stela_indexer.chain.base import (
    ChainProvider,
    ChainSubmitter,
    ExecutionStatus,
    FinalityStatus,
    TransactionStatus,
)
from stela_indexer.contracts.u256 import parse_felt
from stela_indexer.errors import SubmissionError, TransportError

logger = logging.getLogger(__name__)

CHAIN_IDS = {
    "SN_MAIN": StarknetChainId.MAINNET,
    "SN_SEPOLIA": StarknetChainId.SEPOLIA,
}


class StarknetAccountSubmitter(ChainSubmitter):
    """
    Submitter backed by a funded account.

    Args:
        rpc_url: Node used for signing-time reads (nonce, fee estimate)
        address: Account contract address
        private_key: Stark private key (hex)
        chain_id: SN_MAIN or SN_SEPOLIA
        provider: Read provider used to poll transaction status
    """

    def __init__(
        self,
        rpc_url: str,
        address: str,
        private_key: str,
        chain_id: str,
        provider: ChainProvider,
    ):
        if chain_id not in CHAIN_IDS:
            raise ValueError(f"Unknown chain id: {chain_id}")

        self.provider = provider
        self.account = Account(
            address=parse_felt(address),
            client=FullNodeClient(node_url=rpc_url),
            key_pair=KeyPair.from_private_key(parse_felt(private_key)),
            chain=CHAIN_IDS[chain_id],
        )

    async def execute(self, contract_address: str, entrypoint: str, calldata: list[int]) -> str:
        call = Call(
            to_addr=parse_felt(contract_address),
            selector=get_selector_from_name(entrypoint),
            calldata=calldata,
        )

        try:
            response = await self.account.execute_v3(calls=call, auto_estimate=True)
        except ClientError as e:
            # Fee estimation fails when the call would revert
            raise SubmissionError(f"{entrypoint} rejected by node: {e.message}")
        except OSError as e:
            raise TransportError(f"Submission failed: {e}", code="HTTP_ERROR", retryable=True)

        tx_hash = hex(response.transaction_hash)
        logger.info(f"Submitted {entrypoint}", extra={"tx_hash": tx_hash})
        return tx_hash

    async def wait_for_transaction(self, tx_hash: str, poll_interval: float = 5.0) -> TransactionStatus:
        while True:
            status = await self.provider.get_transaction_status(tx_hash)

            if status is not None:
                if status.finality_status == FinalityStatus.REJECTED:
                    raise SubmissionError(
                        f"Transaction rejected: {status.failure_reason or 'no reason given'}",
                        tx_hash=tx_hash,
                    )
                if status.execution_status == ExecutionStatus.REVERTED:
                    raise SubmissionError(
                        f"Transaction reverted: {status.failure_reason or 'no reason given'}",
                        tx_hash=tx_hash,
                    )
                if status.is_included:
                    return status

            await asyncio.sleep(poll_interval)

    async def close(self) -> None:
        await self.provider.close()
