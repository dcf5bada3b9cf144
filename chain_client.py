"""Web3 access to the EIP-3009 asset contract."""

from dataclasses import dataclass
from typing import Any

from web3 import Web3
from web3.contract import Contract
from web3.exceptions import TimeExhausted
from web3.types import TxParams, TxReceipt

from gateway_config import GatewayConfig
from logging_utils import get_logger
from payment_errors import RelayFailedError
from relayer_pool import RelayerIdentity

logger = get_logger(__name__)

TX_STATUS_SUCCESS = 1

ASSET_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "authorizer", "type": "address"},
            {"name": "nonce", "type": "bytes32"},
        ],
        "name": "authorizationState",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "validAfter", "type": "uint256"},
            {"name": "validBefore", "type": "uint256"},
            {"name": "nonce", "type": "bytes32"},
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass(frozen=True)
class SettlementResult:
    tx_hash: str
    block_number: int
    success: bool
    explorer: str | None = None

    def to_response_body(self) -> dict[str, Any]:
        return {
            "ok": self.success,
            "txHash": self.tx_hash,
            "blockNumber": self.block_number,
            "explorer": self.explorer,
        }


class ChainClient:
    """Reads from and submits to the configured asset contract."""

    def __init__(self, config: GatewayConfig, w3: Web3 | None = None):
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(
                config.rpc_url,
                request_kwargs={"timeout": config.rpc_timeout_seconds},
            )
        )
        self.chain_id = config.chain_id
        self.confirmation_timeout = config.confirmation_timeout_seconds
        self.asset: Contract = self.w3.eth.contract(address=config.asset_address, abi=ASSET_ABI)

    def token_name(self) -> str:
        return self.asset.functions.name().call()

    def authorization_state(self, authorizer: str, nonce: bytes) -> bool:
        return bool(self.asset.functions.authorizationState(authorizer, nonce).call())

    def transfer_with_authorization(
        self,
        relayer: RelayerIdentity,
        message: dict[str, Any],
        v: int,
        r: bytes,
        s: bytes,
    ) -> SettlementResult:
        """
        Submit `transferWithAuthorization` signed by the relayer and wait for one confirmation.

        Raises:
            RelayFailedError: On RPC failure, revert, or confirmation timeout
        """
        call = self.asset.functions.transferWithAuthorization(
            message["from"],
            message["to"],
            message["value"],
            message["validAfter"],
            message["validBefore"],
            message["nonce"],
            v,
            r,
            s,
        )
        try:
            tx_params: TxParams = {
                "from": relayer.address,
                "nonce": self.w3.eth.get_transaction_count(relayer.address, "pending"),
                "chainId": self.chain_id,
            }
            tx = call.build_transaction(tx_params)
            signed = relayer.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            logger.warning("Submission via relayer %s failed: %s", relayer.address, exc)
            raise RelayFailedError(str(exc)) from exc

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info("Transaction submitted by %s: %s", relayer.address, tx_hash_hex)

        try:
            receipt: TxReceipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.confirmation_timeout
            )
        except TimeExhausted as exc:
            raise RelayFailedError(
                f"Timed out after {self.confirmation_timeout}s waiting for {tx_hash_hex}",
                tx_hash_hex,
            ) from exc
        except Exception as exc:
            raise RelayFailedError(str(exc), tx_hash_hex) from exc

        block_number = int(receipt["blockNumber"])
        if (status := receipt.get("status", 0)) != TX_STATUS_SUCCESS:
            raise RelayFailedError(
                f"Transaction {tx_hash_hex} reverted in block {block_number} (status={status})",
                tx_hash_hex,
            )

        logger.info("Transaction %s confirmed in block %d", tx_hash_hex, block_number)
        return SettlementResult(tx_hash=tx_hash_hex, block_number=block_number, success=True)
