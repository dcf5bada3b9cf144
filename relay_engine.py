"""Verification and relay pipeline for a single payment proof.

Stages run strictly forward; the first failing stage raises a PaymentError
subclass and nothing after it runs::

    AwaitingProof -> Decoded -> ProtocolChecked -> TemporalChecked
      -> DomainReconstructed -> SignatureVerified -> RelayerChosen
      -> Submitted -> Confirmed | Failed
"""

import logging
import time
from dataclasses import replace
from enum import Enum
from typing import Callable

from chain_client import ChainClient, SettlementResult
from eip3009 import (
    TransferDomain,
    build_transfer_message,
    build_typed_data,
    check_validity_window,
    split_signature,
    verify_signature,
)
from gateway_config import GatewayConfig
from logging_utils import get_logger, log_json
from payment_errors import (
    AuthorizationAlreadyUsedError,
    InternalError,
    PaymentError,
    RelayFailedError,
)
from payment_proof import decode_payment_header, validate_proof
from relayer_pool import RelayerIdentity, RelayerPool

logger = get_logger(__name__)


class RelayState(str, Enum):
    AWAITING_PROOF = "AwaitingProof"
    DECODED = "Decoded"
    PROTOCOL_CHECKED = "ProtocolChecked"
    TEMPORAL_CHECKED = "TemporalChecked"
    DOMAIN_RECONSTRUCTED = "DomainReconstructed"
    SIGNATURE_VERIFIED = "SignatureVerified"
    RELAYER_CHOSEN = "RelayerChosen"
    SUBMITTED = "Submitted"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


class PaymentRelayEngine:
    """Stateless per request; the relayer pool is the only shared object."""

    def __init__(
        self,
        config: GatewayConfig,
        chain: ChainClient,
        pool: RelayerPool,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.chain = chain
        self.pool = pool
        self.clock = clock

    def settle(self, header: str) -> SettlementResult:
        """Verify the proof carried by `header` and relay it on-chain."""
        state = RelayState.AWAITING_PROOF
        try:
            document = decode_payment_header(header, self.config.max_payment_header_bytes)
            state = self._advance(state, RelayState.DECODED)
            log_json(logger, logging.DEBUG, "Payment proof", document)

            proof = validate_proof(
                document,
                x402_version=self.config.x402_version,
                network=self.config.network,
            )
            state = self._advance(state, RelayState.PROTOCOL_CHECKED)

            authorization = proof.authorization
            check_validity_window(
                authorization.valid_after, authorization.valid_before, int(self.clock())
            )
            state = self._advance(state, RelayState.TEMPORAL_CHECKED)

            message = build_transfer_message(authorization)
            typed_data = build_typed_data(self.reconstruct_domain(), message)
            state = self._advance(state, RelayState.DOMAIN_RECONSTRUCTED)

            signer = verify_signature(typed_data, proof.payload.signature_bytes)
            state = self._advance(state, RelayState.SIGNATURE_VERIFIED)
            logger.debug("Authorization signed by %s", signer)

            if self.config.check_authorization_state:
                self._ensure_unused(message["from"], authorization.nonce_bytes)

            v, r, s = split_signature(proof.payload.signature_bytes)
            relayer = self.pool.acquire()
            state = self._advance(state, RelayState.RELAYER_CHOSEN)
            try:
                state = self._advance(state, RelayState.SUBMITTED)
                result = self._relay(relayer, message, v, r, s)
            finally:
                self.pool.release(relayer)
            state = self._advance(state, RelayState.CONFIRMED)
        except PaymentError as exc:
            logger.warning("Payment rejected after %s: %s", state.value, exc.message)
            self._advance(state, RelayState.FAILED)
            raise
        return replace(result, explorer=self.config.explorer_url(result.tx_hash))

    def reconstruct_domain(self) -> TransferDomain:
        # Deployed token names differ (e.g. "USD Coin" vs "USDC"), so read it live.
        try:
            name = self.chain.token_name()
        except Exception as exc:
            logger.exception("Failed to read asset name")
            raise InternalError(f"Failed to read asset name: {exc}") from exc
        return TransferDomain(
            name=name,
            version=self.config.asset_domain_version,
            chain_id=self.config.chain_id,
            verifying_contract=self.config.asset_address,
        )

    def _ensure_unused(self, authorizer: str, nonce: bytes) -> None:
        try:
            used = self.chain.authorization_state(authorizer, nonce)
        except Exception as exc:
            logger.exception("Failed to read authorization state")
            raise InternalError(f"Failed to read authorization state: {exc}") from exc
        if used:
            raise AuthorizationAlreadyUsedError(
                "Authorization already used",
                {"from": authorizer, "nonce": "0x" + nonce.hex()},
            )

    def _relay(
        self, relayer: RelayerIdentity, message: dict, v: int, r: bytes, s: bytes
    ) -> SettlementResult:
        logger.info("Relaying %s -> %s via %s", message["from"], message["to"], relayer.address)
        try:
            return self.chain.transfer_with_authorization(relayer, message, v, r, s)
        except PaymentError:
            raise
        except Exception as exc:
            raise RelayFailedError(str(exc)) from exc

    @staticmethod
    def _advance(current: RelayState, target: RelayState) -> RelayState:
        logger.debug("%s -> %s", current.value, target.value)
        return target
