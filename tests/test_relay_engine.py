"""Tests for the end-to-end verification and relay pipeline."""

import logging
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
from eth_keys.constants import SECPK1_N

import eip3009
from payment_errors import (
    AuthorizationAlreadyUsedError,
    AuthorizationExpiredError,
    BadSignatureError,
    ConfigurationError,
    InternalError,
    MalformedProofError,
    NotYetValidError,
    RelayFailedError,
)
from relay_engine import PaymentRelayEngine
from relayer_pool import RandomRelayerPool, RelayerIdentity, RelayerPool

from .conftest import NOW, RELAYER_KEY, TX_HASH


class TestSettle:
    """Tests for PaymentRelayEngine.settle."""

    def test_success(self, engine, mock_chain, make_header, payer):
        """A valid proof is relayed once and reported with an explorer link."""
        result = engine.settle(make_header())

        assert result.success is True
        assert result.tx_hash == TX_HASH
        assert result.block_number == 123
        assert result.explorer == f"https://basescan.org/tx/{TX_HASH}"

        mock_chain.transfer_with_authorization.assert_called_once()
        relayer, message, v, r, s = mock_chain.transfer_with_authorization.call_args.args
        assert relayer.address == RelayerIdentity.from_key(RELAYER_KEY).address
        assert message["from"] == payer.address
        assert message["value"] == 1000000
        assert v in (27, 28)
        assert len(r) == len(s) == 32

    def test_signature_verified_exactly_once(self, engine, make_header):
        """Recovery runs once per accepted proof."""
        with patch("relay_engine.verify_signature", wraps=eip3009.verify_signature) as spy:
            engine.settle(make_header())
        spy.assert_called_once()

    def test_relayer_is_never_the_payer(self, engine, mock_chain, make_header, payer):
        """Value moves from the payer; the relayer only pays gas."""
        engine.settle(make_header())
        relayer, message, *_ = mock_chain.transfer_with_authorization.call_args.args
        assert relayer.address != message["from"]

    def test_malformed_header(self, engine, mock_chain):
        """Undecodable headers stop before any chain access."""
        with pytest.raises(MalformedProofError):
            engine.settle("%%%")
        mock_chain.token_name.assert_not_called()

    def test_expired_regardless_of_signature(self, engine, mock_chain, make_payload, make_header):
        """An expired proof is rejected as expired even with a garbage signature."""
        payload = make_payload(now=NOW - 400)
        payload["payload"]["signature"] = "0x" + "00" * 65

        with pytest.raises(AuthorizationExpiredError):
            engine.settle(make_header(payload))
        mock_chain.token_name.assert_not_called()
        mock_chain.transfer_with_authorization.assert_not_called()

    def test_expiry_boundary(self, engine, make_header):
        """validBefore == now is already expired."""
        with pytest.raises(AuthorizationExpiredError):
            engine.settle(make_header(now=NOW - 300))

    def test_not_yet_valid(self, engine, mock_chain, make_header):
        """A future validAfter is rejected before relaying."""
        with pytest.raises(NotYetValidError):
            engine.settle(make_header(valid_after=NOW + 60))
        mock_chain.transfer_with_authorization.assert_not_called()

    def test_wrong_signer(self, engine, mock_chain, make_payload, make_header, payer):
        """A proof claiming another payer fails recovery comparison."""
        payload = make_payload()
        payload["payload"]["authorization"]["from"] = "0x" + "12" * 20

        with pytest.raises(BadSignatureError) as exc_info:
            engine.settle(make_header(payload))
        assert exc_info.value.recovered is not None
        mock_chain.transfer_with_authorization.assert_not_called()

    def test_domain_name_read_from_chain(self, engine, mock_chain, make_header):
        """A token whose on-chain name differs from the signed domain fails verification."""
        mock_chain.token_name.return_value = "USDC"
        with pytest.raises(BadSignatureError):
            engine.settle(make_header())

    def test_name_read_failure(self, engine, mock_chain, make_header):
        """RPC failure while reconstructing the domain is an internal error."""
        mock_chain.token_name.side_effect = ConnectionError("rpc down")
        with pytest.raises(InternalError) as exc_info:
            engine.settle(make_header())
        assert "rpc down" in exc_info.value.reason
        assert exc_info.value.status_code == 500

    def test_already_used_authorization(self, engine, mock_chain, make_header, payer):
        """A consumed nonce is rejected without submitting."""
        mock_chain.authorization_state.return_value = True

        with pytest.raises(AuthorizationAlreadyUsedError) as exc_info:
            engine.settle(make_header())
        assert exc_info.value.status_code == 400
        mock_chain.authorization_state.assert_called_once_with(payer.address, bytes.fromhex("5a" * 32))
        mock_chain.transfer_with_authorization.assert_not_called()

    def test_authorization_state_read_failure(self, engine, mock_chain, make_header):
        """An RPC failure on the replay check is an internal error and nothing is sent."""
        mock_chain.authorization_state.side_effect = ConnectionError("rpc unreachable")

        with pytest.raises(InternalError) as exc_info:
            engine.settle(make_header())
        assert "rpc unreachable" in exc_info.value.reason
        assert exc_info.value.status_code == 500
        mock_chain.transfer_with_authorization.assert_not_called()

    def test_high_s_signature_never_submitted(self, engine, mock_chain, make_payload, make_header):
        """A malleated signature is a 400 before any relayer is used."""
        payload = make_payload()
        signature = bytes.fromhex(payload["payload"]["signature"][2:])
        high_s = SECPK1_N - int.from_bytes(signature[32:64], "big")
        malleated = signature[:32] + high_s.to_bytes(32, "big") + bytes([55 - signature[64]])
        payload["payload"]["signature"] = "0x" + malleated.hex()

        with pytest.raises(BadSignatureError) as exc_info:
            engine.settle(make_header(payload))
        assert exc_info.value.status_code == 400
        mock_chain.transfer_with_authorization.assert_not_called()

    def test_authorization_state_check_disabled(self, config, mock_chain, make_header):
        """With the check off, the nonce is left to the contract."""
        engine = PaymentRelayEngine(
            replace(config, check_authorization_state=False),
            mock_chain,
            RandomRelayerPool(config.relayer_private_keys),
            clock=lambda: NOW,
        )
        engine.settle(make_header())
        mock_chain.authorization_state.assert_not_called()

    def test_empty_relayer_pool(self, config, mock_chain, make_header):
        """No relayer keys is a configuration error reported per request."""
        engine = PaymentRelayEngine(config, mock_chain, RandomRelayerPool(()), clock=lambda: NOW)
        with pytest.raises(ConfigurationError) as exc_info:
            engine.settle(make_header())
        assert exc_info.value.to_response_body() == {
            "error": "No relayer available",
            "reason": "RELAYER_PRIVATE_KEYS is empty",
        }

    def test_relay_failure_releases_relayer(self, config, mock_chain, make_header):
        """The relayer goes back to the pool whether or not submission succeeds."""
        identity = RelayerIdentity.from_key(RELAYER_KEY)
        pool = MagicMock(spec=RelayerPool)
        pool.acquire.return_value = identity
        mock_chain.transfer_with_authorization.side_effect = RelayFailedError(
            "Transaction reverted", TX_HASH
        )
        engine = PaymentRelayEngine(config, mock_chain, pool, clock=lambda: NOW)

        with pytest.raises(RelayFailedError) as exc_info:
            engine.settle(make_header())
        assert exc_info.value.tx_hash == TX_HASH
        pool.release.assert_called_once_with(identity)

    def test_unexpected_chain_error_is_a_relay_failure(self, engine, mock_chain, make_header):
        """Anything raised by the submitter surfaces as RelayFailedError."""
        mock_chain.transfer_with_authorization.side_effect = RuntimeError("nonce too low")
        with pytest.raises(RelayFailedError, match="Relay failed") as exc_info:
            engine.settle(make_header())
        assert exc_info.value.reason == "nonce too low"

    def test_rejection_logs_last_state(self, engine, make_header, caplog):
        """Rejections log the last stage that passed."""
        with caplog.at_level(logging.WARNING, logger="relay_engine"):
            with pytest.raises(NotYetValidError):
                engine.settle(make_header(valid_after=NOW + 60))
        assert "Payment rejected after ProtocolChecked" in caplog.text

    def test_signature_not_logged(self, engine, make_payload, make_header, caplog):
        """The proof is logged at DEBUG with its signature redacted."""
        payload = make_payload()
        with caplog.at_level(logging.DEBUG, logger="relay_engine"):
            engine.settle(make_header(payload))
        assert "Payment proof" in caplog.text
        assert payload["payload"]["signature"] not in caplog.text
