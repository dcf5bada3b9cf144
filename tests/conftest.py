"""Shared fixtures: real signing keys, a mocked chain boundary, proof builders."""

from unittest.mock import MagicMock

import pytest
from eth_account import Account

from chain_client import ChainClient, SettlementResult
from gateway_config import GatewayConfig
from mint_client import create_payment_payload, encode_payment_header
from relay_engine import PaymentRelayEngine
from relayer_pool import RandomRelayerPool

NOW = 1_760_000_000
PAYER_KEY = "0x" + "11" * 32
RELAYER_KEY = "0x" + "22" * 32
PAY_TO = "0x97311349bB9f5aBE89BaC32cb74a3EA7483Ffe43"
TX_HASH = "0x" + "ab" * 32
NONCE = bytes.fromhex("5a" * 32)


@pytest.fixture
def payer():
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def config():
    return GatewayConfig(relayer_private_keys=(RELAYER_KEY,))


@pytest.fixture
def requirement(config):
    return {
        "scheme": "exact",
        "network": config.network,
        "maxAmountRequired": "1000000",
        "payTo": PAY_TO,
        "maxTimeoutSeconds": 300,
        "asset": config.asset_address,
        "extra": {"name": "USD Coin", "version": "2"},
    }


@pytest.fixture
def make_payload(payer, requirement, config):
    """Build a signed proof document; keyword overrides tweak the signing inputs."""

    def _make(**overrides):
        params = {"now": NOW, "nonce": NONCE}
        params.update(overrides)
        return create_payment_payload(payer, requirement, config.chain_id, **params)

    return _make


@pytest.fixture
def make_header(make_payload):
    def _make(payload=None, **overrides):
        return encode_payment_header(payload if payload is not None else make_payload(**overrides))

    return _make


@pytest.fixture
def mock_chain():
    chain = MagicMock(spec=ChainClient)
    chain.token_name.return_value = "USD Coin"
    chain.authorization_state.return_value = False
    chain.transfer_with_authorization.return_value = SettlementResult(
        tx_hash=TX_HASH, block_number=123, success=True
    )
    return chain


@pytest.fixture
def engine(config, mock_chain):
    pool = RandomRelayerPool(config.relayer_private_keys)
    return PaymentRelayEngine(config, mock_chain, pool, clock=lambda: NOW)
