"""Gateway configuration, loaded once from the environment at process start."""

import logging
import os
from dataclasses import dataclass, field

from web3 import Web3

# Canonical x402 v1 network names.
KNOWN_NETWORKS: dict[str, dict[str, int | str]] = {
    "base": {"chain_id": 8453, "explorer": "https://basescan.org/tx"},
    "base-sepolia": {"chain_id": 84532, "explorer": "https://sepolia.basescan.org/tx"},
    "ethereum": {"chain_id": 1, "explorer": "https://etherscan.io/tx"},
    "polygon": {"chain_id": 137, "explorer": "https://polygonscan.com/tx"},
    "polygon-amoy": {"chain_id": 80002, "explorer": "https://amoy.polygonscan.com/tx"},
    "avalanche": {"chain_id": 43114, "explorer": "https://snowtrace.io/tx"},
    "avalanche-fuji": {"chain_id": 43113, "explorer": "https://testnet.snowtrace.io/tx"},
}

DEFAULT_RPC_URL = "https://mainnet.base.org"
DEFAULT_ASSET_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
RELAYER_STRATEGIES = ("random", "round_robin")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def parse_relayer_keys(raw: str | None) -> tuple[str, ...]:
    """Split a comma-separated key list, adding the `0x` prefix where omitted."""
    keys = []
    for entry in (raw or "").split(","):
        key = entry.strip()
        if not key:
            continue
        if not key.lower().startswith("0x"):
            key = "0x" + key
        keys.append(key)
    return tuple(keys)


@dataclass(frozen=True)
class GatewayConfig:
    rpc_url: str = DEFAULT_RPC_URL
    asset_address: str = DEFAULT_ASSET_ADDRESS
    network: str = "base"
    chain_id: int = 8453
    relayer_private_keys: tuple[str, ...] = field(default=(), repr=False)
    asset_domain_version: str = "2"
    x402_version: int = 1
    explorer_tx_base_url: str = "https://basescan.org/tx"
    rpc_timeout_seconds: int = 30
    confirmation_timeout_seconds: int = 120
    check_authorization_state: bool = True
    relayer_selection: str = "random"
    max_payment_header_bytes: int = 16384
    target_url: str = ""

    def __post_init__(self) -> None:
        try:
            checksummed = Web3.to_checksum_address(self.asset_address)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid asset address: {self.asset_address!r}") from exc
        object.__setattr__(self, "asset_address", checksummed)
        if self.relayer_selection not in RELAYER_STRATEGIES:
            raise ValueError(
                f"Unknown relayer selection {self.relayer_selection!r}; "
                f"expected one of {', '.join(RELAYER_STRATEGIES)}"
            )
        if self.chain_id <= 0:
            raise ValueError("chain_id must be > 0")
        if self.confirmation_timeout_seconds <= 0:
            raise ValueError("confirmation_timeout_seconds must be > 0")
        if self.rpc_timeout_seconds <= 0:
            raise ValueError("rpc_timeout_seconds must be > 0")

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """
        Build the configuration from environment variables.

        Raises:
            ValueError: If a variable is present but invalid
        """
        network = os.getenv("NETWORK", "base").strip().lower()
        known = KNOWN_NETWORKS.get(network)

        chain_id_raw = os.getenv("CHAIN_ID", "").strip()
        if chain_id_raw:
            chain_id = _env_int("CHAIN_ID", 0)
        elif known:
            chain_id = int(known["chain_id"])
        else:
            raise ValueError(
                f"CHAIN_ID is required for network {network!r} "
                f"(known networks: {', '.join(sorted(KNOWN_NETWORKS))})"
            )

        explorer_default = str(known["explorer"]) if known else ""
        return cls(
            rpc_url=os.getenv("RPC_URL", DEFAULT_RPC_URL).strip(),
            asset_address=os.getenv("ASSET_ADDRESS", DEFAULT_ASSET_ADDRESS).strip(),
            network=network,
            chain_id=chain_id,
            relayer_private_keys=parse_relayer_keys(os.getenv("RELAYER_PRIVATE_KEYS")),
            asset_domain_version=os.getenv("ASSET_DOMAIN_VERSION", "2").strip(),
            explorer_tx_base_url=os.getenv("EXPLORER_TX_BASE_URL", explorer_default).strip(),
            rpc_timeout_seconds=_env_int("RPC_TIMEOUT_SECONDS", 30),
            confirmation_timeout_seconds=_env_int("CONFIRMATION_TIMEOUT_SECONDS", 120),
            check_authorization_state=_env_bool("CHECK_AUTHORIZATION_STATE", True),
            relayer_selection=os.getenv("RELAYER_SELECTION", "random").strip().lower(),
            max_payment_header_bytes=_env_int("MAX_PAYMENT_HEADER_BYTES", 16384),
            target_url=os.getenv("TARGET_URL", "").strip(),
        )

    def explorer_url(self, tx_hash: str | None) -> str | None:
        if not tx_hash or not self.explorer_tx_base_url:
            return None
        return f"{self.explorer_tx_base_url.rstrip('/')}/{tx_hash}"

    def log_summary(self, logger: logging.Logger) -> None:
        """Log settings with relayer keys reduced to a count."""
        logger.info("Network: %s (chain %s)", self.network, self.chain_id)
        logger.info("RPC URL: %s", self.rpc_url)
        logger.info("Asset: %s (domain version %s)", self.asset_address, self.asset_domain_version)
        logger.info(
            "Relayers: %d configured, selection=%s",
            len(self.relayer_private_keys),
            self.relayer_selection,
        )
        logger.info("Authorization state check: %s", "on" if self.check_authorization_state else "off")
        logger.info("Proxy target: %s", self.target_url or "[NOT SET]")
