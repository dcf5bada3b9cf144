"""EIP-712 reconstruction and checks for EIP-3009 `TransferWithAuthorization`.

https://eips.ethereum.org/EIPS/eip-3009
"""

from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_keys.constants import SECPK1_N
from web3 import Web3

from payment_errors import AuthorizationExpiredError, BadSignatureError, NotYetValidError
from payment_proof import Authorization

PRIMARY_TYPE = "TransferWithAuthorization"

# EIP-2: asset contracts reject the upper half of the curve order.
SECPK1_HALF_N = SECPK1_N // 2

DOMAIN_TYPES: list[dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# Field order is part of the type hash.
AUTHORIZATION_TYPES: list[dict[str, str]] = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]


@dataclass(frozen=True)
class TransferDomain:
    """EIP-712 domain of the asset contract."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": Web3.to_checksum_address(self.verifying_contract),
        }


def build_transfer_message(authorization: Authorization) -> dict[str, Any]:
    return {
        "from": Web3.to_checksum_address(authorization.from_address),
        "to": Web3.to_checksum_address(authorization.to),
        "value": authorization.value,
        "validAfter": authorization.valid_after,
        "validBefore": authorization.valid_before,
        "nonce": authorization.nonce_bytes,
    }


def build_typed_data(domain: TransferDomain, message: dict[str, Any]) -> dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": DOMAIN_TYPES,
            PRIMARY_TYPE: AUTHORIZATION_TYPES,
        },
        "primaryType": PRIMARY_TYPE,
        "domain": domain.to_dict(),
        "message": message,
    }


def recover_signer(typed_data: dict[str, Any], signature: bytes | str) -> str:
    signable = encode_typed_data(full_message=typed_data)
    return Account.recover_message(signable, signature=signature)


def verify_signature(typed_data: dict[str, Any], signature: bytes | str) -> str:
    """Return the recovered signer, or raise BadSignatureError if it is not `from`."""
    expected = typed_data["message"]["from"]
    try:
        recovered = recover_signer(typed_data, signature)
    except Exception as exc:
        raise BadSignatureError(f"Invalid signature: {exc}", None, expected) from exc

    if recovered.lower() != expected.lower():
        raise BadSignatureError(
            "Signature does not match authorization.from", recovered, expected
        )
    if _signature_s(signature) > SECPK1_HALF_N:
        raise BadSignatureError("Signature s value is not canonical (high-s)", recovered, expected)
    return recovered


def _signature_s(signature: bytes | str) -> int:
    raw = bytes.fromhex(signature.removeprefix("0x")) if isinstance(signature, str) else signature
    return int.from_bytes(raw[32:64], "big")


def check_validity_window(valid_after: int, valid_before: int, now: int) -> None:
    """Enforce `validAfter < now < validBefore`; a zero validAfter has no lower bound."""
    if now >= valid_before:
        raise AuthorizationExpiredError(
            "Authorization expired",
            {"validBefore": str(valid_before), "now": now},
        )
    if valid_after > 0 and valid_after > now:
        raise NotYetValidError(
            "Authorization not yet valid",
            {"validAfter": str(valid_after), "now": now},
        )


def split_signature(signature: bytes) -> tuple[int, bytes, bytes]:
    """Split a 65-byte `r || s || v` signature into (v, r, s)."""
    if len(signature) != 65:
        raise ValueError(f"Expected a 65-byte signature, got {len(signature)} bytes")
    r = signature[0:32]
    s = signature[32:64]
    v = signature[64]
    if v in (0, 1):
        v += 27
    return v, r, s
