"""Decoding and protocol validation of the `X-PAYMENT` proof.

The header carries URL-safe base64 of a JSON document shaped like::

    {
      "x402Version": 1,
      "scheme": "exact",
      "network": "base",
      "payload": {
        "signature": "0x...",
        "authorization": {
          "from": "0x...", "to": "0x...", "value": "1000000",
          "validAfter": "0", "validBefore": "1760000000", "nonce": "0x..."
        }
      }
    }

Decoding yields the raw document; validation checks the protocol fields and
field presence in a fixed order and then produces a frozen `PaymentProof`.
"""

import base64
import binascii
import json
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from payment_errors import MalformedProofError, MissingFieldError, ProtocolMismatchError

SCHEME_EXACT = "exact"
UINT256_MAX = 2**256 - 1
REQUIRED_AUTHORIZATION_FIELDS = ("from", "to", "value", "validAfter", "validBefore", "nonce")

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")
_DECIMAL_RE = re.compile(r"^[0-9]+$")


def decode_payment_header(header: str, max_bytes: int | None = None) -> dict[str, Any]:
    """Turn a URL-safe base64 header value into the proof document."""
    if max_bytes is not None and len(header) > max_bytes:
        raise MalformedProofError("Payment header too large")

    normalized = header.replace("-", "+").replace("_", "/")
    remainder = len(normalized) % 4
    if remainder == 2:
        normalized += "=="
    elif remainder == 3:
        normalized += "="
    elif remainder == 1:
        raise MalformedProofError("Invalid payment header: bad base64 length")

    try:
        raw = base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedProofError(f"Invalid payment header: {exc}") from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedProofError("Invalid payment header: payload is not UTF-8") from exc
    try:
        document = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise MalformedProofError(f"Invalid payment header: {exc}") from exc

    if not isinstance(document, dict):
        raise MalformedProofError("Invalid payment header: proof must be a JSON object")
    return document


def _parse_uint256(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("must be an unsigned integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _DECIMAL_RE.match(value):
        # 78 digits covers 2**256 - 1; longer strings cannot fit.
        if len(value.lstrip("0")) > 78:
            raise ValueError("exceeds uint256")
        number = int(value)
    else:
        raise ValueError("must be an unsigned decimal string")
    if number < 0 or number > UINT256_MAX:
        raise ValueError("outside the uint256 range")
    return number


class Authorization(BaseModel):
    """EIP-3009 TransferWithAuthorization fields as presented by the payer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    from_address: str = Field(alias="from")
    to: str
    value: int
    valid_after: int = Field(alias="validAfter")
    valid_before: int = Field(alias="validBefore")
    nonce: str

    @field_validator("from_address", "to")
    @classmethod
    def _check_address(cls, value: str) -> str:
        if not _ADDRESS_RE.match(value):
            raise ValueError("must be a 20-byte hex address")
        return value

    @field_validator("value", "valid_after", "valid_before", mode="before")
    @classmethod
    def _check_uint256(cls, value: Any) -> int:
        return _parse_uint256(value)

    @field_validator("nonce")
    @classmethod
    def _check_nonce(cls, value: str) -> str:
        if not _BYTES32_RE.match(value):
            raise ValueError("must be 32 bytes of 0x-prefixed hex")
        return value

    @property
    def nonce_bytes(self) -> bytes:
        return bytes.fromhex(self.nonce[2:])


class ExactPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    signature: str
    authorization: Authorization

    @field_validator("signature")
    @classmethod
    def _check_signature(cls, value: str) -> str:
        if not _SIGNATURE_RE.match(value):
            raise ValueError("must be 65 bytes of 0x-prefixed hex")
        return value

    @property
    def signature_bytes(self) -> bytes:
        return bytes.fromhex(self.signature[2:])


class PaymentProof(BaseModel):
    """A decoded, schema-checked payment proof. Never mutated after creation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    x402_version: int = Field(alias="x402Version")
    scheme: str
    network: str
    payload: ExactPayload

    @property
    def authorization(self) -> Authorization:
        return self.payload.authorization


def _validation_message(exc: ValidationError) -> tuple[str, list[str]]:
    fields = []
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        fields.append(location)
        problems.append(f"{location}: {error['msg']}")
    return "Invalid payment proof: " + "; ".join(problems), fields


def validate_proof(document: dict[str, Any], *, x402_version: int, network: str) -> PaymentProof:
    """Check protocol version, scheme, network and required fields, in that order."""
    version = document.get("x402Version")
    if isinstance(version, bool) or not isinstance(version, int) or version != x402_version:
        raise ProtocolMismatchError(
            f"Unsupported x402Version: {version!r} (expected {x402_version})",
            {"check": "x402Version"},
        )

    scheme = document.get("scheme")
    if not isinstance(scheme, str) or scheme.lower() != SCHEME_EXACT:
        raise ProtocolMismatchError(
            f"Unsupported scheme: {scheme!r} (expected {SCHEME_EXACT!r})",
            {"check": "scheme"},
        )

    proof_network = document.get("network")
    if not isinstance(proof_network, str) or proof_network.lower() != network.lower():
        raise ProtocolMismatchError(
            f"Unsupported network: {proof_network!r} (expected {network!r})",
            {"check": "network"},
        )

    payload = document.get("payload")
    if not isinstance(payload, dict):
        raise MissingFieldError("payload")
    if payload.get("signature") is None:
        raise MissingFieldError("payload.signature")
    authorization = payload.get("authorization")
    if not isinstance(authorization, dict):
        raise MissingFieldError("payload.authorization")
    # 0 is a legal validAfter, so presence means "not None", never truthiness.
    for name in REQUIRED_AUTHORIZATION_FIELDS:
        if authorization.get(name) is None:
            raise MissingFieldError(f"payload.authorization.{name}")

    try:
        return PaymentProof.model_validate(document)
    except ValidationError as exc:
        message, fields = _validation_message(exc)
        raise MalformedProofError(message, {"fields": fields}) from exc
