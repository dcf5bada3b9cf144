"""Static x402 payment requirements for the paid mint endpoints."""

from dataclasses import dataclass, field
from typing import Any

from gateway_config import GatewayConfig

FACILITATOR_HINT = "https://facilitator.thirdweb.com"
RESOURCE_URL = "https://402life.vercel.app/"

MINT_OUTPUT_SCHEMA: dict[str, Any] = {
    "input": {"type": "http", "method": "GET", "discoverable": True},
    "output": {
        "type": "object",
        "properties": {
            "requestId": {"type": "string"},
            "status": {"type": "string"},
            "queuedAt": {"type": "string"},
            "deliveryNotice": {"type": "string"},
            "userAddress": {"type": "string"},
            "tokenAmount": {"type": "string"},
        },
    },
}


@dataclass(frozen=True)
class PaymentRequirement:
    """One entry of the challenge's `accepts` array."""

    network: str
    asset: str
    pay_to: str
    max_amount_required: str
    description: str
    resource: str = RESOURCE_URL
    scheme: str = "exact"
    max_timeout_seconds: int = 300
    mime_type: str = "application/json"
    asset_name: str = "USD Coin"
    asset_version: str = "2"
    output_schema: dict[str, Any] = field(default_factory=lambda: MINT_OUTPUT_SCHEMA)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "outputSchema": self.output_schema,
            "extra": {
                "recipientAddress": self.pay_to,
                "name": self.asset_name,
                "version": self.asset_version,
                "primaryType": "TransferWithAuthorization",
            },
        }


def mint_offers(config: GatewayConfig) -> dict[str, PaymentRequirement]:
    return {
        "mint": PaymentRequirement(
            network=config.network,
            asset=config.asset_address,
            pay_to="0x97311349bB9f5aBE89BaC32cb74a3EA7483Ffe43",
            max_amount_required="1000000",
            description="Mint 10k 402人生. Cap for this endpoint is 100k $USDC.",
            asset_version=config.asset_domain_version,
        ),
        "mint-10usdc": PaymentRequirement(
            network=config.network,
            asset=config.asset_address,
            pay_to="0xe6499924e979Af0A2F49A56bB4982866117Cd559",
            max_amount_required="10000000",
            description="Mint 100k 402人生. Cap for this endpoint is 100k $USDC.",
            asset_version=config.asset_domain_version,
        ),
    }


def payment_required_body(requirement: PaymentRequirement, x402_version: int) -> dict[str, Any]:
    return {
        "error": "Payment required to access this resource",
        "accepts": [requirement.to_dict()],
        "x402Version": x402_version,
        "facilitator": FACILITATOR_HINT,
    }
