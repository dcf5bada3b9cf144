#!/usr/bin/env python3
import asyncio
import base64
import json
import os
import secrets
import time
from typing import Any

import httpx
from dotenv import load_dotenv
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from web3 import Web3

from eip3009 import TransferDomain, build_typed_data
from gateway_config import KNOWN_NETWORKS


def sign_authorization(
    account: LocalAccount, domain: TransferDomain, message: dict[str, Any]
) -> str:
    signable = encode_typed_data(full_message=build_typed_data(domain, message))
    signed = account.sign_message(signable)
    return Web3.to_hex(signed.signature)


def create_payment_payload(
    account: LocalAccount,
    requirement: dict[str, Any],
    chain_id: int,
    now: int | None = None,
    nonce: bytes | None = None,
    valid_after: int = 0,
    x402_version: int = 1,
) -> dict[str, Any]:
    """Sign an EIP-3009 authorization answering one `accepts` entry of a 402 challenge."""
    now_ts = int(time.time()) if now is None else now
    nonce_bytes = nonce if nonce is not None else secrets.token_bytes(32)
    extra = requirement.get("extra") or {}
    pay_to = Web3.to_checksum_address(requirement["payTo"])
    value = int(requirement["maxAmountRequired"])
    valid_before = now_ts + int(requirement.get("maxTimeoutSeconds") or 300)

    domain = TransferDomain(
        name=extra.get("name", "USD Coin"),
        version=extra.get("version", "2"),
        chain_id=chain_id,
        verifying_contract=requirement["asset"],
    )
    message = {
        "from": account.address,
        "to": pay_to,
        "value": value,
        "validAfter": valid_after,
        "validBefore": valid_before,
        "nonce": nonce_bytes,
    }

    return {
        "x402Version": x402_version,
        "scheme": requirement.get("scheme", "exact"),
        "network": requirement["network"],
        "payload": {
            "signature": sign_authorization(account, domain, message),
            "authorization": {
                "from": account.address,
                "to": pay_to,
                "value": str(value),
                "validAfter": str(valid_after),
                "validBefore": str(valid_before),
                "nonce": "0x" + nonce_bytes.hex(),
            },
        },
    }


def encode_payment_header(payload: dict[str, Any]) -> str:
    """URL-safe base64 of the JSON payload, padding stripped."""
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


async def main() -> None:
    load_dotenv()
    server_url = os.getenv("SERVER_URL", "http://localhost:8000")
    endpoint = os.getenv("MINT_ENDPOINT", "/api/mint")
    private_key = os.getenv("PRIVATE_KEY")
    if not private_key:
        raise ValueError("PRIVATE_KEY required in .env")

    account = Account.from_key(private_key)
    print(f"Client wallet: {account.address}")
    url = f"{server_url}{endpoint}"

    print("=" * 60)
    print("STEP 1: Request without payment (expect 402)")
    print("=" * 60)

    async with httpx.AsyncClient(timeout=180.0) as client:
        resp = await client.get(url)
        print(f"Status: {resp.status_code}")
        if resp.status_code != 402:
            print(f"Expected 402, got {resp.status_code}")
            print(f"Body: {resp.text}")
            return

        challenge = resp.json()
        requirement = challenge["accepts"][0]
        print(json.dumps(requirement, indent=2, ensure_ascii=False))

        network = str(requirement["network"]).lower()
        chain_id = int(os.getenv("CHAIN_ID") or KNOWN_NETWORKS[network]["chain_id"])

        print("\n" + "=" * 60)
        print("STEP 2: Sign TransferWithAuthorization")
        print("=" * 60)

        payload = create_payment_payload(
            account, requirement, chain_id, x402_version=int(challenge["x402Version"])
        )
        print(json.dumps(payload["payload"]["authorization"], indent=2))

        print("\n" + "=" * 60)
        print("STEP 3: Send request WITH payment")
        print("=" * 60)

        resp = await client.get(url, headers={"X-PAYMENT": encode_payment_header(payload)})
        print(f"Status: {resp.status_code}")
        print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
