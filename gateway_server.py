#!/usr/bin/env python3
"""Entry point for the x402 mint gateway."""

import os

from dotenv import load_dotenv

# LOG_LEVEL and the gateway settings may come from .env.
load_dotenv()

import uvicorn  # noqa: E402

from gateway_app import create_app  # noqa: E402

app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
