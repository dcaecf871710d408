#!/usr/bin/env python3
"""Main entry point for the zkbot webhook server.

Run with: python main.py
Or with: uvicorn main:app --reload
"""

import logging
import os

import uvicorn

from zkbot.api import app
from zkbot.config import BotConfig

logging.basicConfig(
    level=BotConfig.from_env().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8080")),
        reload=True,
    )
