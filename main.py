"""Tradeleague API entry point."""

from __future__ import annotations

import uvicorn

from tradeleague.api.app import create_api_app
from tradeleague.core.config import settings
from tradeleague.core.logging import setup_logging


setup_logging()

app = create_api_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
