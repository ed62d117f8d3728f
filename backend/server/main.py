"""
Development runner for the bridge server.

Responsibilities:
- Load .env
- Run the ASGI app under uvicorn with reload

Production deployments point uvicorn at server.asgi:app directly.
"""

from __future__ import annotations

import os

import uvicorn
from dotenv import load_dotenv


def main() -> None:
    """Start uvicorn on HOST:PORT (default 0.0.0.0:8000)."""
    load_dotenv()

    uvicorn.run(
        "server.asgi:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_level="info",
        reload=os.environ.get("ENV", "dev") == "dev",  # Dev mode only
    )


if __name__ == "__main__":
    main()
