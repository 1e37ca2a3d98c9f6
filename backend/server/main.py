"""
Development entry point for the real-time hub.

    python backend/server/main.py
"""

from __future__ import annotations

import os

import uvicorn


if __name__ == "__main__":
    uvicorn.run(
        "server.asgi:app",
        app_dir=os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        log_level="info",
        reload=os.environ.get("ENV", "dev") == "dev",
    )
