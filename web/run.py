#!/usr/bin/env python3
"""Entry point: launches the Live Transcriber web application via Uvicorn."""

import os
from pathlib import Path

import uvicorn

from livetr.src.logs import setup_logging

WEB_DIR = Path(__file__).resolve().parent


def main():
    # Write PID file
    pid_file = WEB_DIR / ".livetr.pid"
    pid_file.write_text(str(os.getpid()))

    setup_logging(os.environ.get("LIVETR_LOG_LEVEL", "INFO"))

    uvicorn.run(
        "web.app:app",
        host=os.environ.get("LIVETR_HOST", "127.0.0.1"),
        port=int(os.environ.get("LIVETR_PORT", "30319")),
    )


if __name__ == "__main__":
    main()
