"""
Entry point for running the call control API.

Usage:
    python -m call_signaling

Starts the FastAPI server on CONTROL_API_HOST:CONTROL_API_PORT (default 0.0.0.0:8000).
"""
import uvicorn

from logging_setup import setup_logging

from .config import get_config

if __name__ == "__main__":
    config = get_config()
    setup_logging(level=config.log_level, use_json=True)

    uvicorn.run(
        "call_signaling.server:app",
        host=config.control_api_host,
        port=config.control_api_port,
        log_level="info"
    )
