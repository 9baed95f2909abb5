#!/usr/bin/env python3
"""
Entry point for running claimy.

Usage:
    python -m claimy api [--host HOST] [--port PORT] [--reload]
    python -m claimy worker
"""

import argparse
import asyncio
import logging
import os

import uvicorn

from claimy.constants import CLAIMY_LOG_LEVEL
from claimy.worker import run_worker


def main():
    parser = argparse.ArgumentParser(description="Run the Claimy api or job worker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    api_parser = subparsers.add_parser("api", help="Run the HTTP api")
    api_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    api_parser.add_argument("--port", type=int, default=3001, help="Port to bind to (default: 3001)")
    api_parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    subparsers.add_parser("worker", help="Run the claim job worker")

    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv(CLAIMY_LOG_LEVEL, "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "api":
        print(f"Starting Claimy api on {args.host}:{args.port}")
        print(f"API docs will be available at http://{args.host}:{args.port}/docs")
        uvicorn.run(
            "claimy.fastapi.app:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
        )
    else:
        asyncio.run(run_worker())


if __name__ == "__main__":
    main()
