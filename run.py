#!/usr/bin/env python3
"""
Startup script for the Thumbcache FastAPI application.

Usage:
    python3 run.py
    python3 run.py --port 8000
    python3 run.py --host 127.0.0.1 --port 5000 --reload
"""
import os
import argparse
import logging

import uvicorn


def configure_logging(level: str) -> None:
    """Configure root logging for the service process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Start the Thumbcache thumbnail API')
    parser.add_argument('--host', default=os.environ.get('HOST', '0.0.0.0'),
                        help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=int(os.environ.get('PORT', '5000')),
                        help='Port to bind to (default: 5000)')
    parser.add_argument('--workers', type=int, default=int(os.environ.get('WORKERS', '1')),
                        help='Number of worker processes (default: 1)')
    parser.add_argument('--reload', action='store_true',
                        default=os.environ.get('RELOAD', 'false').lower() == 'true',
                        help='Enable auto-reload for development')
    parser.add_argument('--log-level', default=os.environ.get('LOG_LEVEL', 'info'),
                        choices=['critical', 'error', 'warning', 'info', 'debug', 'trace'],
                        help='Log level (default: info)')
    return parser


def main(argv=None):
    """Start the FastAPI application."""
    args = build_parser().parse_args(argv)
    configure_logging('debug' if args.log_level == 'trace' else args.log_level)
    logger = logging.getLogger("thumbcache")

    # Determine if we're in development mode
    is_dev = args.reload or os.environ.get('ENV', '').lower() == 'development'

    if is_dev:
        logger.info(f"Starting Thumbcache API in development mode on {args.host}:{args.port}")
        uvicorn.run(
            "app_fastapi:app",
            host=args.host,
            port=args.port,
            reload=True,
            log_level=args.log_level,
        )
    else:
        logger.info(f"Starting Thumbcache API in production mode on {args.host}:{args.port} with {args.workers} workers")
        uvicorn.run(
            "app_fastapi:app",
            host=args.host,
            port=args.port,
            workers=args.workers,
            log_level=args.log_level,
            access_log=True,
            limit_concurrency=100,
        )


if __name__ == '__main__':
    main()
