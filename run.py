#!/usr/bin/env python3
"""
WalletGuard Startup Script

Starts the WalletGuard FastAPI service with the alert evaluator and cache
sweep running in the background.

Usage:
    python run.py [--port PORT] [--host HOST] [--env ENV]

Environment Variables:
    PORT: Port to run the service on (default: 3001)
    ENV: Environment (development/production)
    LOG_LEVEL: Logging level (DEBUG/INFO/WARNING/ERROR)
    DATA_PROVIDER_URL: Base URL of the wallet/market data API
"""

import argparse
import sys

import structlog
import uvicorn

from walletguard.config import settings
from walletguard.logging_config import configure_logging

logger = structlog.get_logger()


def parse_arguments():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="WalletGuard - Wallet Risk Scoring and Alert Monitoring"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=settings.PORT,
        help=f"Port to run the service on (default: {settings.PORT})"
    )

    parser.add_argument(
        "--host", "-H",
        type=str,
        default="0.0.0.0",
        help="Host to bind the service to (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--env", "-e",
        type=str,
        choices=["development", "production"],
        default=settings.ENV,
        help=f"Environment mode (default: {settings.ENV})"
    )

    parser.add_argument(
        "--reload", "-r",
        action="store_true",
        help="Enable auto-reload for development"
    )

    parser.add_argument(
        "--log-level", "-l",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL,
        help=f"Log level (default: {settings.LOG_LEVEL})"
    )

    return parser.parse_args()


def validate_environment():
    """Validate environment setup"""
    errors = []

    if not settings.DATA_PROVIDER_URL.startswith(("http://", "https://")):
        errors.append("DATA_PROVIDER_URL must be an http(s) URL")

    if settings.ALERT_TRIGGER_POLICY not in ("latch", "rearm"):
        errors.append("ALERT_TRIGGER_POLICY must be 'latch' or 'rearm'")

    if settings.ALERT_CHECK_INTERVAL <= 0 or settings.CACHE_SWEEP_INTERVAL <= 0:
        errors.append("ALERT_CHECK_INTERVAL and CACHE_SWEEP_INTERVAL must be positive")

    if errors:
        print("Environment validation failed:")
        for error in errors:
            print(f"   - {error}")
        print("\nPlease check your .env file.")
        return False

    return True


def main():
    """Main entry point"""
    args = parse_arguments()
    configure_logging(args.log_level)

    if not validate_environment():
        sys.exit(1)

    # Alerts and cache live in process memory, so a single worker only
    uvicorn_config = {
        "app": "walletguard.main:app",
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level.lower(),
        "access_log": True,
        "reload": args.reload or args.env == "development",
        "workers": 1,
    }

    try:
        logger.info("Starting WalletGuard",
                    host=args.host,
                    port=args.port,
                    env=args.env,
                    data_provider=settings.DATA_PROVIDER_URL)
        uvicorn.run(**uvicorn_config)
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")


if __name__ == "__main__":
    main()
