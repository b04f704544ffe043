#!/usr/bin/env python3
"""
Start the notification API server with uvicorn.

Serves the cron endpoints (/api/cron/notifications, /api/cron/test-push)
for schedulers that trigger runs over HTTP.

Usage:
    python -m backend.src.scripts.serve                  # Start with defaults
    python -m backend.src.scripts.serve --host 0.0.0.0   # Listen on all interfaces
    python -m backend.src.scripts.serve --reload         # Auto-reload for development

Exit codes:
    0   Server stopped normally
    1   CRON_SECRET is not set
"""

import argparse
import sys

import uvicorn


EXIT_OK = 0
EXIT_MISSING_SECRET = 1

APP_PATH = "backend.src.main:app"


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Start the Am Lich notification API server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  CRON_SECRET            Bearer token for the cron endpoints (required)
  VAPID_PUBLIC_KEY       Web Push public key
  VAPID_PRIVATE_KEY      Web Push private key
  AMLICH_DB_URL          Database URL
  AMLICH_LOG_LEVEL       Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
        """
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind the server to (default: 127.0.0.1). "
             "Use 0.0.0.0 to listen on all interfaces."
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind the server to (default: 8000)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart when code changes. Not recommended for production."
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    """Validate the cron secret and start uvicorn."""
    args = parse_args(argv)

    from backend.src.config.settings import get_settings

    settings = get_settings()
    if not settings.cron_configured:
        print(
            "\nERROR: CRON_SECRET environment variable is not set."
            "\nEvery cron endpoint would answer 500 without it.\n",
            file=sys.stderr,
        )
        sys.exit(EXIT_MISSING_SECRET)
    if not settings.vapid_configured:
        print("WARNING: VAPID keys not configured, pushes will not be delivered", file=sys.stderr)

    print("\nStarting Am Lich notification server...")
    print(f"Host: {args.host}")
    print(f"Port: {args.port}")
    print(f"Auto-reload: {'enabled' if args.reload else 'disabled'}")
    print(f"Health check: http://{args.host}:{args.port}/health")
    print("\nPress CTRL+C to stop the server\n")

    try:
        uvicorn.run(
            APP_PATH,
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level="info",
        )
    except KeyboardInterrupt:
        print("\n\nServer stopped by user (CTRL+C)")
        sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
