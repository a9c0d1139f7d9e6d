"""CLI entry point for the OrderBridge API server."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="orderbridge-server",
        description="OrderBridge API server: order webhooks in, courier deliveries out",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database, no Redis required",
    )
    parser.add_argument(
        "--public-url",
        help="Base URL providers use to reach this server; inbound webhook URLs are built from it",
    )
    parser.add_argument(
        "--no-retry-worker",
        action="store_true",
        help="Serve the API only; another instance polls the retry queue",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Override ORDERBRIDGE_LOG_LEVEL",
    )
    args = parser.parse_args(argv)

    # Settings are read when orderbridge.main is imported, so set the environment first.
    if args.local:
        os.environ["ORDERBRIDGE_LOCAL_MODE"] = "1"
    if args.public_url:
        os.environ["ORDERBRIDGE_PUBLIC_BASE_URL"] = args.public_url.rstrip("/")
    if args.no_retry_worker:
        os.environ["ORDERBRIDGE_RETRY_WORKER_ENABLED"] = "0"
    if args.log_level:
        os.environ["ORDERBRIDGE_LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run("orderbridge.main:app", host=args.host, port=args.port, log_level=args.log_level or "info")


if __name__ == "__main__":
    main()
