"""CLI entry point for the devquery-rest server."""

import argparse

import structlog
import uvicorn

from ._app import create_app
from ._config import load_settings
from ._logging import configure_logging
from ._manager import ConnectionManager


def main() -> None:
    parser = argparse.ArgumentParser(description="DevQuery REST API server")
    parser.add_argument(
        "--config",
        help="Path to a YAML settings file (top-level 'devquery' key)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to listen on (default: 8000)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--cors-origins",
        nargs="*",
        help="Allowed CORS origins",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )
    args = parser.parse_args()

    settings = load_settings(args.config)
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level})
    configure_logging(settings.log_level, settings.log_format)

    structlog.get_logger(__name__).info(
        "server_starting",
        host=args.host,
        port=args.port,
        session_timeout_seconds=settings.session_timeout_seconds,
    )

    app = create_app(ConnectionManager(settings=settings), settings, cors_origins=args.cors_origins)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
