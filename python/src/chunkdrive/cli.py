"""CLI entry point for chunkdrive."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from chunkdrive.config import ChunkDriveConfig, load_config
from chunkdrive.logging_config import configure_logging
from chunkdrive.server import create_app


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="chunkdrive",
        description="chunkdrive - user file storage on a chunked object store",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("chunkdrive.yaml"),
        help="Path to YAML configuration file (default: chunkdrive.yaml)",
    )
    parser.add_argument("--host", type=str, default=None, help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Port (overrides config)")
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=int,
        default=None,
        help="Seconds to wait for in-flight work at shutdown (default: 30)",
    )
    return parser.parse_args(argv)


def apply_overrides(config: ChunkDriveConfig, args: argparse.Namespace) -> ChunkDriveConfig:
    """Apply command-line overrides to a loaded config in place."""
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.log_level is not None:
        config.server.log_level = args.log_level
    if args.log_format is not None:
        config.server.log_format = args.log_format
    if args.shutdown_timeout is not None:
        config.server.shutdown_timeout = args.shutdown_timeout
    return config


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the chunkdrive CLI.

    Loads configuration, applies CLI overrides, and starts the server with
    uvicorn. A missing default config file is not an error: built-in
    defaults are used.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Basic stderr logging until the configured format is known.
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    logger = logging.getLogger("chunkdrive")

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        if args.config != Path("chunkdrive.yaml"):
            logger.error("Config file not found: %s", args.config)
            sys.exit(1)
        logger.info("No chunkdrive.yaml found, using defaults")
        config = ChunkDriveConfig()
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    apply_overrides(config, args)
    configure_logging(level=config.server.log_level, fmt=config.server.log_format)

    logger.info("Starting chunkdrive on %s:%d", config.server.host, config.server.port)

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
