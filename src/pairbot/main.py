"""Main entry point for pairbot."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def setup_logging(
    level: str = "INFO",
    debug: bool = False,
    log_format: str = "text",
    log_to_file: bool = False,
    log_file_path: Path | None = None,
    log_file_max_bytes: int = 10 * 1024 * 1024,
    log_file_backup_count: int = 5,
) -> None:
    """Configure logging with console and optional rotating file output.

    Every line carries the request correlation id and, for lines logged
    from a session's event task, the session id. Phone numbers, JIDs,
    pairing codes and tokens are masked.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR)
        debug: If True, overrides level to DEBUG
        log_format: "text" for human-readable lines, "json" for one JSON object per line
        log_to_file: Enable file logging in addition to console
        log_file_path: Path to log file
        log_file_max_bytes: Maximum size per log file before rotation
        log_file_backup_count: Number of rotated backup files to keep
    """
    from pairbot.utils.logging import (
        CorrelationIDFilter,
        JSONFormatter,
        LogSanitizer,
        SanitizingFormatter,
        SessionContextFilter,
    )

    effective_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)
    root_logger.handlers.clear()

    formatter: logging.Formatter
    if log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = SanitizingFormatter(
            "%(asctime)s [%(levelname)s] [%(correlation_id)s] [%(session_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def _configure(handler: logging.Handler) -> None:
        handler.setLevel(effective_level)
        handler.setFormatter(formatter)
        # Filters on handlers, not loggers: child loggers don't inherit logger filters
        handler.addFilter(LogSanitizer())
        handler.addFilter(CorrelationIDFilter())
        handler.addFilter(SessionContextFilter())
        root_logger.addHandler(handler)

    _configure(logging.StreamHandler(sys.stdout))

    if log_to_file and log_file_path:
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            _configure(
                RotatingFileHandler(
                    log_file_path,
                    maxBytes=log_file_max_bytes,
                    backupCount=log_file_backup_count,
                    encoding="utf-8",
                )
            )
            logging.info(f"File logging enabled: {log_file_path}")
        except OSError as e:
            logging.warning(f"Failed to initialize file logging: {e}. Using console-only logging.")

    # The bridge client logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(max(effective_level, logging.INFO))
    logging.getLogger("httpx").setLevel(max(effective_level, logging.WARNING))


def main() -> None:
    """Run the pairbot dashboard and session manager."""
    import argparse

    import uvicorn

    from pairbot import __version__
    from pairbot.config import Settings, get_settings, reset_settings
    from pairbot.web.app import create_app

    env_settings = get_settings()

    parser = argparse.ArgumentParser(description="pairbot - multi-session chat bot")
    parser.add_argument(
        "--host",
        default=env_settings.host,
        help=f"Host to bind to (default: {env_settings.host}, env: HOST)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=env_settings.port,
        help=f"Port to bind to (default: {env_settings.port}, env: PORT)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=env_settings.debug,
        help="Enable debug mode (env: DEBUG)",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help=f"Data directory path (default: {env_settings.data_dir}, env: DATA_DIR)",
    )
    parser.add_argument(
        "--bridge-url",
        default=env_settings.bridge_url,
        help=f"Protocol bridge WebSocket URL (default: {env_settings.bridge_url}, env: BRIDGE_URL)",
    )
    parser.add_argument(
        "--log-level",
        default=env_settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Logging level (default: {env_settings.log_level}, env: LOG_LEVEL)",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration and exit without starting the server",
    )
    parser.add_argument("--version", action="version", version=f"pairbot {__version__}")

    args = parser.parse_args()

    reset_settings()
    cli_overrides: dict[str, object] = {
        "host": args.host,
        "port": args.port,
        "debug": args.debug,
        "bridge_url": args.bridge_url,
        "log_level": args.log_level,
    }
    if args.data_dir:
        cli_overrides["data_dir"] = Path(args.data_dir)
    settings = Settings(**cli_overrides)  # type: ignore[arg-type]

    problems = settings.check()
    if args.validate:
        settings.print_config()
        print()
        if problems:
            print("Configuration validation failed:")
            for problem in problems:
                print(f"  • {problem}")
            sys.exit(1)
        print("Configuration is valid")
        sys.exit(0)

    if problems:
        print("Configuration validation failed:")
        for problem in problems:
            print(f"  • {problem}")
        print("\nRun with --validate to check configuration without starting the server")
        sys.exit(1)

    setup_logging(
        level=settings.log_level,
        debug=settings.debug,
        log_format=settings.log_format,
        log_to_file=settings.log_to_file,
        log_file_path=settings.log_file_path if settings.log_to_file else None,
        log_file_max_bytes=settings.log_file_max_bytes,
        log_file_backup_count=settings.log_file_backup_count,
    )

    print("=" * 60)
    print(f"pairbot v{__version__}")
    print("=" * 60)
    print(f"Dashboard:     http://{settings.host}:{settings.port}")
    print(f"Bridge:        {settings.bridge_url}")
    print(f"Data dir:      {settings.data_dir}")
    print(f"Sessions dir:  {settings.sessions_dir}")
    print(f"Downloads dir: {settings.downloads_dir}")
    print(f"Log level:     {settings.log_level}")
    if settings.log_to_file:
        print(f"Log file:      {settings.log_file_path}")
    print("=" * 60)

    try:
        uvicorn.run(
            create_app(settings=settings),
            host=settings.host,
            port=settings.port,
            log_level="debug" if settings.debug else "info",
            log_config=None,
        )
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
