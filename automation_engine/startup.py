"""Command line interface: run the server, manage the database, inspect configuration."""

import sys
import argparse
from typing import List, Optional

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import AutomationEngineError
from .core.logging import get_logger, setup_logging


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="automation-engine",
        description="Workflow Automation Engine - validated workflow graphs executed from a trigger"
    )

    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")
    parser.add_argument("--database-url", help="Database connection URL")
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--max-concurrent-executions",
        type=int,
        help="Worker threads available for workflow runs"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the automation engine server")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Create missing database tables")
    db_subparsers.add_parser("reset", help="Drop and recreate all tables")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration from a preset or the environment, then apply CLI overrides."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.reload:
        overrides["reload"] = True
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.debug:
        overrides["debug"] = True
    if args.max_concurrent_executions:
        overrides["max_concurrent_executions"] = args.max_concurrent_executions

    # Re-validate so overrides go through the field validators
    return AppConfig.model_validate({**config.model_dump(), **overrides})


def run_server(config: AppConfig):
    """Run the automation engine server."""
    import uvicorn
    from .factory import create_app

    app = create_app(config)
    uvicorn.run(app, **config.get_uvicorn_config())


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    from .storage.database import create_tables, drop_tables, get_database_engine, reset_database_engine

    logger = get_logger(__name__)
    engine = get_database_engine(config.database_url, echo=config.database_echo)

    try:
        if command == "init":
            logger.info("Initializing database tables...")
            create_tables(engine)
            logger.info("Database tables created successfully")

        elif command == "reset":
            logger.info("Resetting database...")
            drop_tables(engine)
            create_tables(engine)
            logger.info("Database reset completed successfully")
    finally:
        reset_database_engine()


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Structured Logging: {config.log_structured}")
    print(f"  Max Concurrent Executions: {config.max_concurrent_executions}")
    print(f"  Unparsed Condition Default: {config.unparsed_condition_default}")
    print(f"  Webhook Timeout: {config.webhook_timeout_seconds}s")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
        print("All configuration settings are valid.")
    except AutomationEngineError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e.message}")
        sys.exit(1)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the command line interface."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_configuration(args)
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured
        )

        if args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)
            return

        validate_config(config)

        if args.command == "run" or args.command is None:
            run_server(config)

        elif args.command == "db":
            if args.db_command:
                run_database_command(args.db_command, config)
            else:
                print("Database command required. Use --help for options.")
                sys.exit(1)

    except (AutomationEngineError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
