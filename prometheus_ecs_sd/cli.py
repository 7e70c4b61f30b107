"""Argument parsing, configuration loading, and daemon bootstrap."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys

from . import __version__
from .config import AppConfig, load_config
from .daemon import Daemon
from .exceptions import ConfigError, DiscoveryError
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prometheus-ecs-sd",
        description="Generate Prometheus file_sd target files for Alicloud ECS",
    )
    parser.add_argument(
        "-c", "--config",
        default="config/ecs_sd_config.yml",
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "-o", "--output",
        help="Output file for file_sd targets (overrides output.file)",
    )
    parser.add_argument(
        "--listen-address",
        help="Address for the /metrics endpoint (overrides web.listen_address)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single discovery cycle and exit",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command-line flags on top of the loaded configuration."""
    if args.output:
        config = dataclasses.replace(
            config, output=dataclasses.replace(config.output, file=args.output),
        )
    if args.listen_address:
        config = dataclasses.replace(
            config, web=dataclasses.replace(config.web, listen_address=args.listen_address),
        )
    return config


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    config = apply_overrides(config, args)
    configure_logging(config.logging)

    if args.validate:
        logger.info("Configuration is valid")
        return 0

    daemon = Daemon(config)

    try:
        if args.once:
            logger.info("Running single discovery cycle (--once)")
            return 0 if daemon.run_once() else 1
        daemon.run()
    except (DiscoveryError, OSError) as exc:
        logger.error("Fatal error: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0

    return 0
