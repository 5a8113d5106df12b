"""Command line and environment variable loading and validation."""

import argparse
import os
from typing import Optional, Sequence

from dotenv import load_dotenv

from .models import TunnelSettings
from ..utils.exceptions import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger("config")

ENV_PREFIX = "WSTUNNEL_"


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser; every flag defaults to its WSTUNNEL_* variable."""
    parser = argparse.ArgumentParser(
        prog="wstunnel",
        description="Tunnel local TCP connections to a WebSocket endpoint."
    )
    parser.add_argument(
        "--certs-dir", default=_env("CERTS_DIR", ""),
        help="Directory holding cacert.pem for TLS to the target, or empty for no TLS"
    )
    parser.add_argument(
        "--server-name", default=_env("SERVER_NAME", ""),
        help="Name of the server for TLS verification, or empty for the target host"
    )
    parser.add_argument(
        "--target-host", default=_env("TARGET_HOST", ""),
        help="The target host:port to tunnel to"
    )
    parser.add_argument(
        "--port", default=_env("PORT", "8080"),
        help="The local port to listen on"
    )
    parser.add_argument(
        "--listen-addr", default=_env("LISTEN_ADDR", "127.0.0.1"),
        help="Address to listen on, empty string for all interfaces"
    )
    parser.add_argument(
        "--log-level", default=_env("LOG_LEVEL", "INFO"),
        help="Logging level"
    )
    parser.add_argument(
        "--log-file", default=_env("LOG_FILE", None),
        help="Optional log file name, written under ./logs"
    )
    parser.add_argument(
        "--env-file", default=None,
        help="Path to a .env file (defaults to ./.env)"
    )
    return parser


def load_environment_config(
        argv: Optional[Sequence[str]] = None,
        env_file: Optional[str] = None
) -> TunnelSettings:
    """
    Load and validate settings from the environment and command line.

    Args:
        argv: Command line arguments, defaults to sys.argv[1:]
        env_file: Optional path to .env file

    Returns:
        Validated tunnel settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--env-file", default=env_file)
    pre_args, _ = pre_parser.parse_known_args(argv)

    if pre_args.env_file:
        load_dotenv(pre_args.env_file)
    else:
        load_dotenv()

    logger.info("Loading configuration from command line and environment variables")

    args = build_parser().parse_args(argv)

    try:
        settings = TunnelSettings(
            target_host=args.target_host,
            certs_dir=args.certs_dir,
            server_name=args.server_name,
            listen_addr=args.listen_addr,
            port=int(args.port),
            log_level=args.log_level,
            log_file=args.log_file or None,
        )

        logger.info("Configuration loaded and validated successfully")
        return settings

    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def _env(key: str, default: Optional[str]) -> Optional[str]:
    """Get a WSTUNNEL_* environment variable."""
    return os.getenv(ENV_PREFIX + key, default)
