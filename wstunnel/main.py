"""Main orchestration module for the WebSocket tunnel client."""

import logging
import signal
import sys
from typing import Optional, Sequence

from .config.builder import build_tunnel_config
from .config.environment import load_environment_config
from .core.tunnel import TunnelListener
from .utils.console import console
from .utils.exceptions import ConfigurationError, ListenerError, WSTunnelError
from .utils.logging import setup_logging, get_logger

logger = get_logger("main")


def signal_handler(signum, frame, listener: TunnelListener):
    """Handle shutdown signals gracefully."""
    console.print_warning(f"\nReceived signal {signum}, shutting down...")
    listener.close()


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point."""
    setup_logging()

    try:
        console.print_header("Loading Configuration")
        settings = load_environment_config(argv)
        setup_logging(level=getattr(logging, settings.log_level), log_file=settings.log_file)

        config = build_tunnel_config(settings)
        console.print_success(f"Tunnelling to {config.ws.location}")

        listener = TunnelListener(config)
        host, port = listener.bind()

        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s, f, listener))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s, f, listener))

        console.print_info(f"Listening on {host}:{port}. Press Ctrl+C to stop.")
        listener.serve_forever()

    except ConfigurationError as e:
        console.print_error(f"Configuration error: {e}")
        sys.exit(1)
    except ListenerError as e:
        console.print_error(f"Listener error: {e}")
        sys.exit(1)
    except WSTunnelError as e:
        console.print_error(f"Tunnel error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error in main")
        console.print_error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
