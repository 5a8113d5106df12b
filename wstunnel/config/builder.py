"""Builds the immutable TLS, WebSocket and tunnel configuration."""

import ssl
from pathlib import Path
from typing import Optional, Tuple

from websockets.exceptions import InvalidURI
from websockets.uri import parse_uri

from .models import (
    CA_FILENAME, TLS_CIPHERS, TLS_CURVES, TLS_MIN_VERSION,
    TLSSettings, TunnelConfig, TunnelSettings, WSConfig
)
from ..core.network import server_name_for
from ..utils.exceptions import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger("config.builder")


def build_tls_config(
        certs_dir: Optional[str],
        target_host: str,
        server_name: str = ""
) -> Optional[TLSSettings]:
    """
    Build the TLS client settings for the upstream connection.

    Args:
        certs_dir: Directory holding cacert.pem, or empty for no TLS
        target_host: Target host:port
        server_name: Override for the name used in certificate verification

    Returns:
        TLS settings, or None when TLS is disabled

    Raises:
        ConfigurationError: If the CA bundle cannot be read or parsed
    """
    if not certs_dir:
        logger.info("No certs directory given, upstream connections will not use TLS")
        return None

    ca_file = Path(certs_dir) / CA_FILENAME
    logger.info(f"Loading CA certificate from {ca_file}")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = TLS_MIN_VERSION
    context.set_ciphers(":".join(TLS_CIPHERS))
    curves = _apply_curve_preference(context)

    try:
        context.load_verify_locations(cafile=str(ca_file))
    except (OSError, ValueError) as e:
        logger.error(f"Failed reading CA certificate: {e}")
        raise ConfigurationError(f"Failed reading CA certificate {ca_file}: {e}") from e

    return TLSSettings(
        ca_file=ca_file,
        server_name=server_name or server_name_for(target_host),
        context=context,
        curves=curves,
    )


def _apply_curve_preference(context: ssl.SSLContext) -> Tuple[str, ...]:
    """Set the preferred curves on ``context``; returns the curves actually applied."""
    preference = ":".join(TLS_CURVES)
    set_groups = getattr(context, "set_groups", None)
    if not callable(set_groups):
        logger.warning(
            f"Curve preference {preference} not applied: this ssl module cannot set groups, "
            "OpenSSL defaults are used"
        )
        return ()

    try:
        set_groups(preference)
    except ssl.SSLError as e:
        logger.warning(f"Curve preference {preference} not applied: {e}")
        return ()
    return TLS_CURVES


def build_ws_config(target_host: str, tls: Optional[TLSSettings]) -> WSConfig:
    """
    Build the WebSocket endpoint configuration.

    Raises:
        ConfigurationError: If the resulting location is not a valid WebSocket URI
    """
    scheme = "wss" if tls is not None else "ws"
    location = f"{scheme}://{target_host}"

    try:
        parse_uri(location)
    except (InvalidURI, ValueError) as e:
        raise ConfigurationError(f"Invalid target host {target_host!r}: {e}") from e

    return WSConfig(location=location, tls=tls)


def build_tunnel_config(settings: TunnelSettings) -> TunnelConfig:
    """Build the complete tunnel configuration once, before listening."""
    tls = build_tls_config(settings.certs_dir, settings.target_host, settings.server_name)
    ws = build_ws_config(settings.target_host, tls)

    logger.info(f"Upstream location {ws.location} (origin {ws.origin})")
    if tls:
        logger.info(f"Verifying upstream certificate for {tls.server_name}")

    return TunnelConfig(
        target_host=settings.target_host,
        listen_addr=settings.listen_addr,
        port=settings.port,
        ws=ws,
    )
