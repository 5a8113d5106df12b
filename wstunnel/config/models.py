"""Configuration data models."""

import ssl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

CA_FILENAME = "cacert.pem"
WS_ORIGIN = "http://localhost/"

TLS_MIN_VERSION = ssl.TLSVersion.TLSv1_2
TLS_CIPHERS: Tuple[str, ...] = (
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
)
TLS_CURVES: Tuple[str, ...] = ("P-521", "P-384", "P-256")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class TunnelSettings:
    """Startup parameters as supplied on the command line or environment."""
    target_host: str
    certs_dir: str = ""
    server_name: str = ""
    listen_addr: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate settings after initialization."""
        if not self.target_host:
            raise ValueError("target host cannot be empty")

        if "/" in self.target_host:
            raise ValueError(f"target host must be host:port, got {self.target_host!r}")

        if not (0 <= self.port <= 65535):
            raise ValueError("port must be between 0 and 65535")

        if self.certs_dir and not Path(self.certs_dir).is_dir():
            raise ValueError(f"certs directory not found: {self.certs_dir}")

        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")


@dataclass(frozen=True)
class TLSSettings:
    """TLS client settings for the upstream connection."""
    ca_file: Path
    server_name: str
    context: ssl.SSLContext = field(repr=False, compare=False)
    min_version: ssl.TLSVersion = TLS_MIN_VERSION
    ciphers: Tuple[str, ...] = TLS_CIPHERS
    curves: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WSConfig:
    """WebSocket endpoint the tunnel upgrades to."""
    location: str
    origin: str = WS_ORIGIN
    tls: Optional[TLSSettings] = None

    @property
    def scheme(self) -> str:
        return self.location.split("://", 1)[0]


@dataclass(frozen=True)
class TunnelConfig:
    """Complete, read-only tunnel configuration built once at startup."""
    target_host: str
    listen_addr: str
    port: int
    ws: WSConfig

    @property
    def tls(self) -> Optional[TLSSettings]:
        return self.ws.tls
