"""Proxy discovery and dialing of the upstream target."""

import base64
import http.client
import os
import socket
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

import socks
from requests.utils import get_environ_proxies, select_proxy, should_bypass_proxies

from .network import split_host_port
from ..utils.exceptions import DialError
from ..utils.logging import get_logger

logger = get_logger("core.proxy")

SOCKS_SCHEMES = ("socks5", "socks5h")
DEFAULT_PORTS = {"ws": 80, "wss": 443, "http": 80, "https": 443, "socks5": 1080, "socks5h": 1080}


@dataclass(frozen=True)
class ProxyEndpoint:
    """A proxy discovered from the environment."""
    scheme: str
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_url(cls, url: str) -> "ProxyEndpoint":
        """Parse a proxy URL, assuming http:// when the scheme is missing."""
        if "://" not in url:
            url = f"http://{url}"

        parsed = urlparse(url)
        if not parsed.hostname:
            raise ValueError(f"Proxy URL must include a hostname: {url}")

        scheme = parsed.scheme.lower()
        return cls(
            scheme=scheme,
            host=parsed.hostname,
            port=parsed.port or DEFAULT_PORTS.get(scheme, 80),
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
        )


def lookup_url(location: str) -> str:
    """Rewrite ws:// and wss:// to http:// and https:// for proxy lookup only."""
    scheme, sep, rest = location.partition("://")
    if scheme in ("ws", "wss"):
        scheme = scheme.replace("ws", "http", 1)
    return f"{scheme}{sep}{rest}"


def target_address(location: str) -> Tuple[str, int]:
    """Return (host, port) of a ws:// or wss:// location."""
    parsed = urlparse(location)
    return split_host_port(parsed.netloc, DEFAULT_PORTS.get(parsed.scheme, 80))


def socks_proxy_from_environment() -> Optional[ProxyEndpoint]:
    """
    Return the SOCKS5 proxy named by ALL_PROXY, if any.

    Values with any other scheme, or that cannot be parsed, are ignored.
    """
    raw = os.environ.get("ALL_PROXY") or os.environ.get("all_proxy")
    if not raw:
        return None

    try:
        endpoint = ProxyEndpoint.from_url(raw)
    except ValueError as e:
        logger.warning(f"Ignoring ALL_PROXY: {e}")
        return None

    if endpoint.scheme not in SOCKS_SCHEMES:
        return None
    return endpoint


def http_proxy_from_environment(location: str) -> Optional[ProxyEndpoint]:
    """
    Return the HTTP(S) proxy the environment selects for ``location``.

    The location's scheme is rewritten for the lookup only. NO_PROXY is
    honoured and ALL_PROXY is not considered here.
    """
    url = lookup_url(location)
    proxies = get_environ_proxies(url)
    proxies.pop("all", None)

    proxy_url = select_proxy(url, proxies)
    if not proxy_url:
        return None

    try:
        return ProxyEndpoint.from_url(proxy_url)
    except ValueError as e:
        raise DialError(f"Invalid proxy configuration {proxy_url!r}: {e}") from e


def dial(location: str) -> socket.socket:
    """
    Open a raw connection to the target of ``location``.

    Tries, in order and exclusively: a SOCKS5 proxy from ALL_PROXY,
    an HTTP CONNECT proxy from HTTP_PROXY/HTTPS_PROXY, a direct connection.

    Raises:
        DialError: If any step of the chosen route fails
    """
    try:
        host, port = target_address(location)
    except ValueError as e:
        raise DialError(f"Invalid target location {location}: {e}") from e

    socks_proxy = socks_proxy_from_environment()
    if socks_proxy is not None:
        if should_bypass_proxies(lookup_url(location), no_proxy=None):
            logger.debug(f"{host}:{port} matches NO_PROXY, dialing directly")
            return _dial_direct(host, port)
        return _dial_socks(socks_proxy, host, port)

    http_proxy = http_proxy_from_environment(location)
    if http_proxy is None:
        return _dial_direct(host, port)

    return _dial_connect(http_proxy, host, port)


def _dial_direct(host: str, port: int) -> socket.socket:
    logger.debug(f"Dialing {host}:{port} directly")
    try:
        return socket.create_connection((host, port))
    except OSError as e:
        raise DialError(f"Failed to connect to {host}:{port}: {e}") from e


def _dial_socks(proxy: ProxyEndpoint, host: str, port: int) -> socket.socket:
    logger.debug(f"Dialing {host}:{port} through SOCKS5 proxy {proxy.address}")
    try:
        return socks.create_connection(
            (host, port),
            proxy_type=socks.SOCKS5,
            proxy_addr=proxy.host,
            proxy_port=proxy.port,
            proxy_rdns=True,
            proxy_username=proxy.username,
            proxy_password=proxy.password,
        )
    except OSError as e:
        raise DialError(f"SOCKS5 proxy {proxy.address} failed to reach {host}:{port}: {e}") from e


def _dial_connect(proxy: ProxyEndpoint, host: str, port: int) -> socket.socket:
    """Open a CONNECT tunnel through an HTTP proxy and take over its socket."""
    logger.debug(f"Dialing {host}:{port} through HTTP proxy {proxy.address}")

    headers = {}
    if proxy.username is not None:
        credentials = f"{proxy.username}:{proxy.password or ''}".encode("utf-8")
        headers["Proxy-Authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")

    conn = http.client.HTTPConnection(proxy.host, proxy.port)
    conn.set_tunnel(host, port, headers=headers)
    try:
        conn.connect()
    except (OSError, http.client.HTTPException) as e:
        conn.close()
        raise DialError(f"CONNECT {host}:{port} via {proxy.address} failed: {e}") from e

    return hijack(conn)


def hijack(conn: http.client.HTTPConnection) -> socket.socket:
    """
    Detach the socket from an HTTP connection.

    Ownership moves to the caller; the HTTP connection is left without
    a socket and never reads or writes it again.
    """
    sock, conn.sock = conn.sock, None
    if sock is None:
        raise DialError("HTTP connection has no socket to take over")
    return sock
