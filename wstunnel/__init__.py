"""
wstunnel - A local client for tunnelling TCP connections over WebSocket.

This package provides functionality to:
- Listen for local TCP connections
- Reach the remote WebSocket endpoint through SOCKS5 or HTTP CONNECT proxies
- Relay bytes in both directions over an optional TLS layer
"""

__version__ = "1.0.0"
