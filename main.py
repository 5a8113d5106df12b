#!/usr/bin/env python3
"""
Entry point for the WebSocket tunnel client.
"""

from wstunnel.main import main

if __name__ == "__main__":
    main()
