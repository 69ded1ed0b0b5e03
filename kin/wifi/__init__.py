"""
WiFi onboarding for headless devices

Key modules:
- network: nmcli wrappers (hotspot, scan, connect, device state)
- pairing: pairing-code validation and marker file
- server: the JSON setup API served on the access point
- setup: setup mode with retries and its command line entry point
"""

from __future__ import annotations

__all__ = [
    "network",
    "pairing",
    "server",
    "setup",
]
