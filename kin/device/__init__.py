"""
Device monitor: heartbeats, metrics and remote interventions

This package keeps the conversation orchestrator informed about a Kin device:

- Authentication: Ed25519 challenge/response, cached bearer token
- Heartbeats: periodic POST with recent launcher logs and host metrics
- Interventions: remotely requested ``restart`` / ``reinstall`` actions

Key modules:
- orchestrator: httpx client for the device endpoints
- auth: challenge signing and token expiry handling
- metrics: CPU, memory, temperature, fan, connectivity and WiFi signal
- interventions: parsing and execution of intervention requests
- monitor: the poll loop and its command line entry point
"""

from __future__ import annotations

__all__ = [
    "auth",
    "interventions",
    "journal",
    "metrics",
    "monitor",
    "orchestrator",
]
