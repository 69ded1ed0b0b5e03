"""
Kin - Raspberry Pi wrapper for the Kin AI voice-assistant client

This is the root package for the device-side tooling that keeps the Kin client
running on a Raspberry Pi: launching and supervising the client process,
reporting device health to the conversation orchestrator, and the operational
tools around them.

Core modules:
- config: Typed settings built from layered .env files and the environment
- device: Heartbeat/intervention monitor with Ed25519 device authentication
- launcher: Client repository sync, virtualenv setup, idle-restart supervision
- reinstall: Stop, uninstall and reinstall the wrapper
- verify: Production reliability settings report
- wifi: NetworkManager hotspot and pairing flow for first-time WiFi setup
"""

__version__ = "0.4.2"
