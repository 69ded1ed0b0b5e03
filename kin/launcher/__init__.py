"""
Agent launcher: keeps the Kin client checked out, installed and running

Key modules:
- repo: clone / hard sync of the client repository and update detection
- venv: virtualenv creation and requirement installation
- supervisor: client process supervision with idle-restart
- app: the launcher sequence and its command line entry point
"""

from __future__ import annotations

__all__ = [
    "app",
    "repo",
    "supervisor",
    "venv",
]
