#!/usr/bin/env python3
"""Kin device monitor: heartbeats, logs, metrics and remote interventions."""

from __future__ import annotations

import sys
from pathlib import Path

try:
    from kin.device.monitor import main
except ModuleNotFoundError:
    repo_dir = Path(__file__).resolve().parents[1]
    if str(repo_dir) not in sys.path:
        sys.path.insert(0, str(repo_dir))
    from kin.device.monitor import main


if __name__ == "__main__":
    sys.exit(main())
