"""Fetch recent journal lines for the launcher service."""

from __future__ import annotations

from kin.commands import Runner, output_or_none, run

UNAVAILABLE = "Unable to retrieve logs"


def recent_logs(service: str, lines: int = 100, *, runner: Runner = run) -> str:
    output = output_or_none(
        ["journalctl", "-u", service, "--no-pager", "-n", str(lines)],
        runner=runner,
        timeout=15,
    )
    if output is None:
        return UNAVAILABLE
    return output
