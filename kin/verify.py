"""Production settings verification for a Kin device.

Reports on the reliability tweaks applied by ``production-setup.sh`` (WiFi
power save, CPU governor, watchdog, ZRAM, OverlayFS, ...). It only reports:
every problem is a warning or a failure in the summary and the exit status is
always 0 so installers can run it unconditionally.
"""

from __future__ import annotations

import argparse
import shutil
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Literal, TextIO

from kin.commands import CommandError, Runner, run

Status = Literal["ok", "warn", "fail"]

MIN_YEAR = 2024
EXPECTED_KEEPALIVE = "60"
BANNER = "=" * 41

ADDITIONAL_CHECKS = (
    "Audio devices: aplay -l && arecord -l",
    "Network status: nmcli device status",
    "Services: systemctl status agent-launcher otelcol",
    "Recent logs: journalctl -u agent-launcher -n 50",
)


@dataclass(slots=True)
class CheckResult:
    """Container for an individual verification step."""

    name: str
    status: Status
    detail: str = ""


@dataclass(slots=True)
class Host:
    """Where checks look: a filesystem root plus the commands to query it."""

    root: Path = Path("/")
    runner: Runner = run
    which: Callable[[str], str | None] = shutil.which
    today: Callable[[], date] = field(default=date.today)

    def path(self, absolute: str) -> Path:
        return self.root / absolute.lstrip("/")

    def stdout(self, cmd: Sequence[str]) -> str:
        """Command output regardless of exit status; empty when it cannot run."""
        try:
            return self.runner(cmd, check=False, timeout=10).stdout or ""
        except (CommandError, OSError):
            return ""

    def read(self, absolute: str) -> str | None:
        try:
            return self.path(absolute).read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None


def check_wifi_power_save(host: Host, interface: str = "wlan0") -> CheckResult:
    name = "WiFi Power Management"
    state = None
    for line in host.stdout(["iwconfig", interface]).splitlines():
        if "Power Management:" in line:
            state = line.split("Power Management:", 1)[1].strip()
            break
    if state is None:
        return CheckResult(name, "warn", f"{interface} interface not found or iw not available")
    if "off" in state:
        return CheckResult(name, "ok")
    return CheckResult(name, "fail", "Power save is enabled (should be off)")


def check_cpu_governor(host: Host) -> CheckResult:
    name = "CPU Performance Governor"
    governor = host.read("/sys/devices/system/cpu/cpu0/cpufreq/scaling_governor")
    if governor is None:
        return CheckResult(name, "warn", "CPU frequency scaling not available")
    governor = governor.strip()
    if governor == "performance":
        return CheckResult(name, "ok")
    return CheckResult(name, "fail", f"Governor is '{governor}' (should be 'performance')")


def check_hardware_watchdog(host: Host) -> CheckResult:
    name = "Hardware Watchdog"
    if host.which("watchdog") is None:
        return CheckResult(name, "warn", "watchdog not installed")
    state = host.stdout(["systemctl", "is-active", "watchdog"]).strip() or "inactive"
    if state == "active":
        return CheckResult(name, "ok")
    return CheckResult(name, "warn", f"Watchdog service is {state} (should be active)")


def check_zram(host: Host) -> CheckResult:
    name = "ZRAM Swap"
    if "zram" in host.stdout(["swapon", "--show"]):
        return CheckResult(name, "ok")
    return CheckResult(name, "warn", "ZRAM swap not active")


def check_overlay_root(host: Host) -> CheckResult:
    name = "OverlayFS (Read-Only Root)"
    if any(line.startswith("overlay on / ") for line in host.stdout(["mount"]).splitlines()):
        return CheckResult(name, "ok")
    return CheckResult(
        name,
        "warn",
        "OverlayFS NOT enabled - SD card vulnerable to corruption. "
        "Run: sudo raspi-config -> Performance -> Overlay File System -> Enable",
    )


def check_system_time(host: Host) -> CheckResult:
    name = "System Time (NTP Sync)"
    year = host.today().year
    if year >= MIN_YEAR:
        return CheckResult(name, "ok")
    return CheckResult(name, "fail", f"System year is {year} (should be >= {MIN_YEAR})")


def check_power_button(host: Host) -> CheckResult:
    name = "Power Button Disabled"
    config = host.read("/etc/systemd/logind.conf.d/disable-power-button.conf")
    if config is None:
        return CheckResult(name, "warn", "Power button not configured to be disabled")
    for line in config.splitlines():
        if "HandlePowerKey" in line and "ignore" in line:
            return CheckResult(name, "ok")
    return CheckResult(name, "warn", "Power button config exists but may not be set to ignore")


def check_usb_autosuspend(host: Host) -> CheckResult:
    name = "USB Autosuspend (ReSpeaker)"
    rules = host.read("/etc/udev/rules.d/99-respeaker-power.rules")
    if rules is None:
        return CheckResult(name, "warn", "ReSpeaker power management udev rules not found")
    if "power/control" in rules:
        return CheckResult(name, "ok")
    return CheckResult(name, "warn", "udev rules exist but power management not configured")


def check_journal_limits(host: Host) -> CheckResult:
    name = "Journal Log Limits"
    if host.path("/etc/systemd/journald.conf.d/size-limit.conf").is_file():
        return CheckResult(name, "ok")
    return CheckResult(name, "warn", "Journal log limits not configured")


def check_tcp_keepalive(host: Host) -> CheckResult:
    name = "TCP Keepalives"
    value = host.stdout(["sysctl", "-n", "net.ipv4.tcp_keepalive_time"]).strip()
    if value == EXPECTED_KEEPALIVE:
        return CheckResult(name, "ok")
    return CheckResult(name, "warn", f"TCP keepalive time is {value or 'unknown'} (expected {EXPECTED_KEEPALIVE})")


CHECKS: tuple[Callable[[Host], CheckResult], ...] = (
    check_wifi_power_save,
    check_cpu_governor,
    check_hardware_watchdog,
    check_zram,
    check_overlay_root,
    check_system_time,
    check_power_button,
    check_usb_autosuspend,
    check_journal_limits,
    check_tcp_keepalive,
)


def run_checks(host: Host | None = None, *, out: TextIO | None = None) -> list[CheckResult]:
    """Run every check in order, printing progress to ``out`` when given."""
    host = host or Host()
    total = len(CHECKS)
    results: list[CheckResult] = []
    for index, check in enumerate(CHECKS, start=1):
        try:
            result = check(host)
        except Exception as exc:  # pylint: disable=broad-except
            result = CheckResult(_check_title(check), "warn", f"Check failed: {exc}")
        results.append(result)
        if out is not None:
            print(f"[{index}/{total}] {result.name}", file=out)
            print(f"  {_describe(result)}", file=out)
    return results


def _check_title(check: Callable[[Host], CheckResult]) -> str:
    return check.__name__.removeprefix("check_").replace("_", " ").title()


def _describe(result: CheckResult) -> str:
    if result.status == "ok":
        return "OK"
    label = "WARNING" if result.status == "warn" else "FAIL"
    return f"{label}: {result.detail}"


def print_summary(results: list[CheckResult], out: TextIO | None = None) -> None:
    out = out or sys.stdout
    failures = sum(1 for result in results if result.status == "fail")
    warnings = sum(1 for result in results if result.status == "warn")
    print("", file=out)
    print(BANNER, file=out)
    print("  Verification Summary", file=out)
    print(BANNER, file=out)
    if not failures and not warnings:
        print("All checks passed!", file=out)
        print("", file=out)
        print("This device is configured for production deployment.", file=out)
    elif not failures:
        print(f"{warnings} warning(s) found", file=out)
        print("", file=out)
        print("Device is mostly ready but some optimizations are missing.", file=out)
        print("Run ./reliability/production-setup.sh to fix warnings.", file=out)
    else:
        print(f"{failures} critical issue(s), {warnings} warning(s)", file=out)
        print("", file=out)
        print("Some critical settings are not properly configured.", file=out)
        print("Run ./reliability/production-setup.sh to fix issues.", file=out)
    print("", file=out)
    print("Additional Checks:", file=out)
    for hint in ADDITIONAL_CHECKS:
        print(f"  - {hint}", file=out)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Report on production reliability settings. Never fails: the exit status is always 0."
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=Path("/"),
        help="Filesystem root to inspect (default: /).",
    )
    args = parser.parse_args(argv)

    print(BANNER)
    print("  Kin AI Production Settings Verification")
    print(BANNER)
    print()
    results = run_checks(Host(root=args.root), out=sys.stdout)
    print_summary(results)
    return 0


if __name__ == "__main__":
    sys.exit(main())
