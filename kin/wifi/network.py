"""NetworkManager (``nmcli``) wrappers used by the WiFi setup flow."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from kin.commands import CommandError, CommandTimeout, Runner, run

LOGGER = logging.getLogger(__name__)

HOTSPOT_NAME = "Kin_Hotspot"
HOTSPOT_ADDRESS = "192.168.4.1/24"
CONNECT_TIMEOUT = 30
SCAN_TIMEOUT = 10

# nmcli terse output escapes ':' and '\' inside fields with a backslash.
_TERSE_SEPARATOR = re.compile(r"(?<!\\):")


class HotspotError(RuntimeError):
    pass


class WifiConnectError(RuntimeError):
    """Joining a network failed; the message is fit to show to the user."""


@dataclass(frozen=True)
class WifiNetwork:
    ssid: str
    encrypted: bool

    def to_dict(self) -> dict[str, object]:
        return {"ssid": self.ssid, "encrypted": self.encrypted}


def _unescape(field: str) -> str:
    return field.replace("\\:", ":").replace("\\\\", "\\")


def split_terse(line: str) -> list[str]:
    return [_unescape(part) for part in _TERSE_SEPARATOR.split(line)]


def parse_scan(output: str) -> list[WifiNetwork]:
    """Parse ``nmcli -t -f SSID,SECURITY device wifi list``.

    Hidden networks (empty SSID) are dropped and each SSID is kept once, in
    scan order.
    """
    seen: set[str] = set()
    networks: list[WifiNetwork] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = split_terse(line)
        ssid = fields[0].strip()
        if not ssid or ssid in seen:
            continue
        security = fields[1].strip() if len(fields) > 1 else ""
        seen.add(ssid)
        networks.append(WifiNetwork(ssid=ssid, encrypted=bool(security) and security != "--"))
    return networks


def friendly_connect_error(stderr: str, ssid: str) -> str:
    message = stderr.strip() or "Unknown error"
    if "Secrets were required" in message:
        return "Wrong password or authentication failed"
    if "No network with SSID" in message:
        return f'Network "{ssid}" disappeared. Try rescanning.'
    return message


def parse_device_state(output: str) -> str:
    """``GENERAL.STATE:100 (connected)`` -> ``connected``."""
    for line in output.splitlines():
        key, _, value = line.partition(":")
        if key.strip() == "GENERAL.STATE":
            match = re.search(r"\(([^)]*)\)", value)
            return (match.group(1) if match else value).strip()
    return ""


class NmcliWifi:
    """WiFi operations on one interface through ``nmcli``."""

    def __init__(
        self,
        interface: str = "wlan0",
        *,
        runner: Runner = run,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.interface = interface
        self._runner = runner
        self._sleep = sleep
        self._logger = logger or LOGGER

    def _nmcli(self, *args: str, check: bool = True, timeout: float = SCAN_TIMEOUT) -> str:
        result = self._runner(["nmcli", *args], check=check, timeout=timeout)
        return result.stdout or ""

    def interface_exists(self) -> bool:
        try:
            return self._runner(["ip", "link", "show", self.interface], check=False, timeout=5).returncode == 0
        except CommandError:
            return False

    def start_hotspot(
        self,
        ssid: str,
        *,
        name: str = HOTSPOT_NAME,
        address: str = HOTSPOT_ADDRESS,
        settle_seconds: float = 3.0,
    ) -> None:
        """Create and bring up a shared-IPv4 access point."""
        self._logger.info("Creating WiFi access point using NetworkManager: %s", ssid)
        if not self.interface_exists():
            raise HotspotError(f"WiFi interface {self.interface} not found")
        self._nmcli("connection", "delete", name, check=False)
        try:
            self._nmcli(
                "connection", "add", "type", "wifi", "ifname", self.interface,
                "con-name", name, "autoconnect", "no", "ssid", ssid,
            )  # fmt: skip
            self._nmcli(
                "connection", "modify", name,
                "802-11-wireless.mode", "ap",
                "802-11-wireless.band", "bg",
                "ipv4.method", "shared",
                "ipv4.address", address,
            )  # fmt: skip
            self._logger.info("Starting hotspot...")
            self._nmcli("connection", "up", name, timeout=CONNECT_TIMEOUT)
        except CommandError as exc:
            raise HotspotError(f"Failed to start hotspot: {exc}") from exc
        self._sleep(settle_seconds)
        if name not in self.active_connections():
            raise HotspotError("Hotspot created but not active")
        self._logger.info("Hotspot is active and running")

    def stop_hotspot(self, *, name: str = HOTSPOT_NAME) -> None:
        self._logger.info("Stopping WiFi access point...")
        for action in ("down", "delete"):
            try:
                self._nmcli("connection", action, name, check=False)
            except CommandError as exc:
                self._logger.debug("nmcli connection %s %s: %s", action, name, exc)
        self._logger.info("WiFi access point stopped")

    def active_connections(self) -> list[str]:
        try:
            output = self._nmcli("-t", "-f", "NAME", "connection", "show", "--active", check=False)
        except CommandError:
            return []
        return [split_terse(line)[0] for line in output.splitlines() if line.strip()]

    def rescan(self) -> None:
        """Ask for a fresh scan; cached results are used when it fails."""
        try:
            self._nmcli("device", "wifi", "rescan", check=False)
        except CommandError as exc:
            self._logger.debug("WiFi rescan failed: %s", exc)

    def scan_networks(self) -> list[WifiNetwork]:
        try:
            output = self._nmcli("-t", "-f", "SSID,SECURITY", "device", "wifi", "list")
        except CommandError as exc:
            self._logger.warning("WiFi scan failed: %s", exc)
            return []
        return parse_scan(output)

    def visible_ssids(self) -> list[str]:
        return [network.ssid for network in self.scan_networks()]

    def connect(self, ssid: str, password: str | None = None) -> None:
        """Join ``ssid``; raises :class:`WifiConnectError` with a readable reason."""
        cmd = ["device", "wifi", "connect", ssid]
        if password:
            cmd += ["password", password]
        cmd += ["ifname", self.interface]
        self._logger.info("Configuring WiFi: %s", ssid)
        try:
            result = self._runner(["nmcli", *cmd], check=False, timeout=CONNECT_TIMEOUT)
        except CommandTimeout as exc:
            raise WifiConnectError(
                f"WiFi connection timed out ({CONNECT_TIMEOUT}s). Network may be out of range."
            ) from exc
        except CommandError as exc:
            raise WifiConnectError(f"WiFi configuration error: {exc}") from exc
        if result.returncode != 0:
            raise WifiConnectError(f"Connection failed: {friendly_connect_error(result.stderr or '', ssid)}")
        self._logger.info("WiFi configured successfully")

    def device_state(self) -> str:
        try:
            output = self._nmcli("-t", "-f", "GENERAL.STATE", "device", "show", self.interface, check=False)
        except CommandError:
            return ""
        return parse_device_state(output)

    def device_connected(self) -> bool:
        return self.device_state() == "connected"

    def device_details(self, limit: int = 20) -> list[str]:
        try:
            output = self._nmcli("device", "show", self.interface, check=False)
        except CommandError as exc:
            return [str(exc)]
        return output.splitlines()[:limit]
