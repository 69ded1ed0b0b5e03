"""Host metrics attached to heartbeats.

Every reading is best effort: a sensor or tool that is missing reports ``0``
(or ``False`` for connectivity) rather than failing the heartbeat.
"""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

import psutil

from kin.commands import Runner, output_or_none, run
from kin.connectivity import has_internet
from kin.utils import round2

_LOGGER = logging.getLogger(__name__)

_TEMPERATURE_SENSORS = ("cpu_thermal", "cpu-thermal", "soc_thermal", "gpu", "coretemp", "arm")
_VCGENCMD_TEMP_RE = re.compile(r"(\d+\.\d+)")
_LINK_QUALITY_RE = re.compile(r"Link Quality=(\d+)/(\d+)")
_IW_INTERFACE_RE = re.compile(r"^\s*Interface\s+(\S+)", re.MULTILINE)
_IW_SIGNAL_RE = re.compile(r"signal:\s*(-?\d+(?:\.\d+)?)\s*dBm")
_SENSORS_FAN_RE = re.compile(r"fan[^:\n]*:\s*(\d+)", re.IGNORECASE)


def dbm_to_percent(signal_dbm: float) -> float:
    """Rough signal quality: -50 dBm and above is 100%, -100 dBm and below is 0%."""
    magnitude = abs(signal_dbm)
    if magnitude <= 50:
        return 100.0
    if magnitude >= 100:
        return 0.0
    return round2((100 - magnitude) * 2)


class MetricsCollector:
    """Collect the metrics block sent with every log-bearing heartbeat."""

    def __init__(
        self,
        *,
        connectivity_host: str = "8.8.8.8",
        runner: Runner = run,
        hwmon_root: Path = Path("/sys/class/hwmon"),
        thermal_paths: tuple[Path, ...] = (
            Path("/sys/class/thermal/thermal_zone0/temp"),
            Path("/sys/devices/virtual/thermal/thermal_zone0/temp"),
        ),
        internet_probe: Callable[[str], bool] | None = None,
        which: Callable[[str], str | None] = shutil.which,
        logger: logging.Logger | None = None,
    ) -> None:
        self._connectivity_host = connectivity_host
        self._runner = runner
        self._hwmon_root = hwmon_root
        self._thermal_paths = thermal_paths
        self._internet_probe = internet_probe or (lambda host: has_internet(host, timeout_seconds=5, runner=runner))
        self._which = which
        self._logger = logger or _LOGGER
        # Prime CPU percent measurement
        try:
            psutil.cpu_percent(interval=None)
        except Exception:  # pragma: no cover - psutil platform quirks
            pass

    def collect(self) -> dict[str, Any]:
        self._logger.debug("Starting metrics collection")
        metrics: dict[str, Any] = {
            "cpu_usage_percent": self.cpu_usage(),
            "memory_usage_percent": self.memory_usage(),
            "temperature": self.temperature(),
            "fan_speed": self.fan_speed(),
            "internet_available": self.internet_available(),
            "wifi_signal_strength": self.wifi_signal_strength(),
        }
        self._logger.debug("Metrics: %s", metrics)
        return metrics

    def cpu_usage(self) -> float:
        try:
            return round2(psutil.cpu_percent(interval=None))
        except Exception as exc:  # pragma: no cover - psutil platform quirks
            self._logger.debug("CPU usage unavailable: %s", exc)
            return 0.0

    def memory_usage(self) -> float:
        try:
            return round2(psutil.virtual_memory().percent)
        except Exception as exc:  # pragma: no cover - psutil platform quirks
            self._logger.debug("Memory usage unavailable: %s", exc)
            return 0.0

    def temperature(self) -> float:
        try:
            temps = psutil.sensors_temperatures()
        except (NotImplementedError, AttributeError):
            temps = {}
        for key in _TEMPERATURE_SENSORS:
            entries = temps.get(key)
            if entries and entries[0].current is not None:
                return round2(entries[0].current)

        output = output_or_none(["vcgencmd", "measure_temp"], runner=self._runner, timeout=5)
        if output:
            match = _VCGENCMD_TEMP_RE.search(output)
            if match:
                return round2(float(match.group(1)))

        for path in self._thermal_paths:
            try:
                raw = path.read_text(encoding="utf-8").strip()
                value = float(raw)
            except (OSError, ValueError):
                continue
            # sysfs reports millidegrees
            return round2(value / 1000 if len(raw) > 3 else value)
        return 0.0

    def fan_speed(self) -> int:
        if self._hwmon_root.is_dir():
            for fan_file in sorted(self._hwmon_root.glob("hwmon*/fan*_input")):
                try:
                    rpm = int(fan_file.read_text(encoding="utf-8").strip())
                except (OSError, ValueError):
                    continue
                if rpm > 0:
                    self._logger.debug("Fan found at %s = %d RPM", fan_file, rpm)
                    return rpm

        if self._which("sensors"):
            output = output_or_none(["sensors"], runner=self._runner, timeout=5)
            if output:
                match = _SENSORS_FAN_RE.search(output)
                if match:
                    return int(match.group(1))
        return 0

    def internet_available(self) -> bool:
        return bool(self._internet_probe(self._connectivity_host))

    def wifi_signal_strength(self) -> float:
        if self._which("iwconfig"):
            output = output_or_none(["iwconfig"], runner=self._runner, timeout=5)
            if output:
                match = _LINK_QUALITY_RE.search(output)
                if match:
                    current, maximum = int(match.group(1)), int(match.group(2))
                    if maximum:
                        strength = round2(current / maximum * 100)
                        if strength:
                            return strength
            self._logger.debug("iwconfig reported no link quality")

        if self._which("iw"):
            devices = output_or_none(["iw", "dev"], runner=self._runner, timeout=5)
            interface_match = _IW_INTERFACE_RE.search(devices or "")
            if interface_match:
                link = output_or_none(["iw", "dev", interface_match.group(1), "link"], runner=self._runner, timeout=5)
                signal_match = _IW_SIGNAL_RE.search(link or "")
                if signal_match:
                    signal_dbm = float(signal_match.group(1))
                    if signal_dbm:
                        return dbm_to_percent(signal_dbm)
            self._logger.debug("iw reported no signal")
        return 0.0
