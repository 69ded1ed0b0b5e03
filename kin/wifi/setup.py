"""WiFi setup mode.

Brings up the ``Kin_Setup`` access point and the setup API, then waits for a
phone to submit network credentials and a pairing code. Once the pairing code
arrives the access point is taken down and the device is given time to join
the chosen network. A device that fails to connect, or connects without
internet access, goes back to setup mode; after ``max_retries`` failures the
tool gives up with exit status 1.
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import signal
import threading
from collections.abc import Callable

from kin.config import WifiSetupConfig, WrapperPaths, load_wrapper_env
from kin.connectivity import has_internet

from .network import HotspotError, NmcliWifi
from .pairing import clear_pairing_code
from .server import SetupApiServer

LOGGER = logging.getLogger("wifi-setup")
LOG_FORMAT = "[%(name)s] [%(levelname)s] %(message)s"
RESTART_PAUSE = 2.0


class WifiSetup:
    def __init__(
        self,
        config: WifiSetupConfig,
        *,
        wifi: NmcliWifi | None = None,
        server: SetupApiServer | None = None,
        internet_probe: Callable[[str], bool] = has_internet,
        sleep: Callable[[float], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self.wifi = wifi or NmcliWifi(config.interface, logger=self._logger)
        self.server = server or SetupApiServer(
            wifi=self.wifi,
            pairing_code_file=config.pairing_code_file,
            setup_dir=config.setup_dir,
            bind_address=config.bind_address,
            port=config.http_port,
            logger=self._logger,
        )
        self._internet_probe = internet_probe
        self._stop_event = threading.Event()
        self._sleep = sleep or self._wait
        self._active = False

    def _wait(self, seconds: float) -> None:
        self._stop_event.wait(seconds)

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def portal_address(self) -> str:
        return self.config.hotspot_address.split("/", 1)[0]

    def start_setup_mode(self) -> None:
        """Hotspot first, then the API it serves."""
        self.wifi.start_hotspot(
            self.config.ap_ssid,
            name=self.config.hotspot_name,
            address=self.config.hotspot_address,
        )
        self._active = True
        self.server.start()
        self._logger.info("=====================================")
        self._logger.info("WiFi setup mode active!")
        self._logger.info("Connect to '%s' network", self.config.ap_ssid)
        self._logger.info("Open browser to: http://%s", self.portal_address)
        self._logger.info("=====================================")

    def stop_setup_mode(self) -> None:
        self.server.stop()
        if self._active:
            self.wifi.stop_hotspot(name=self.config.hotspot_name)
            self._active = False

    def _restart_setup_mode(self) -> None:
        clear_pairing_code(self.config.pairing_code_file)
        self.stop_setup_mode()
        self._sleep(RESTART_PAUSE)
        self.start_setup_mode()

    def wait_for_device(self) -> bool:
        checks = self.config.connect_checks
        for attempt in range(1, checks + 1):
            if self.wifi.device_connected():
                self._logger.info("WiFi device connected")
                return True
            self._logger.info("Waiting for WiFi connection... (%d/%d)", attempt, checks)
            self._sleep(self.config.connect_check_interval)
        return False

    def run(self) -> int:
        """Run setup mode until the device is online, retries run out, or stop()."""
        self._logger.info("Starting WiFi setup mode...")
        clear_pairing_code(self.config.pairing_code_file)
        try:
            self.start_setup_mode()
        except (HotspotError, OSError) as exc:
            self._logger.error("Failed to create access point: %s", exc)
            self.stop_setup_mode()
            return 1

        max_retries = self.config.max_retries
        retries = 0
        try:
            while retries < max_retries and not self.stopped:
                self._sleep(self.config.poll_interval)
                if self.stopped or not self.config.pairing_code_file.exists():
                    continue

                self._logger.info("Pairing code received, checking WiFi connection...")
                self.stop_setup_mode()
                self._logger.info("Waiting for WiFi connection to establish...")
                self._sleep(self.config.connect_check_interval)

                if not self.wait_for_device():
                    self._logger.error("WiFi connection failed - device not connected")
                    for line in self.wifi.device_details():
                        self._logger.info("  %s", line)
                elif self._internet_probe(self.config.connectivity_host):
                    self._logger.info("WiFi configured and internet connection established!")
                    return 0
                else:
                    self._logger.error("WiFi connected but no internet access")

                retries += 1
                if retries < max_retries and not self.stopped:
                    self._logger.info("Retrying... (%d/%d)", retries, max_retries)
                    self._restart_setup_mode()
        except (HotspotError, OSError) as exc:
            self._logger.error("Unable to restart setup mode: %s", exc)
            self.stop_setup_mode()
            return 1

        if self.stopped:
            self._logger.info("WiFi setup interrupted")
        else:
            self._logger.error("Failed to configure WiFi after %d attempts", max_retries)
        self.stop_setup_mode()
        return 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run Kin WiFi setup mode (access point + setup API).")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format=LOG_FORMAT)

    if os.geteuid() != 0:
        LOGGER.error("This script must be run as root (use sudo)")
        return 1
    if shutil.which("nmcli") is None:
        LOGGER.error("NetworkManager (nmcli) is not installed")
        LOGGER.info("Install it with: sudo apt-get install network-manager")
        return 1

    paths = WrapperPaths.from_env()
    config = WifiSetupConfig.from_env(load_wrapper_env(paths, include_client=False), paths=paths)
    config.setup_dir.mkdir(parents=True, exist_ok=True)

    setup = WifiSetup(config)

    def _handle_signal(signum, _frame) -> None:
        LOGGER.info("Received signal %s, leaving setup mode", signum)
        setup.stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)
    return setup.run()


if __name__ == "__main__":
    raise SystemExit(main())
