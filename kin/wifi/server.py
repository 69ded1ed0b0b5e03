"""JSON setup API served while the device runs its own access point."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

from .network import NmcliWifi, WifiConnectError
from .pairing import is_valid_pairing_code, write_pairing_code

LOGGER = logging.getLogger(__name__)

VISIBLE_SSID_PREVIEW = 5


class SetupApiServer:
    """``GET /networks``, ``POST /configure`` and the static setup page."""

    def __init__(
        self,
        *,
        wifi: NmcliWifi,
        pairing_code_file: Path,
        setup_dir: Path | None = None,
        bind_address: str = "",
        port: int = 80,
        scan_settle_seconds: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.wifi = wifi
        self.pairing_code_file = pairing_code_file
        self.setup_dir = setup_dir
        self.bind_address = bind_address
        self.port = port
        self.scan_settle_seconds = scan_settle_seconds
        self._sleep = sleep
        self.logger = logger or LOGGER
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def server_port(self) -> int | None:
        return self._server.server_address[1] if self._server else None

    def start(self) -> None:
        if self._server:
            return
        handler_cls = self._build_handler()
        try:
            server = ThreadingHTTPServer((self.bind_address, self.port), handler_cls)
        except OSError as exc:
            self.logger.error("setup http: failed to bind %s:%s (%s)", self.bind_address, self.port, exc)
            raise
        self._server = server
        thread = threading.Thread(target=server.serve_forever, name="kin-wifi-setup-http", daemon=True)
        thread.start()
        self._thread = thread
        self.logger.info("HTTP server with API started on port %s", self.server_port)

    def stop(self) -> None:
        server = self._server
        if not server:
            return
        self.logger.info("Stopping HTTP server")
        server.shutdown()
        server.server_close()
        if self._thread:
            self._thread.join(timeout=2)
        self._server = None
        self._thread = None

    def configure(self, data: dict[str, Any]) -> tuple[HTTPStatus, dict[str, Any]]:
        """Handle a ``/configure`` submission; returns the status and JSON body."""
        ssid = str(data.get("ssid") or "").strip()
        password = str(data.get("password") or "").strip()
        pairing_code = str(data.get("pairing_code") or "").strip()

        if not ssid:
            return HTTPStatus.BAD_REQUEST, {"success": False, "error": "SSID is required"}
        if not is_valid_pairing_code(pairing_code):
            return HTTPStatus.BAD_REQUEST, {"success": False, "error": "Valid 4-digit pairing code is required"}

        try:
            write_pairing_code(self.pairing_code_file, pairing_code)
        except OSError as exc:
            self.logger.error("Unable to save pairing code: %s", exc)
            return HTTPStatus.INTERNAL_SERVER_ERROR, {"success": False, "error": str(exc)}

        self.wifi.rescan()
        self._sleep(self.scan_settle_seconds)
        visible = self.wifi.visible_ssids()
        if ssid not in visible:
            preview = ", ".join(visible[:VISIBLE_SSID_PREVIEW])
            return HTTPStatus.INTERNAL_SERVER_ERROR, {
                "success": False,
                "error": f'Network "{ssid}" not found. Available networks: {preview}',
            }

        try:
            self.wifi.connect(ssid, password or None)
        except WifiConnectError as exc:
            self.logger.error("%s", exc)
            return HTTPStatus.INTERNAL_SERVER_ERROR, {"success": False, "error": str(exc)}
        return HTTPStatus.OK, {"success": True}

    def networks(self) -> dict[str, Any]:
        self.wifi.rescan()
        return {"networks": [network.to_dict() for network in self.wifi.scan_networks()]}

    def setup_page(self) -> bytes | None:
        if self.setup_dir is None:
            return None
        try:
            return (self.setup_dir / "setup.html").read_bytes()
        except OSError:
            return None

    def _build_handler(self):
        outer = self

        class SetupRequestHandler(BaseHTTPRequestHandler):
            def log_message(self, format, *args):  # noqa: A002
                outer.logger.debug("setup http: " + format, *args)

            def _set_common_headers(self) -> None:
                self.send_header("Access-Control-Allow-Origin", "*")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
                self.send_header("Access-Control-Allow-Headers", "Accept, Content-Type")
                self.send_header("Cache-Control", "no-store, max-age=0")

            def do_OPTIONS(self) -> None:  # noqa: N802
                self.send_response(HTTPStatus.NO_CONTENT)
                self._set_common_headers()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802
                path = self.path.split("?", 1)[0]
                if path == "/networks":
                    self._send_json(HTTPStatus.OK, outer.networks())
                elif path in {"/", "/setup.html"}:
                    self._serve_page()
                else:
                    self.send_error(HTTPStatus.NOT_FOUND, "Not Found")

            def do_POST(self) -> None:  # noqa: N802
                path = self.path.split("?", 1)[0]
                if path != "/configure":
                    self.send_error(HTTPStatus.NOT_FOUND, "Not Found")
                    return
                try:
                    data = self._read_json()
                except ValueError as exc:
                    outer.logger.warning("setup http: invalid request: %s", exc)
                    self._send_json(HTTPStatus.BAD_REQUEST, {"success": False, "error": "Invalid JSON"})
                    return
                status, body = outer.configure(data)
                self._send_json(status, body)

            def _read_json(self) -> dict[str, Any]:
                content_length = int(self.headers.get("Content-Length", 0))
                if content_length <= 0:
                    raise ValueError("Empty body")
                data = json.loads(self.rfile.read(content_length).decode("utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("Expected a JSON object")
                return data

            def _send_json(self, status: HTTPStatus, payload: dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self._set_common_headers()
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _serve_page(self) -> None:
                page = outer.setup_page()
                if page is None:
                    self.send_error(HTTPStatus.NOT_FOUND, "Setup page not installed")
                    return
                self.send_response(HTTPStatus.OK)
                self._set_common_headers()
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(page)))
                self.end_headers()
                self.wfile.write(page)

        return SetupRequestHandler
