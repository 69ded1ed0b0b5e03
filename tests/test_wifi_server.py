"""Tests for the WiFi setup API."""

from __future__ import annotations

from http import HTTPStatus
from unittest.mock import Mock

import httpx
import pytest

from kin.wifi.network import WifiConnectError, WifiNetwork
from kin.wifi.server import SetupApiServer


@pytest.fixture
def wifi():
    mock = Mock()
    mock.scan_networks.return_value = [WifiNetwork("HomeNet", True), WifiNetwork("OpenCafe", False)]
    mock.visible_ssids.return_value = ["HomeNet", "OpenCafe"]
    return mock


@pytest.fixture
def api(wifi, tmp_path, mock_logger):
    return SetupApiServer(
        wifi=wifi,
        pairing_code_file=tmp_path / "kin_pairing_code",
        setup_dir=tmp_path / "wifi-setup",
        bind_address="127.0.0.1",
        port=0,
        sleep=Mock(),
        logger=mock_logger,
    )


@pytest.fixture
def running_api(api):
    api.start()
    yield api
    api.stop()


@pytest.fixture
def http():
    with httpx.Client(trust_env=False, timeout=5.0) as client:
        yield client


def _url(api: SetupApiServer, path: str) -> str:
    return f"http://127.0.0.1:{api.server_port}{path}"


# ============================================================================
# Request handling
# ============================================================================


class TestConfigure:
    def test_success(self, api, wifi):
        status, body = api.configure({"ssid": "HomeNet", "password": "hunter22", "pairing_code": "4821"})

        assert (status, body) == (HTTPStatus.OK, {"success": True})
        assert api.pairing_code_file.read_text(encoding="utf-8") == "4821"
        wifi.rescan.assert_called_once()
        api._sleep.assert_called_once_with(3.0)
        wifi.connect.assert_called_once_with("HomeNet", "hunter22")

    def test_open_network_passes_no_password(self, api, wifi):
        api.configure({"ssid": "OpenCafe", "password": "", "pairing_code": "4821"})

        wifi.connect.assert_called_once_with("OpenCafe", None)

    def test_ssid_required(self, api, wifi):
        status, body = api.configure({"ssid": "  ", "pairing_code": "4821"})

        assert status == HTTPStatus.BAD_REQUEST
        assert body == {"success": False, "error": "SSID is required"}
        assert not api.pairing_code_file.exists()

    @pytest.mark.parametrize("code", [None, "", "12", "abcd", "12345"])
    def test_pairing_code_required(self, api, wifi, code):
        status, body = api.configure({"ssid": "HomeNet", "pairing_code": code})

        assert status == HTTPStatus.BAD_REQUEST
        assert body["error"] == "Valid 4-digit pairing code is required"
        wifi.connect.assert_not_called()

    def test_network_not_visible(self, api, wifi):
        wifi.visible_ssids.return_value = [f"Net{i}" for i in range(8)]

        status, body = api.configure({"ssid": "HomeNet", "pairing_code": "4821"})

        assert status == HTTPStatus.INTERNAL_SERVER_ERROR
        assert body["error"] == 'Network "HomeNet" not found. Available networks: Net0, Net1, Net2, Net3, Net4'
        wifi.connect.assert_not_called()
        # The code is already on disk: the setup loop treats it as a submission.
        assert api.pairing_code_file.exists()

    def test_connect_failure(self, api, wifi):
        wifi.connect.side_effect = WifiConnectError("Connection failed: Wrong password or authentication failed")

        status, body = api.configure({"ssid": "HomeNet", "password": "nope", "pairing_code": "4821"})

        assert status == HTTPStatus.INTERNAL_SERVER_ERROR
        assert body == {"success": False, "error": "Connection failed: Wrong password or authentication failed"}


def test_networks_payload(api, wifi):
    assert api.networks() == {
        "networks": [{"ssid": "HomeNet", "encrypted": True}, {"ssid": "OpenCafe", "encrypted": False}]
    }
    wifi.rescan.assert_called_once()


# ============================================================================
# HTTP server
# ============================================================================


class TestHttp:
    def test_lifecycle(self, api):
        assert not api.running
        api.start()
        try:
            assert api.running
            assert api.server_port
        finally:
            api.stop()
        assert not api.running
        api.stop()

    def test_get_networks(self, http, running_api):
        response = http.get(_url(running_api, "/networks"))

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.json()["networks"][0] == {"ssid": "HomeNet", "encrypted": True}

    def test_post_configure(self, http, running_api, wifi):
        response = http.post(
            _url(running_api, "/configure"),
            json={"ssid": "HomeNet", "password": "hunter22", "pairing_code": "4821"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        wifi.connect.assert_called_once_with("HomeNet", "hunter22")

    def test_post_validation_error(self, http, running_api):
        response = http.post(_url(running_api, "/configure"), json={"ssid": "HomeNet"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_invalid_json(self, http, running_api):
        response = http.post(
            _url(running_api, "/configure"),
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid JSON"}

    def test_preflight(self, http, running_api):
        response = http.options(_url(running_api, "/configure"))

        assert response.status_code == 204
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_setup_page(self, http, running_api):
        assert http.get(_url(running_api, "/")).status_code == 404

        running_api.setup_dir.mkdir(parents=True)
        (running_api.setup_dir / "setup.html").write_text("<h1>Kin Setup</h1>", encoding="utf-8")

        response = http.get(_url(running_api, "/setup.html"))
        assert response.status_code == 200
        assert response.text == "<h1>Kin Setup</h1>"
        assert response.headers["content-type"].startswith("text/html")

    def test_unknown_path(self, http, running_api):
        assert http.get(_url(running_api, "/admin")).status_code == 404
        assert http.post(_url(running_api, "/networks"), json={}).status_code == 404
