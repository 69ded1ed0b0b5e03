"""Async client for the conversation orchestrator's device endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

_LOGGER = logging.getLogger(__name__)


class OrchestratorError(RuntimeError):
    """Generic orchestrator API failure."""


class OrchestratorAuthError(OrchestratorError):
    """Raised when the orchestrator returns 401/403."""


@dataclass(slots=True)
class OrchestratorClient:
    base_url: str
    timeout: float = 15.0
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("Orchestrator URL is not configured")
        self.base_url = self.base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
            transport=self.transport,
            trust_env=False,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def request_challenge(self, device_id: str) -> dict[str, Any]:
        """Step one of device auth: ask for a challenge to sign."""
        payload = await self._request("POST", "/auth/device/challenge", json={"device_id": device_id})
        return payload if isinstance(payload, dict) else {}

    async def verify_challenge(self, device_id: str, challenge: str, signature: str) -> dict[str, Any]:
        """Step two: exchange the signed challenge for a bearer token."""
        payload = await self._request(
            "POST",
            "/auth/device/verify",
            json={"device_id": device_id, "challenge": challenge, "signature": signature},
        )
        return payload if isinstance(payload, dict) else {}

    async def send_heartbeat(
        self,
        token: str,
        *,
        logs: str | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """POST a heartbeat; returns the decoded response, or ``None`` when it is empty."""
        body: dict[str, Any] = {}
        if logs is not None:
            body["logs"] = logs
        if metrics is not None:
            body["metrics"] = metrics
        payload = await self._request("POST", "/device/heartbeat", json=body, headers=_bearer(token))
        if payload is None:
            return None
        if not isinstance(payload, dict):
            _LOGGER.warning("Unexpected heartbeat response: %.200s", payload)
            return {}
        return payload

    async def update_intervention_status(
        self,
        token: str,
        intervention_id: str,
        status: str,
        error_message: str | None = None,
    ) -> None:
        body: dict[str, Any] = {"status": status}
        if error_message:
            body["error_message"] = error_message
        await self._request(
            "POST",
            f"/device/intervention/{intervention_id}/status",
            json=body,
            headers=_bearer(token),
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise OrchestratorError(f"Failed to contact orchestrator: {exc}") from exc
        if response.status_code in (401, 403):
            raise OrchestratorAuthError(f"Orchestrator rejected the request to {path} ({response.status_code})")
        if response.status_code >= 400:
            raise OrchestratorError(f"Orchestrator error {response.status_code} on {path}: {response.text}")
        if not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
