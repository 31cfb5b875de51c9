"""Client for the remote aggregation endpoint."""

import logging

import requests

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Raised when a remote aggregation request fails."""


class RemoteClient:
    """Thin JSON client. Every call returns the decoded body or raises RemoteError."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def request(self, method: str, path: str, body: dict | None = None, params: dict | None = None) -> dict:
        url = f"{self.base_url}{path}"
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        logger.debug("Remote request %s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                params=params,
                headers=headers,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RemoteError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise RemoteError(f"{method} {path} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise RemoteError(f"{method} {path} returned unexpected payload")
        if data.get("ok") is False:
            raise RemoteError(f"{method} {path} rejected: {data.get('error') or 'unknown error'}")
        return data

    def upsert_state(
        self,
        device_id: str,
        volumes: list[dict] | None = None,
        manual_roots: list[dict] | None = None,
        files: list[dict] | None = None,
    ) -> dict:
        return self.request(
            "POST",
            "/api/state/upsert",
            body={
                "deviceId": device_id,
                "volumes": volumes or [],
                "manualRoots": manual_roots or [],
                "files": files or [],
            },
        )

    def fetch_state(self, device_id: str) -> dict:
        return self.request("GET", "/api/state", params={"deviceId": device_id})

    def register_device(self, device_id: str, name: str) -> dict:
        return self.request("POST", "/api/device/register", body={"deviceId": device_id, "name": name})
