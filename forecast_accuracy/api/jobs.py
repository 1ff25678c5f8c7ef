from __future__ import annotations

import os
from typing import Any

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

BASE_URL = "https://api.render.com/v1"
API_KEY_ENV_VAR = "WORKER_API_KEY"
TIMEOUT = (5, 20)


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc, requests.HTTPError):
        if exc.response is None:
            return True
        status = exc.response.status_code
        return status >= 500 or status == 429
    return isinstance(exc, (requests.Timeout, requests.ConnectionError))


def build_start_command(
    command: str,
    job: str,
    address: str | None = None,
    market_id: str | None = None,
) -> str:
    parts = [command, job]
    if address:
        parts.extend(["--address", address])
    if market_id:
        parts.extend(["--market-id", market_id])
    return " ".join(parts)


class WorkerJobClient:
    """Starts one-off jobs on the background worker service."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = BASE_URL,
        timeout_s: int | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.environ.get(API_KEY_ENV_VAR)
        if not self.api_key:
            raise ValueError(f"{API_KEY_ENV_VAR} not set")
        self.base_url = base_url.rstrip("/")
        self.timeout = (5, timeout_s) if timeout_s else TIMEOUT
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            }
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        retry=retry_if_exception(_should_retry),
        reraise=True,
    )
    def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response.json()

    def list_services(self, limit: int = 100) -> list[dict[str, Any]]:
        payload = self._request_json("GET", "/services", params={"limit": limit})
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        return []

    @staticmethod
    def find_worker(
        services: list[dict[str, Any]],
        name_prefix: str,
        branch: str,
    ) -> dict[str, Any] | None:
        for item in services:
            service = item.get("service") if isinstance(item.get("service"), dict) else item
            if (
                service.get("type") == "background_worker"
                and str(service.get("name") or "").startswith(name_prefix)
                and service.get("branch") == branch
                and service.get("id")
            ):
                return service
        return None

    def create_job(self, service_id: str, start_command: str) -> dict[str, Any]:
        return self._request_json(
            "POST",
            f"/services/{service_id}/jobs",
            json={"startCommand": start_command},
        )
