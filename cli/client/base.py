"""Base HTTP Client for the Job Engine API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()


class JobEngineError(Exception):
    """Base exception for Job Engine API errors"""

    pass


class APIClient:
    """HTTP client for the Job Engine API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=self.default_headers,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle API response and extract data"""
        try:
            data = response.json()
        except ValueError:
            console.print(f"[red]Failed to parse response: {response.text}[/red]")
            raise JobEngineError(
                f"Invalid JSON response: {response.status_code}"
            ) from None

        if response.status_code >= 400:
            error = data.get("error") or {}
            error_msg = error.get("message") if isinstance(error, dict) else None
            error_msg = error_msg or str(data.get("detail", "Unknown error"))
            console.print(Panel(f"[red]{error_msg}[/red]", title="API Error"))
            raise JobEngineError(f"API Error {response.status_code}: {error_msg}")

        # Envelope format (with "ok" field)
        if "ok" in data:
            if not data.get("ok", False):
                error_msg = data.get("error", {}).get("message", "Request failed")
                console.print(Panel(f"[red]{error_msg}[/red]", title="Request Failed"))
                raise JobEngineError(error_msg)
            return data.get("data", {})

        return data

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Make a request against the /v1 API"""
        try:
            response = self.client.request(
                method, f"/v1{path}", params=params, json=json
            )
            return self._handle_response(response)
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise JobEngineError(f"Connection failed: {e}") from None

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return self.request("POST", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)
