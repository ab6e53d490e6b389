"""HTTP client for CLI commands."""

import asyncio
from typing import Any

import httpx

from app.cli.config import get_config


class APIError(Exception):
    """API request error."""

    def __init__(self, status_code: int, message: str, details: dict | None = None):
        self.status_code = status_code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{status_code}] {message}")


class APIClient:
    """HTTP client for the Application Scheduler API."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        service_key: str | None = None,
        timeout: int | None = None,
    ):
        config = get_config()
        self.base_url = (base_url or config.api_url).rstrip("/")
        self.token = token or config.api_token
        self.service_key = service_key or config.service_key
        self.timeout = timeout or config.api_timeout

    def _get_headers(self, user_id: str | None = None) -> dict[str, str]:
        """
        Bearer token when configured; otherwise the service key, acting for
        ``user_id``.
        """
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        elif self.service_key and user_id:
            headers["X-Service-Key"] = self.service_key
            headers["X-User-Id"] = user_id
        return headers

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Handle API response and raise errors if needed."""
        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                raise APIError(response.status_code, response.text)
            message = error_data.get("error", error_data.get("status", "Unknown error"))
            raise APIError(response.status_code, message, error_data)

        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Make an async HTTP request."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._get_headers(user_id),
                params=params,
            )
            return self._handle_response(response)

    def get(self, path: str, params: dict | None = None, user_id: str | None = None) -> dict[str, Any]:
        """Make a synchronous GET request (runs async internally)."""
        return asyncio.run(self._request("GET", path, params=params, user_id=user_id))

    # API-specific methods
    def health(self) -> dict[str, Any]:
        return self.get("/health")

    def health_live(self) -> dict[str, Any]:
        return self.get("/health/live")

    def health_ready(self) -> dict[str, Any]:
        return self.get("/health/ready")

    def list_schedules(
        self,
        user_id: str | None = None,
        status: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> dict[str, Any]:
        """List a user's schedules."""
        params = {}
        if status:
            params["status"] = status
        if date_from:
            params["from"] = date_from
        if date_to:
            params["to"] = date_to
        return self.get("/api/application-scheduler/schedules", params=params, user_id=user_id)


# Global client instance
_client: APIClient | None = None


def get_client() -> APIClient:
    """Get the global API client."""
    global _client
    if _client is None:
        _client = APIClient()
    return _client


def reset_client() -> None:
    """Reset the global client (useful for testing)."""
    global _client
    _client = None
