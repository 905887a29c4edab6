"""HTTP client for the administrative endpoints of the service under test."""

from __future__ import annotations

import requests

from .logger import logger


class ShutdownRequestError(RuntimeError):
    """Raised when the service refuses a graceful shutdown request."""

    def __init__(self, url: str, status_code: int, body: str) -> None:
        """Initialise the error with the response that was received."""
        super().__init__(f"Shutdown request to {url} answered {status_code}: {body[:200]}")
        self.url = url
        self.status_code = status_code


class ServiceClient:
    """Simple client for the health and shutdown endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        health_path: str = "/actuator/health",
        shutdown_path: str = "/actuator/shutdown",
        timeout: float = 10.0,
    ) -> None:
        """Initialise the client with the service base URL and a session."""
        self.base_url = base_url.rstrip("/")
        self.health_path = health_path
        self.shutdown_path = shutdown_path
        self.timeout = timeout
        self.session = requests.Session()

    @property
    def health_url(self) -> str:
        """Liveness endpoint URL."""
        return f"{self.base_url}{self.health_path}"

    @property
    def shutdown_url(self) -> str:
        """Graceful shutdown endpoint URL."""
        return f"{self.base_url}{self.shutdown_path}"

    def shutdown(self) -> None:
        """Ask the service to terminate gracefully.

        Raises:
            ShutdownRequestError: If the response status is not 2xx.
            requests.RequestException: If the request cannot be delivered.
        """
        logger.debug("📤 Sending POST request to %s", self.shutdown_url)
        response = self.session.post(self.shutdown_url, json={}, timeout=self.timeout)
        logger.debug("📥 Response status: %d", response.status_code)
        if not 200 <= response.status_code < 300:
            raise ShutdownRequestError(self.shutdown_url, response.status_code, response.text)
