"""Liveness polling for the service under test.

A poll observes UP only when the health endpoint answers a GET with a 2xx
status. Any transport failure is observed as DOWN: before the service binds
its port, and after it has exited, nothing answers at all.
"""

from __future__ import annotations

import time
from threading import Event

import requests

from .logger import logger
from .models import HealthState


class HealthPollTimeout(TimeoutError):
    """Raised when the service does not reach the target state before the deadline."""

    def __init__(self, target: HealthState, endpoint: str, elapsed: float) -> None:
        """Initialise the error with the awaited state and how long was spent waiting."""
        super().__init__(
            f"{endpoint} did not report {target.value} within {elapsed:.1f}s of polling"
        )
        self.target = target
        self.endpoint = endpoint
        self.elapsed = elapsed


class HealthPollCancelled(RuntimeError):
    """Raised when a poll is abandoned because its cancel event was set."""


class HealthPoller:
    """Repeatedly queries a liveness endpoint until it reports a target state."""

    def __init__(self, session: requests.Session | None = None, request_timeout: float = 2.0) -> None:
        """Initialise the poller.

        Args:
            session: HTTP session to reuse; a new one is created when omitted.
            request_timeout: Per-request timeout in seconds.
        """
        self.session = session or requests.Session()
        self.request_timeout = request_timeout

    def observe(self, endpoint: str) -> HealthState:
        """Query the endpoint once.

        Returns:
            UP for a 2xx response, DOWN for anything else including transport errors.
        """
        try:
            response = self.session.get(endpoint, timeout=self.request_timeout)
        except requests.RequestException as e:
            logger.debug("🔌 %s unreachable: %s", endpoint, e.__class__.__name__)
            return HealthState.DOWN

        logger.debug("📥 %s answered %d", endpoint, response.status_code)
        return HealthState.UP if 200 <= response.status_code < 300 else HealthState.DOWN

    def poll_until(
        self,
        target: HealthState,
        endpoint: str,
        poll_interval: float = 0.5,
        timeout: float | None = None,
        cancel: Event | None = None,
    ) -> int:
        """Block until the endpoint reports the target state.

        Each attempt is preceded by a wait of ``poll_interval`` seconds.

        Args:
            target: State to wait for.
            endpoint: Health endpoint URL.
            poll_interval: Seconds between attempts.
            timeout: Overall deadline in seconds, or None to poll indefinitely.
            cancel: Event that abandons the poll as soon as it is set.

        Returns:
            The number of attempts it took.

        Raises:
            HealthPollTimeout: If the deadline passes first.
            HealthPollCancelled: If the cancel event is set first.
        """
        wake = cancel or Event()
        started = time.monotonic()
        attempts = 0
        logger.info("⏳ Waiting for %s to report %s...", endpoint, target.value)

        while True:
            if wake.wait(poll_interval):
                msg = f"Polling {endpoint} for {target.value} was cancelled"
                raise HealthPollCancelled(msg)

            attempts += 1
            state = self.observe(endpoint)
            elapsed = time.monotonic() - started
            logger.debug(
                "Health poll %d: %s after %.1fs (want %s)", attempts, state.value, elapsed, target.value
            )
            if state is target:
                logger.info("✅ Service is %s after %d poll(s)", target.value, attempts)
                return attempts

            if timeout is not None and elapsed >= timeout:
                raise HealthPollTimeout(target, endpoint, elapsed)
