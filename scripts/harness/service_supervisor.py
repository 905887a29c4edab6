"""Lifecycle management for the long-running service under test.

The service is started on a dedicated worker thread so the orchestrator can
keep polling and benchmarking while it runs. The worker is owned by one
benchmark cycle: it is created when the supervisor is entered and shut down
when it is exited, after any still-running process has been terminated.
"""

from __future__ import annotations

import concurrent.futures
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event
from typing import TYPE_CHECKING

from .logger import logger
from .process_runner import TERMINATE_GRACE_SECONDS, ProcessFailure

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from .process_runner import ProcessHandle, ProcessRunner


class ServiceLaunchError(RuntimeError):
    """Raised when the service task fails or ends before it is expected to."""


class ServiceSupervisor:
    """Runs the service binary in the background for the span of one cycle.

    Use as a context manager::

        with ServiceSupervisor(runner, output_log, error_log) as service:
            service.launch(binary)
            ...
            service.wait(timeout=60)
    """

    def __init__(
        self,
        runner: ProcessRunner,
        stdout_sink: Path,
        stderr_sink: Path,
        terminate_grace: float = TERMINATE_GRACE_SECONDS,
    ) -> None:
        """Initialise the supervisor.

        Args:
            runner: Process runner used to start the service.
            stdout_sink: File the service's standard output is appended to.
            stderr_sink: File the service's standard error is appended to.
            terminate_grace: Seconds a leftover service gets after SIGTERM before it is killed.
        """
        self.runner = runner
        self.stdout_sink = stdout_sink
        self.stderr_sink = stderr_sink
        self.terminate_grace = terminate_grace
        self.exited = Event()
        self.handle: ProcessHandle | None = None
        self.future: Future[int] | None = None
        self.started = Event()
        self._executor: ThreadPoolExecutor | None = None

    def __enter__(self) -> ServiceSupervisor:
        """Create the worker that will host the service task.

        Returns:
            This supervisor.
        """
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="service")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Terminate a still-running service and dispose of the worker."""
        if self.future is not None:
            # The handle is only assigned once the worker has run runner.start
            self.started.wait()
        if self.handle is not None and self.handle.is_alive():
            logger.warning("🧹 Service still running at end of cycle, terminating it")
            self.handle.terminate(self.terminate_grace)
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def launch(self, binary: Path) -> Future[int]:
        """Submit the service task and return immediately.

        Returns:
            The future that resolves to the service's exit code.

        Raises:
            ServiceLaunchError: If the supervisor is not active or already launched.
        """
        if self._executor is None:
            msg = "ServiceSupervisor must be entered before launching"
            raise ServiceLaunchError(msg)
        if self.future is not None:
            msg = "The service has already been launched in this cycle"
            raise ServiceLaunchError(msg)

        logger.info("⚡ Launching %s in background", binary)
        self.future = self._executor.submit(self._run_service, binary)
        self.future.add_done_callback(lambda _: self.exited.set())
        return self.future

    def _run_service(self, binary: Path) -> int:
        """Run the service binary until it exits.

        Returns:
            The exit code, always 0.

        Raises:
            ProcessFailure: If the service exits with a non-zero code.
        """
        try:
            self.handle = self.runner.start(
                binary.parent, binary, [], self.stdout_sink, self.stderr_sink
            )
        finally:
            self.started.set()

        logger.debug("Service started with pid %d", self.handle.pid)
        code = self.handle.wait_for_exit()
        logger.info("🏁 Service process exited with code %d", code)
        if code != 0:
            raise ProcessFailure(self.handle.command, code)
        return code

    def raise_if_failed(self) -> None:
        """Surface a failure of the service task, if it has already ended.

        Raises:
            ServiceLaunchError: If the task ended with an exception or exited early.
        """
        if self.future is None or not self.future.done():
            return
        error = self.future.exception()
        if error is not None:
            msg = f"Service task failed: {error}"
            raise ServiceLaunchError(msg) from error
        msg = "Service exited before it was asked to shut down"
        raise ServiceLaunchError(msg)

    def wait(self, timeout: float | None = None) -> int:
        """Wait for the service task to finish after a shutdown request.

        Returns:
            The service exit code.

        Raises:
            ServiceLaunchError: If the task failed or did not finish in time.
        """
        if self.future is None:
            msg = "The service was never launched"
            raise ServiceLaunchError(msg)
        try:
            return self.future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as e:
            msg = f"Service did not exit within {timeout}s of the shutdown request"
            raise ServiceLaunchError(msg) from e
        except Exception as e:
            msg = f"Service task failed: {e}"
            raise ServiceLaunchError(msg) from e
