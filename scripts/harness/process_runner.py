"""Execution of external programs with output appended to log files.

ProcessRunner.run blocks until a child exits and turns a non-zero exit code
into a ProcessFailure. ProcessRunner.start launches the one long-running
service process and hands back a ProcessHandle that owns it.
"""

from __future__ import annotations

import subprocess
from contextlib import ExitStack
from pathlib import Path
from typing import IO, TYPE_CHECKING

from .logger import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

# Seconds to wait after SIGTERM before escalating to SIGKILL
TERMINATE_GRACE_SECONDS = 10.0


class ProcessFailure(RuntimeError):
    """Raised when a child process exits with a non-zero code."""

    def __init__(
        self, command: Sequence[str], exit_code: int | None, message: str | None = None
    ) -> None:
        """Initialise the failure with the command line and its exit code."""
        super().__init__(message or f"Command {' '.join(command)!r} exited with code {exit_code}")
        self.command = list(command)
        self.exit_code = exit_code


class ProcessTimeout(ProcessFailure):
    """Raised when a child process outlives its deadline and is killed."""

    def __init__(self, command: Sequence[str], timeout: float) -> None:
        """Initialise the failure with the command line and the exceeded deadline."""
        super().__init__(
            command, None, f"Command {' '.join(command)!r} did not finish within {timeout:g}s"
        )
        self.timeout = timeout


def _open_sinks(stack: ExitStack, stdout_sink: Path, stderr_sink: Path) -> tuple[IO, IO]:
    """Open both sinks for appending, sharing one file when they are the same path.

    Returns:
        File objects for stdout and stderr.
    """
    stdout_sink.parent.mkdir(parents=True, exist_ok=True)
    stderr_sink.parent.mkdir(parents=True, exist_ok=True)
    stdout = stack.enter_context(stdout_sink.open("ab"))
    if stderr_sink.resolve() == stdout_sink.resolve():
        return stdout, stdout
    return stdout, stack.enter_context(stderr_sink.open("ab"))


class ProcessHandle:
    """A started child process and the log files its output is appended to.

    The handle closes the log files once the process has been reaped.
    """

    def __init__(self, command: Sequence[str], process: subprocess.Popen, sinks: ExitStack) -> None:
        """Wrap a running process."""
        self.command = list(command)
        self.process = process
        self._sinks = sinks

    @property
    def pid(self) -> int:
        """Operating system process id."""
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        """Exit status, or None while the process is running."""
        return self.process.returncode

    def is_alive(self) -> bool:
        """Check whether the process is still running.

        Returns:
            True until the process has exited.
        """
        return self.process.poll() is None

    def wait_for_exit(self, timeout: float | None = None) -> int:
        """Block until the process exits.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely.

        Returns:
            The exit code.

        Raises:
            subprocess.TimeoutExpired: If the process is still running after the timeout.
        """
        code = self.process.wait(timeout=timeout)
        self._sinks.close()
        return code

    def terminate(self, grace: float = TERMINATE_GRACE_SECONDS) -> int:
        """Stop the process, escalating to kill if it ignores SIGTERM.

        Returns:
            The exit code of the reaped process.
        """
        if self.is_alive():
            logger.warning("🛑 Terminating process %s (pid %d)", self.command[0], self.pid)
            self.process.terminate()
            try:
                return self.wait_for_exit(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning("💀 Process %d ignored SIGTERM, killing it", self.pid)
                self.process.kill()
        return self.wait_for_exit()


class ProcessRunner:
    """Runs external programs with stdout and stderr appended to files."""

    def run(
        self,
        working_dir: Path,
        command: str | Path,
        arguments: Sequence[str],
        stdout_sink: Path,
        stderr_sink: Path,
        timeout: float | None = None,
    ) -> int:
        """Run a program to completion.

        Args:
            working_dir: Directory the program runs in.
            command: Executable to run.
            arguments: Arguments passed to the executable.
            stdout_sink: File the standard output is appended to.
            stderr_sink: File the standard error is appended to; may equal stdout_sink.
            timeout: Seconds before the program is killed, or None for no limit.

        Returns:
            The exit code, always 0.

        Raises:
            ProcessFailure: If the program exits with a non-zero code.
            ProcessTimeout: If the program does not finish within the timeout.
        """
        cmd = [str(command), *arguments]
        logger.debug("⚙️ Running %s in %s", " ".join(cmd), working_dir)
        with ExitStack() as stack:
            stdout, stderr = _open_sinks(stack, Path(stdout_sink), Path(stderr_sink))
            try:
                result = subprocess.run(
                    cmd, cwd=working_dir, stdout=stdout, stderr=stderr, check=False, timeout=timeout
                )
            except subprocess.TimeoutExpired as e:
                raise ProcessTimeout(cmd, e.timeout) from e

        if result.returncode != 0:
            raise ProcessFailure(cmd, result.returncode)
        return result.returncode

    def start(
        self,
        working_dir: Path,
        command: str | Path,
        arguments: Sequence[str],
        stdout_sink: Path,
        stderr_sink: Path,
    ) -> ProcessHandle:
        """Launch a program without waiting for it.

        Returns:
            A handle owning the running process and its open log files.
        """
        cmd = [str(command), *arguments]
        logger.debug("🚀 Starting %s in %s", " ".join(cmd), working_dir)
        stack = ExitStack()
        try:
            stdout, stderr = _open_sinks(stack, Path(stdout_sink), Path(stderr_sink))
            process = subprocess.Popen(cmd, cwd=working_dir, stdout=stdout, stderr=stderr)
        except BaseException:
            stack.close()
            raise
        return ProcessHandle(cmd, process, stack)
