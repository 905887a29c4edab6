"""Repeated invocation of the external load generator.

Every invocation appends its stdout and stderr to the same per-variant log,
which is later reduced by the ResultParser.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from .logger import logger

if TYPE_CHECKING:
    from .models import LoadGeneratorConfig
    from .process_runner import ProcessRunner


class LoadGenerator:
    """Runs ApacheBench (or a compatible tool) against the service."""

    def __init__(
        self,
        runner: ProcessRunner,
        executable: str = "ab",
        working_dir: Path | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialise the load generator wrapper.

        Args:
            runner: Process runner used for every invocation.
            executable: Load generator program name or path.
            working_dir: Directory the program runs in; defaults to the current one.
            timeout: Seconds allowed per invocation, or None for no limit.
        """
        self.runner = runner
        self.executable = executable
        self.working_dir = working_dir or Path.cwd()
        self.timeout = timeout

    @staticmethod
    def arguments(config: LoadGeneratorConfig) -> list[str]:
        """Command line arguments for one invocation.

        Returns:
            The argument list, target URL last.
        """
        return ["-n", str(config.requests), "-c", str(config.concurrency), config.url]

    @staticmethod
    def prepare_log(log: Path) -> None:
        """Start a fresh log holding a single blank line.

        Raises:
            OSError: If a previous log exists and cannot be deleted.
        """
        log.parent.mkdir(parents=True, exist_ok=True)
        log.unlink(missing_ok=True)
        log.write_text("\n", encoding="utf-8")

    def run_once(self, config: LoadGeneratorConfig, log: Path) -> None:
        """Run the load generator once, appending its output to the log.

        Raises:
            ProcessFailure: If the load generator exits with a non-zero code.
        """
        self.runner.run(
            self.working_dir, self.executable, self.arguments(config), log, log, timeout=self.timeout
        )

    def run_series(self, config: LoadGeneratorConfig, log: Path, max_runs: int) -> None:
        """Prepare the log, then run the load generator ``max_runs`` times in sequence.

        The first failing invocation stops the series.
        """
        self.prepare_log(log)
        for run_number in range(1, max_runs + 1):
            logger.info(
                "🧪 Load run %d/%d: %d requests, concurrency %d -> %s",
                run_number,
                max_runs,
                config.requests,
                config.concurrency,
                config.url,
            )
            self.run_once(config, log)
