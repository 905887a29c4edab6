"""Benchmark cycle orchestration for one configuration variant.

A cycle walks a fixed sequence of states with no branching back::

    CONFIGURING -> BUILDING -> LAUNCHING -> AWAITING_READY -> BENCHMARKING
        -> SHUTTING_DOWN -> AWAITING_TERMINATED -> AGGREGATING -> DONE

Each state blocks until its postcondition holds, so the ordering needs no
other synchronisation. Only the service process runs concurrently, on a
worker owned by the cycle. Any failure aborts the cycle with a
BenchmarkCycleError naming the state it happened in; no partial result is
ever returned.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

from .health import HealthPollCancelled, HealthPoller
from .load_generator import LoadGenerator
from .logger import logger
from .models import CycleState, HealthState
from .process_runner import TERMINATE_GRACE_SECONDS, ProcessRunner
from .results_parser import ResultParser
from .service_supervisor import ServiceLaunchError, ServiceSupervisor

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from .models import BenchmarkResult, LoadGeneratorConfig, VariantConfig
    from .service_client import ServiceClient
    from .target_project import TargetProject


class BenchmarkCycleError(RuntimeError):
    """Raised when a benchmark cycle aborts, tagged with the failing state."""

    def __init__(self, label: str, state: CycleState, cause: BaseException) -> None:
        """Initialise the error for the variant, the state and the underlying cause."""
        super().__init__(f"Variant {label!r} failed while {state.value}: {cause}")
        self.label = label
        self.state = state
        self.cause = cause


class BenchmarkOrchestrator:
    """Drives one full benchmark cycle per call to ``run_cycle``.

    Collaborators are injected so each seam can be replaced in tests.
    """

    def __init__(
        self,
        project: TargetProject,
        client: ServiceClient,
        runner: ProcessRunner | None = None,
        poller: HealthPoller | None = None,
        load_generator: LoadGenerator | None = None,
        parser: ResultParser | None = None,
        max_runs: int = 10,
        poll_interval: float = 0.5,
        ready_timeout: float | None = None,
        terminate_timeout: float | None = None,
        terminate_grace: float = TERMINATE_GRACE_SECONDS,
        on_transition: Callable[[CycleState], None] | None = None,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            project: The project under test.
            client: Client for the service's health and shutdown endpoints.
            runner: Process runner for the build and the service.
            poller: Health poller used while awaiting readiness and termination.
            load_generator: Load generator wrapper; built on ``runner`` when omitted.
            parser: Parser for the load generator log.
            max_runs: Load generator invocations per cycle.
            poll_interval: Seconds between health polls.
            ready_timeout: Deadline for the service to report UP, None for no limit.
            terminate_timeout: Deadline for the service to report DOWN and exit.
            terminate_grace: Seconds a leftover service gets after SIGTERM before it is killed.
            on_transition: Called with every state the cycle enters.
        """
        self.project = project
        self.client = client
        self.runner = runner or ProcessRunner()
        self.poller = poller or HealthPoller()
        self.load_generator = load_generator or LoadGenerator(self.runner)
        self.parser = parser or ResultParser()
        self.max_runs = max_runs
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout
        self.terminate_timeout = terminate_timeout
        self.terminate_grace = terminate_grace
        self.on_transition = on_transition
        self.state: CycleState | None = None

    def _enter(self, state: CycleState) -> None:
        self.state = state
        logger.info("➡️ %s", state.name)
        if self.on_transition is not None:
            self.on_transition(state)

    @contextmanager
    def _phase(self, label: str, state: CycleState) -> Generator[None, None, None]:
        """Run one state, converting any failure into a tagged cycle error.

        Yields:
            None while the state's work runs.

        Raises:
            BenchmarkCycleError: If the state's work raises.
        """
        self._enter(state)
        try:
            yield
        except BenchmarkCycleError:
            raise
        except Exception as e:
            raise BenchmarkCycleError(label, state, e) from e

    def run_cycle(self, variant: VariantConfig, load: LoadGeneratorConfig) -> BenchmarkResult:
        """Benchmark one variant from configuration to aggregated result.

        Returns:
            The means of the load generator metrics across all runs.

        Raises:
            BenchmarkCycleError: If any state fails.
        """
        label = variant.label
        logger.info("🎭 === %s (flag=%s) ===", label.upper(), variant.flag_enabled)
        variant.log_dir.mkdir(parents=True, exist_ok=True)

        with self._phase(label, CycleState.CONFIGURING):
            self.project.configure(variant.flag_enabled)

        with self._phase(label, CycleState.BUILDING):
            self.project.clean()
            self.project.build(self.runner, variant.output_log, variant.error_log)

        with ServiceSupervisor(
            self.runner, variant.output_log, variant.error_log, self.terminate_grace
        ) as service:
            with self._phase(label, CycleState.LAUNCHING):
                service.launch(self.project.require_binary())

            with self._phase(label, CycleState.AWAITING_READY):
                try:
                    self.poller.poll_until(
                        HealthState.UP,
                        self.client.health_url,
                        self.poll_interval,
                        timeout=self.ready_timeout,
                        cancel=service.exited,
                    )
                except HealthPollCancelled as e:
                    service.raise_if_failed()
                    msg = "Service stopped before reporting UP"
                    raise ServiceLaunchError(msg) from e

            with self._phase(label, CycleState.BENCHMARKING):
                self.load_generator.run_series(load, variant.log_path, self.max_runs)

            with self._phase(label, CycleState.SHUTTING_DOWN):
                service.raise_if_failed()
                self.client.shutdown()

            with self._phase(label, CycleState.AWAITING_TERMINATED):
                self.poller.poll_until(
                    HealthState.DOWN,
                    self.client.health_url,
                    self.poll_interval,
                    timeout=self.terminate_timeout,
                )
                service.wait(timeout=self.terminate_timeout)

        with self._phase(label, CycleState.AGGREGATING):
            result = self.parser.parse_file(variant.log_path)

        self._enter(CycleState.DONE)
        logger.info(
            "📊 %s: %.3fs per test | %.3fms per request | %.2f req/s",
            label,
            result.total_duration_mean,
            result.request_latency_mean,
            result.requests_per_second_mean,
        )
        return result
