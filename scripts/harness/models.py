"""Data models and configuration classes for variant benchmarking.

This module contains the dataclasses and enums shared across the harness,
providing a single source of truth for configuration, per-cycle inputs and
the aggregated benchmark result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dotenv import dotenv_values

# Reference variant map: label -> feature flag value, run in this order
DEFAULT_VARIANTS: dict[str, bool] = {
    "traditional": False,
    "loom": True,
}


class HealthState(Enum):
    """Observed liveness of the service under test."""

    UP = "UP"
    DOWN = "DOWN"


class CycleState(Enum):
    """Phases of one benchmark cycle, in the order they are executed."""

    CONFIGURING = "configuring"
    BUILDING = "building"
    LAUNCHING = "launching"
    AWAITING_READY = "awaiting_ready"
    BENCHMARKING = "benchmarking"
    SHUTTING_DOWN = "shutting_down"
    AWAITING_TERMINATED = "awaiting_terminated"
    AGGREGATING = "aggregating"
    DONE = "done"


@dataclass(frozen=True)
class VariantConfig:
    """One named configuration of the service under test.

    The cycle's child-process logs live next to ``log_path``, so every
    variant of every run can be inspected on its own.
    """

    label: str
    flag_enabled: bool
    log_path: Path

    @property
    def log_dir(self) -> Path:
        """Directory holding every log written during this variant's cycle."""
        return self.log_path.parent

    @property
    def output_log(self) -> Path:
        """Append-only stdout capture for the build and the service."""
        return self.log_dir / "output.log"

    @property
    def error_log(self) -> Path:
        """Append-only stderr capture for the build and the service."""
        return self.log_dir / "errors.log"


@dataclass(frozen=True)
class LoadGeneratorConfig:
    """Parameters of a single load generator invocation."""

    requests: int
    concurrency: int
    url: str

    def __post_init__(self) -> None:
        """Reject request counts the load generator would refuse.

        Raises:
            ValueError: If either count is not positive or concurrency exceeds requests.
        """
        if self.requests < 1 or self.concurrency < 1:
            msg = f"requests and concurrency must be positive, got {self.requests}/{self.concurrency}"
            raise ValueError(msg)
        if self.concurrency > self.requests:
            msg = f"concurrency ({self.concurrency}) cannot exceed requests ({self.requests})"
            raise ValueError(msg)


@dataclass(frozen=True)
class BenchmarkResult:
    """Means of the three load generator metrics across one variant's runs."""

    total_duration_mean: float
    request_latency_mean: float
    requests_per_second_mean: float


@dataclass
class HarnessConfig:
    """Configuration settings for a benchmark run.

    Values come from a .env file, falling back to the defaults below. Only
    the target project root and the logs root are required. Layout paths are
    relative to the project root.
    """

    root: Path
    logs: Path

    # Service endpoints
    service_url: str = "http://localhost:8080"
    health_path: str = "/actuator/health"
    shutdown_path: str = "/actuator/shutdown"
    load_path: str = "/customers"

    # Target project layout
    properties_path: str = "src/main/resources/application.properties"
    flag_key: str = "spring.threads.virtual.enabled"
    build_wrapper: str = "gradlew"
    build_task: str = "nativeCompile"
    build_dir: str = "build"
    binary_path: str = "build/native/nativeCompile/service"

    # Load generation
    load_generator: str = "ab"
    requests: int = 1000
    concurrency: int = 10
    max_runs: int = 10

    # Timing, in seconds; None disables the deadline
    poll_interval: float = 0.5
    ready_timeout: float | None = 300.0
    terminate_timeout: float | None = 120.0
    build_timeout: float | None = 1800.0
    load_timeout: float | None = 600.0

    @classmethod
    def from_dotenv(cls, env_file: str | Path = ".env") -> HarnessConfig:
        """Create configuration from a .env file.

        Returns:
            HarnessConfig populated from the .env file.
        """
        values = dotenv_values(env_file)

        def get_required(key: str) -> str:
            value = values.get(key)
            if not value:
                msg = f"Missing required environment variable: {key}"
                raise ValueError(msg)
            return value

        def get(key: str, default: str) -> str:
            value = values.get(key)
            return value if value else default

        def get_int(key: str, default: int) -> int:
            value = get(key, str(default))
            try:
                return int(value)
            except ValueError as e:
                msg = f"Invalid integer value for environment variable {key}: {value}"
                raise ValueError(msg) from e

        def get_seconds(key: str, default: float | None) -> float | None:
            value = get(key, "0" if default is None else str(default))
            try:
                seconds = float(value)
            except ValueError as e:
                msg = f"Invalid number of seconds for environment variable {key}: {value}"
                raise ValueError(msg) from e
            return seconds if seconds > 0 else None

        poll_interval = get_seconds("POLL_INTERVAL", cls.poll_interval)
        if poll_interval is None:
            msg = "POLL_INTERVAL must be greater than zero"
            raise ValueError(msg)

        return cls(
            root=Path(get_required("HARNESS_ROOT")),
            logs=Path(get_required("HARNESS_LOGS")),
            service_url=get("SERVICE_URL", cls.service_url),
            health_path=get("HEALTH_PATH", cls.health_path),
            shutdown_path=get("SHUTDOWN_PATH", cls.shutdown_path),
            load_path=get("LOAD_PATH", cls.load_path),
            properties_path=get("PROPERTIES_PATH", cls.properties_path),
            flag_key=get("FLAG_KEY", cls.flag_key),
            build_wrapper=get("BUILD_WRAPPER", cls.build_wrapper),
            build_task=get("BUILD_TASK", cls.build_task),
            build_dir=get("BUILD_DIR", cls.build_dir),
            binary_path=get("BINARY_PATH", cls.binary_path),
            load_generator=get("LOAD_GENERATOR", cls.load_generator),
            requests=get_int("AB_REQUESTS", cls.requests),
            concurrency=get_int("AB_CONCURRENCY", cls.concurrency),
            max_runs=get_int("MAX_RUNS", cls.max_runs),
            poll_interval=poll_interval,
            ready_timeout=get_seconds("READY_TIMEOUT", cls.ready_timeout),
            terminate_timeout=get_seconds("TERMINATE_TIMEOUT", cls.terminate_timeout),
            build_timeout=get_seconds("BUILD_TIMEOUT", cls.build_timeout),
            load_timeout=get_seconds("LOAD_TIMEOUT", cls.load_timeout),
        )

    def validate(self) -> None:
        """Check the startup preconditions before any cycle runs.

        Raises:
            FileNotFoundError: If the target project root does not exist.
            ValueError: If the run counts are not positive.
            OSError: If the logs root cannot be created.
        """
        if not self.root.is_dir():
            msg = f"The target project root does not exist: {self.root}"
            raise FileNotFoundError(msg)
        if self.max_runs < 1:
            msg = f"MAX_RUNS must be at least 1, got {self.max_runs}"
            raise ValueError(msg)
        self.logs.mkdir(parents=True, exist_ok=True)

    @property
    def load_url(self) -> str:
        """URL the load generator targets."""
        return f"{self.service_url.rstrip('/')}{self.load_path}"

    def load_generator_config(self) -> LoadGeneratorConfig:
        """Build the per-invocation load generator settings.

        Returns:
            A fresh LoadGeneratorConfig for one variant cycle.
        """
        return LoadGeneratorConfig(
            requests=self.requests, concurrency=self.concurrency, url=self.load_url
        )
