"""Shared fixtures and stand-ins for the external programs a cycle drives."""

from __future__ import annotations

import subprocess
import threading
import time
from pathlib import Path

import pytest

from harness.models import HealthState
from harness.process_runner import ProcessFailure
from harness.target_project import TargetProject

AB_RUN_OUTPUT = """\
This is ApacheBench, Version 2.3
Benchmarking localhost (be patient).....done

Concurrency Level:      2
Time taken for tests:   10.000 seconds
Complete requests:      10
Failed requests:        0
Requests per second:    100.00 [#/sec] (mean)
Time per request:       20.000 [ms] (mean)
Time per request:       5.000 [ms] (mean, across all concurrent requests)
Transfer rate:          12.34 [Kbytes/sec] received
"""

PROPERTIES = """\
# service settings
server.port=8080
spring.threads.virtual.enabled=false
management.endpoints.web.exposure.include=health,shutdown
management.endpoint.shutdown.enabled=true
"""

# Ignores SIGTERM, then announces it is ready so tests know the handler is set
IGNORES_SIGTERM = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('ready', flush=True); time.sleep(60)"
)


def wait_for_output(path: Path, text: str, timeout: float = 10.0) -> None:
    """Wait until a child process has written ``text`` to its log."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists() and text in path.read_text():
            return
        time.sleep(0.05)
    pytest.fail(f"{text!r} never appeared in {path}")


class Recorder:
    """Thread-safe, ordered log of named events with monotonic timestamps."""

    def __init__(self) -> None:
        self.events: list[tuple[str, float]] = []
        self._lock = threading.Lock()

    def record(self, name: str) -> None:
        with self._lock:
            self.events.append((name, time.monotonic()))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def index(self, name: str) -> int:
        return self.names().index(name)


class FakeHandle:
    """Stands in for a running service process until it is told to exit."""

    pid = 4242

    def __init__(self, command: list[str], exit_code: int = 0, exited: bool = False) -> None:
        self.command = command
        self.exit_code = exit_code
        self.terminated = False
        self._exited = threading.Event()
        if exited:
            self._exited.set()

    def stop(self) -> None:
        self._exited.set()

    def is_alive(self) -> bool:
        return not self._exited.is_set()

    def wait_for_exit(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.command, timeout)
        return self.exit_code

    def terminate(self, grace: float = 10.0) -> int:
        self.terminated = True
        self.exit_code = -15
        self._exited.set()
        return self.exit_code


class FakeProcessRunner:
    """Fakes the build tool, the service binary and the load generator.

    The build creates the expected binary, each load generator run appends
    fixed ApacheBench output to its log, and the service runs until the fake
    client asks it to shut down.
    """

    def __init__(
        self,
        recorder: Recorder,
        project: TargetProject,
        fail_load_on: int | None = None,
        service_exit_code: int = 0,
        service_exits_immediately: bool = False,
    ) -> None:
        self.recorder = recorder
        self.project = project
        self.fail_load_on = fail_load_on
        self.service_exit_code = service_exit_code
        self.service_exits_immediately = service_exits_immediately
        self.load_calls = 0
        self.launched = threading.Event()
        self.build_flags: list[bool | None] = []
        self.handle: FakeHandle | None = None

    def run(self, working_dir, command, arguments, stdout_sink, stderr_sink, timeout=None) -> int:
        if list(arguments) == [self.project.build_task]:
            self.recorder.record("build:start")
            self.build_flags.append(self.project.read_flag())
            self.project.binary_path.parent.mkdir(parents=True, exist_ok=True)
            self.project.binary_path.write_text("#!/bin/sh\n")
            self.recorder.record("build:end")
            return 0

        self.load_calls += 1
        self.recorder.record(f"load:{self.load_calls}")
        if self.load_calls == self.fail_load_on:
            raise ProcessFailure([str(command), *arguments], 1)
        with Path(stdout_sink).open("a", encoding="utf-8") as log:
            log.write(AB_RUN_OUTPUT)
        return 0

    def start(self, working_dir, command, arguments, stdout_sink, stderr_sink) -> FakeHandle:
        self.recorder.record("launch")
        self.handle = FakeHandle(
            [str(command)], self.service_exit_code, exited=self.service_exits_immediately
        )
        self.launched.set()
        return self.handle


class FakeHealthPoller:
    """Reports the target state as soon as it can be true, recording when it was asked.

    UP is only reported once the fake service of the current cycle has been started.
    """

    def __init__(self, recorder: Recorder, runner: FakeProcessRunner | None = None) -> None:
        self.recorder = recorder
        self.runner = runner
        self.targets: list[HealthState] = []

    def poll_until(self, target, endpoint, poll_interval=0.5, timeout=None, cancel=None) -> int:
        self.targets.append(target)
        if target is HealthState.UP and self.runner is not None:
            assert self.runner.launched.wait(5)
            self.runner.launched.clear()
        self.recorder.record(f"poll:{target.value}:start")
        self.recorder.record(f"poll:{target.value}:end")
        return 1


class FakeServiceClient:
    """Shutdown requests make the fake service process exit."""

    health_url = "http://stub/actuator/health"
    shutdown_url = "http://stub/actuator/shutdown"

    def __init__(self, recorder: Recorder, runner: FakeProcessRunner) -> None:
        self.recorder = recorder
        self.runner = runner
        self.shutdown_calls = 0

    def shutdown(self) -> None:
        self.shutdown_calls += 1
        self.recorder.record("shutdown")
        if self.runner.handle is not None:
            self.runner.handle.stop()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def project(tmp_path):
    """A target project with a configuration file and a stale build output."""
    root = tmp_path / "service"
    properties = root / "src/main/resources/application.properties"
    properties.parent.mkdir(parents=True)
    properties.write_text(PROPERTIES, encoding="utf-8")
    (root / "gradlew").write_text("#!/bin/sh\n")
    stale = root / "build/native/nativeCompile"
    stale.mkdir(parents=True)
    (stale / "stale-marker").write_text("left over from an earlier cycle")
    return TargetProject(root)
