"""End-to-end tests for the VariantRunner outer loop and the command line."""

import argparse
import json

import pytest

from harness.load_generator import LoadGenerator
from harness.models import BenchmarkResult, CycleState, HarnessConfig
from harness.orchestrator import BenchmarkCycleError, BenchmarkOrchestrator
from harness.results_manager import ResultsManager
from variant_benchmark import (
    VariantRunner,
    main,
    parse_arguments,
    parse_variant,
    variants_from_arguments,
)

from .conftest import FakeHealthPoller, FakeProcessRunner, FakeServiceClient


class CycleSpy:
    """Wraps run_cycle to record when each variant's cycle starts and ends."""

    def __init__(self, orchestrator, recorder):
        self.orchestrator = orchestrator
        self.recorder = recorder
        self.wrapped = orchestrator.run_cycle
        orchestrator.run_cycle = self

    def __call__(self, variant, load):
        self.recorder.record(f"cycle:{variant.label}:start")
        try:
            return self.wrapped(variant, load)
        finally:
            self.recorder.record(f"cycle:{variant.label}:end")


@pytest.fixture
def config(project, tmp_path):
    return HarnessConfig(root=project.root, logs=tmp_path / "logs", max_runs=2, requests=10, concurrency=2)


def make_runner(config, project, recorder, runner, variants):
    orchestrator = BenchmarkOrchestrator(
        project=project,
        client=FakeServiceClient(recorder, runner),
        runner=runner,
        poller=FakeHealthPoller(recorder, runner),
        load_generator=LoadGenerator(runner, working_dir=project.root),
        max_runs=config.max_runs,
    )
    CycleSpy(orchestrator, recorder)
    results = ResultsManager(config.logs, run_id="run")
    return VariantRunner(config, orchestrator, project, results, variants)


class TestVariantRunner:
    """Tests for VariantRunner."""

    def test_two_variants_end_to_end(self, config, project, recorder):
        """Test both variants produce the stub metrics without overlapping."""
        runner = FakeProcessRunner(recorder, project)
        variant_runner = make_runner(config, project, recorder, runner, {"A": False, "B": True})

        results = variant_runner.run()

        expected = BenchmarkResult(10.0, 5.0, 100.0)
        assert results == {"A": expected, "B": expected}
        assert runner.build_flags == [False, True]
        assert runner.load_calls == 4

        events = dict(recorder.events)
        assert events["cycle:A:end"] <= events["cycle:B:start"]
        names = recorder.names()
        assert names.index("cycle:A:end") < names.index("cycle:B:start")

    def test_logs_are_keyed_by_run_and_label(self, config, project, recorder):
        """Test every variant gets its own log directory inside the run directory."""
        runner = FakeProcessRunner(recorder, project)

        make_runner(config, project, recorder, runner, {"A": False, "B": True}).run()

        run_dir = config.logs / "run"
        for label in ("A", "B"):
            assert (run_dir / label / "ab.log").is_file()
        report = json.loads((run_dir / "summary.json").read_text())
        assert report["B"]["requests_per_second_mean"] == 100.0
        assert (run_dir / "summary.csv").is_file()
        assert (run_dir / "benchmark.log").is_file()

    def test_default_variants(self, config, project, recorder):
        """Test the reference variants run traditional first, then loom."""
        runner = FakeProcessRunner(recorder, project)

        results = make_runner(config, project, recorder, runner, None).run()

        assert list(results) == ["traditional", "loom"]
        assert runner.build_flags == [False, True]

    def test_failure_halts_remaining_variants(self, config, project, recorder):
        """Test a failing variant propagates and later variants never start."""
        runner = FakeProcessRunner(recorder, project, fail_load_on=1)
        variant_runner = make_runner(config, project, recorder, runner, {"A": False, "B": True})

        with pytest.raises(BenchmarkCycleError) as exc_info:
            variant_runner.run()

        assert exc_info.value.label == "A"
        assert exc_info.value.state is CycleState.BENCHMARKING
        assert "cycle:B:start" not in recorder.names()
        assert not (config.logs / "run" / "summary.json").exists()


class TestCommandLine:
    """Tests for argument parsing and main()."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("loom=true", ("loom", True)), ("traditional=false", ("traditional", False)), ("x=ON", ("x", True))],
    )
    def test_parse_variant(self, value, expected):
        """Test LABEL=BOOL values are parsed."""
        assert parse_variant(value) == expected

    @pytest.mark.parametrize(
        "value", ["loom", "=true", "loom=maybe", "../x=true", "a/b=false", "..=on"]
    )
    def test_parse_variant_rejects_garbage(self, value):
        """Test malformed variants are rejected."""
        with pytest.raises(argparse.ArgumentTypeError):
            parse_variant(value)

    def test_variants_keep_command_line_order(self):
        """Test repeated --variant options build an ordered map."""
        args = parse_arguments(["--variant", "b=true", "--variant", "a=false"])

        assert variants_from_arguments(args) == {"b": True, "a": False}
        assert list(variants_from_arguments(args)) == ["b", "a"]

    def test_duplicate_variant_rejected(self):
        """Test a label given twice is a configuration error."""
        args = parse_arguments(["--variant", "a=true", "--variant", "a=false"])

        with pytest.raises(ValueError):
            variants_from_arguments(args)

    def test_no_variants_means_defaults(self):
        """Test omitting --variant selects the default variants."""
        assert variants_from_arguments(parse_arguments([])) is None

    def test_main_exits_on_missing_configuration(self, tmp_path):
        """Test main exits with status 1 when required settings are missing."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--env-file", str(tmp_path / "missing.env")])

        assert exc_info.value.code == 1

    def test_main_exits_on_missing_root(self, tmp_path):
        """Test main exits with status 1 when the project root does not exist."""
        env_file = tmp_path / ".env"
        env_file.write_text(f"HARNESS_ROOT={tmp_path / 'nowhere'}\nHARNESS_LOGS={tmp_path / 'logs'}\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["--env-file", str(env_file)])

        assert exc_info.value.code == 1

    def test_main_exits_on_build_dir_outside_project(self, project, tmp_path):
        """Test a build directory outside the project is refused before anything is deleted."""
        unrelated = tmp_path / "unrelated"
        unrelated.mkdir()
        env_file = tmp_path / ".env"
        env_file.write_text(
            f"HARNESS_ROOT={project.root}\nHARNESS_LOGS={tmp_path / 'logs'}\nBUILD_DIR={unrelated}\n"
        )

        with pytest.raises(SystemExit) as exc_info:
            main(["--env-file", str(env_file)])

        assert exc_info.value.code == 1
        assert unrelated.is_dir()
