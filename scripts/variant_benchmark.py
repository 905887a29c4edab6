#!/usr/bin/env python3
"""Comparative Service Variant Benchmark.

Builds the service under test once per configuration variant, runs a load
generator against each build and reports the mean test duration, per-request
latency and throughput of every variant side by side. The reference variants
compare a Spring Boot native image with virtual threads disabled
("traditional") and enabled ("loom").

For each variant, in order:
1. Rewrite the feature flag in the project's configuration file
2. Delete the previous build output and compile a fresh native binary
3. Launch the binary and wait for its health endpoint to report UP
4. Run the load generator MAX_RUNS times against it
5. Request a graceful shutdown and wait for the service to go DOWN
6. Reduce the load generator output into averaged metrics

Variants never overlap: they share the network port and the build directory.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import TYPE_CHECKING

from harness.health import HealthPoller
from harness.load_generator import LoadGenerator
from harness.logger import logger, set_verbose
from harness.models import DEFAULT_VARIANTS, HarnessConfig, VariantConfig
from harness.orchestrator import BenchmarkCycleError, BenchmarkOrchestrator
from harness.process_runner import ProcessRunner
from harness.results_manager import ResultsManager, check_label
from harness.service_client import ServiceClient
from harness.target_project import TargetProject

if TYPE_CHECKING:
    from harness.models import BenchmarkResult


class VariantRunner:
    """Runs one benchmark cycle per named variant, strictly one after another.

    A failure in any variant propagates immediately and halts the run.
    """

    def __init__(
        self,
        config: HarnessConfig,
        orchestrator: BenchmarkOrchestrator,
        project: TargetProject,
        results_manager: ResultsManager,
        variants: dict[str, bool] | None = None,
    ) -> None:
        """Initialise the runner with its collaborators and the ordered variant map."""
        self.config = config
        self.orchestrator = orchestrator
        self.project = project
        self.results_manager = results_manager
        self.variants = dict(DEFAULT_VARIANTS if variants is None else variants)

    @classmethod
    def from_config(
        cls, config: HarnessConfig, variants: dict[str, bool] | None = None
    ) -> VariantRunner:
        """Wire the real collaborators from configuration.

        Returns:
            A VariantRunner ready to run.
        """
        runner = ProcessRunner()
        project = TargetProject.from_config(config)
        client = ServiceClient(config.service_url, config.health_path, config.shutdown_path)
        orchestrator = BenchmarkOrchestrator(
            project=project,
            client=client,
            runner=runner,
            poller=HealthPoller(),
            load_generator=LoadGenerator(
                runner, config.load_generator, config.root, timeout=config.load_timeout
            ),
            max_runs=config.max_runs,
            poll_interval=config.poll_interval,
            ready_timeout=config.ready_timeout,
            terminate_timeout=config.terminate_timeout,
        )
        return cls(config, orchestrator, project, ResultsManager(config.logs), variants)

    def run(self) -> dict[str, BenchmarkResult]:
        """Benchmark every variant and write the report.

        Returns:
            Mapping of variant label to its BenchmarkResult.
        """
        logger.info("🎬 Benchmarking %d variant(s): %s", len(self.variants), ", ".join(self.variants))
        logger.info("📁 Results directory: %s", self.results_manager.base_dir)

        try:
            for label, flag_enabled in self.variants.items():
                self.project.clean()
                variant = VariantConfig(
                    label=label,
                    flag_enabled=flag_enabled,
                    log_path=self.results_manager.variant_log(label),
                )
                result = self.orchestrator.run_cycle(variant, self.config.load_generator_config())
                self.results_manager.add_result(label, result)

            self.results_manager.save_results()
            self.results_manager.print_summary()
        finally:
            self.results_manager.close()

        return dict(self.results_manager.results)


def parse_variant(value: str) -> tuple[str, bool]:
    """Parse a ``LABEL=BOOL`` command line variant.

    Returns:
        The label and its flag value.

    Raises:
        argparse.ArgumentTypeError: If the value is not in ``LABEL=BOOL`` form.
    """
    label, sep, flag = value.partition("=")
    label, flag = label.strip(), flag.strip().lower()
    if not sep or not label or flag not in {"true", "false", "on", "off", "1", "0"}:
        msg = f"expected LABEL=true|false, got {value!r}"
        raise argparse.ArgumentTypeError(msg)
    try:
        check_label(label)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    return label, flag in {"true", "on", "1"}


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments for benchmark configuration.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Compare service configuration variants under load",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration is read from the .env file (HARNESS_ROOT and HARNESS_LOGS are
required); the options below override it.

Default variants: traditional=false, loom=true
        """,
    )
    parser.add_argument("--env-file", type=Path, default=Path(".env"), help="path to .env file")
    parser.add_argument("--max-runs", type=int, help="load generator runs per variant")
    parser.add_argument("--requests", type=int, help="requests per load generator run")
    parser.add_argument("--concurrency", type=int, help="concurrent load generator workers")
    parser.add_argument(
        "--ready-timeout", type=float, help="seconds to wait for the service to report UP"
    )
    parser.add_argument(
        "--variant",
        action="append",
        type=parse_variant,
        metavar="LABEL=BOOL",
        help="variant to run (repeatable, replaces the default variants)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output")
    return parser.parse_args(argv)


def apply_overrides(config: HarnessConfig, args: argparse.Namespace) -> HarnessConfig:
    """Apply command line overrides on top of the file configuration.

    Returns:
        The updated configuration.
    """
    if args.max_runs is not None:
        config.max_runs = args.max_runs
    if args.requests is not None:
        config.requests = args.requests
    if args.concurrency is not None:
        config.concurrency = args.concurrency
    if args.ready_timeout is not None:
        config.ready_timeout = args.ready_timeout if args.ready_timeout > 0 else None
    return config


def variants_from_arguments(args: argparse.Namespace) -> dict[str, bool] | None:
    """Build the ordered variant map requested on the command line.

    Returns:
        The variant map, or None to use the defaults.

    Raises:
        ValueError: If a label is given twice.
    """
    if not args.variant:
        return None
    variants: dict[str, bool] = {}
    for label, flag_enabled in args.variant:
        if label in variants:
            msg = f"Variant label given more than once: {label}"
            raise ValueError(msg)
        variants[label] = flag_enabled
    return variants


def main(argv: list[str] | None = None) -> None:
    """Main entry point for variant benchmarking.

    Raises:
        SystemExit: If configuration is invalid or a benchmark cycle fails.
    """
    args = parse_arguments(argv)
    set_verbose(args.verbose)

    try:
        config = apply_overrides(HarnessConfig.from_dotenv(args.env_file), args)
        config.validate()
        variants = variants_from_arguments(args)
        # Reject invalid request counts and layout paths before anything runs
        config.load_generator_config()
        TargetProject.from_config(config)
    except (FileNotFoundError, ValueError, OSError) as e:
        logger.error("Configuration error: %s", e)
        raise SystemExit(1) from e

    logger.info("🚀 Starting variant benchmark")
    logger.info("📂 Project root: %s", config.root)
    logger.info("🔄 Runs per variant: %s", config.max_runs)
    logger.info("📏 %s requests at concurrency %s -> %s", config.requests, config.concurrency, config.load_url)

    try:
        results = VariantRunner.from_config(config, variants).run()
    except KeyboardInterrupt:
        logger.info("⏹️ Benchmark interrupted by user")
        raise SystemExit(130) from None
    except BenchmarkCycleError as e:
        logger.error("💥 %s", e)
        raise SystemExit(1) from e
    except Exception as e:
        logger.exception("💥 Benchmark failed with unexpected error")
        raise SystemExit(1) from e

    for label, result in results.items():
        print(f"{label}: {result}")


if __name__ == "__main__":
    main()
