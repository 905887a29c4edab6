"""Results management for variant benchmarking.

This module provides the ResultsManager class that collects one
BenchmarkResult per variant, writes the final report files and logs a
summary with each variant compared against the first one.
"""

from __future__ import annotations

import csv
import json
from dataclasses import asdict, fields
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .logger import attach_file_handler, detach_handler, logger
from .models import BenchmarkResult

if TYPE_CHECKING:
    import logging

# Metrics where a smaller value is an improvement
LOWER_IS_BETTER = frozenset({"total_duration_mean", "request_latency_mean"})


def relative_change(baseline: float, value: float) -> float | None:
    """Percentage change of ``value`` against ``baseline``.

    Returns:
        The signed percentage, or None when the baseline is zero.
    """
    if baseline == 0:
        return None
    return (value - baseline) / baseline * 100


def check_label(label: str) -> str:
    """Check a variant label can name a directory inside the run directory.

    Returns:
        The label, unchanged.

    Raises:
        ValueError: If the label is empty, ``.``/``..`` or contains a path separator.
    """
    if label in {"", ".", ".."} or "/" in label or "\\" in label:
        msg = f"Variant label must be a plain name without path separators: {label!r}"
        raise ValueError(msg)
    return label


class ResultsManager:
    """Collects per-variant results and writes the run report.

    Every run gets its own directory under the logs root, named by the UTC
    start time, so earlier runs are never overwritten. Runs started within
    the same second get a numeric suffix.
    """

    def __init__(self, logs_root: Path, run_id: str | None = None) -> None:
        """Initialise the manager and mirror harness logging into the run directory."""
        if run_id is None:
            self.run_id, self.base_dir = self._create_run_dir(Path(logs_root))
        else:
            self.run_id = check_label(run_id)
            self.base_dir = Path(logs_root) / self.run_id
            self.base_dir.mkdir(parents=True, exist_ok=True)
        self.results: dict[str, BenchmarkResult] = {}
        self._file_handler: logging.Handler | None = attach_file_handler(
            self.base_dir / "benchmark.log"
        )

    @staticmethod
    def _create_run_dir(logs_root: Path) -> tuple[str, Path]:
        """Create a fresh, timestamped run directory.

        Returns:
            The run id and its directory.
        """
        logs_root.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(tz=UTC).strftime("%Y%m%d_%H%M%S")
        run_id, suffix = timestamp, 1
        while True:
            try:
                (logs_root / run_id).mkdir()
            except FileExistsError:
                suffix += 1
                run_id = f"{timestamp}_{suffix}"
            else:
                return run_id, logs_root / run_id

    def variant_log(self, label: str) -> Path:
        """Load generator log path for a variant in this run.

        Returns:
            ``<run dir>/<label>/ab.log``.

        Raises:
            ValueError: If the label would leave the run directory.
        """
        return self.base_dir / check_label(label) / "ab.log"

    def add_result(self, label: str, result: BenchmarkResult) -> None:
        """Record the result of a variant.

        Raises:
            ValueError: If the label already has a result.
        """
        if label in self.results:
            msg = f"Duplicate variant label: {label}"
            raise ValueError(msg)
        self.results[label] = result

    def save_results(self) -> None:
        """Write the report as CSV and JSON into the run directory."""
        metric_names = [field.name for field in fields(BenchmarkResult)]

        with (self.base_dir / "summary.csv").open("w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["variant", *metric_names])
            for label, result in self.results.items():
                writer.writerow([label, *(round(getattr(result, name), 3) for name in metric_names)])

        report = {label: asdict(result) for label, result in self.results.items()}
        (self.base_dir / "summary.json").write_text(
            json.dumps(report, indent=2) + "\n", encoding="utf-8"
        )
        logger.info("💾 Report written to %s", self.base_dir)

    def comparisons(self) -> dict[str, dict[str, float | None]]:
        """Relative change of every metric against the first variant.

        Returns:
            Mapping of label to metric name to signed percentage change.
        """
        if not self.results:
            return {}
        baseline_label, baseline = next(iter(self.results.items()))
        return {
            label: {
                field.name: relative_change(getattr(baseline, field.name), getattr(result, field.name))
                for field in fields(BenchmarkResult)
            }
            for label, result in self.results.items()
            if label != baseline_label
        }

    def print_summary(self) -> None:
        """Log the result table and the comparison against the first variant."""
        if not self.results:
            logger.warning("No results to summarise")
            return

        logger.info("=== BENCHMARK COMPLETE ===")
        logger.info("%-16s | %14s | %16s | %12s", "Variant", "Test time (s)", "Per request (ms)", "Req/s")
        for label, result in self.results.items():
            logger.info(
                "%-16s | %14.3f | %16.3f | %12.2f",
                label,
                result.total_duration_mean,
                result.request_latency_mean,
                result.requests_per_second_mean,
            )

        baseline_label = next(iter(self.results))
        for label, changes in self.comparisons().items():
            for metric, change in changes.items():
                if change is None:
                    logger.info("%s vs %s, %s: baseline is zero", label, baseline_label, metric)
                    continue
                better = change < 0 if metric in LOWER_IS_BETTER else change > 0
                logger.info(
                    "%s %s vs %s, %s: %+.1f%%",
                    "🟢" if better else "🔴",
                    label,
                    baseline_label,
                    metric,
                    change,
                )

    def close(self) -> None:
        """Stop mirroring logs into the run directory."""
        if self._file_handler is not None:
            detach_handler(self._file_handler)
            self._file_handler = None
