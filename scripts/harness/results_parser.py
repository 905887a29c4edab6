"""Extraction of metrics from ApacheBench style load generator output.

A single log usually holds the concatenated output of several runs. Each
metric is recognised by fixed label substrings; the value is the first token
after the colon on the matching line.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .logger import logger
from .models import BenchmarkResult
from .stats import mean

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class MalformedMetricError(ValueError):
    """Raised when a metric line does not carry a parseable number."""

    def __init__(self, metric: str, line_number: int, line: str) -> None:
        """Initialise the error with the offending metric and line."""
        super().__init__(f"Malformed {metric} value on line {line_number}: {line.strip()!r}")
        self.metric = metric
        self.line_number = line_number
        self.line = line


@dataclass(frozen=True)
class MetricPattern:
    """A metric name and the substrings that must all appear on its line."""

    name: str
    labels: tuple[str, ...]

    def matches(self, line: str) -> bool:
        """Check whether the line reports this metric.

        Returns:
            True if every label substring is present.
        """
        return all(label in line for label in self.labels)


TOTAL_DURATION = MetricPattern("total duration", ("Time taken for tests",))
# ab prints two "Time per request" lines; only the per-batch one is wanted
REQUEST_LATENCY = MetricPattern(
    "request latency", ("Time per request", "across all concurrent requests")
)
THROUGHPUT = MetricPattern("requests per second", ("Requests per second",))


class ResultParser:
    """Reduces load generator output into a BenchmarkResult."""

    @staticmethod
    def samples(pattern: MetricPattern, lines: Sequence[str]) -> Iterator[float]:
        """Lazily yield every value of one metric found in the lines.

        Raises:
            MalformedMetricError: If a matching line has no numeric value.

        Yields:
            One float per matching line, in order.
        """
        for line_number, line in enumerate(lines, start=1):
            if not pattern.matches(line):
                continue
            _, _, remainder = line.partition(":")
            tokens = remainder.split()
            if not tokens:
                raise MalformedMetricError(pattern.name, line_number, line)
            try:
                yield float(tokens[0])
            except ValueError as e:
                raise MalformedMetricError(pattern.name, line_number, line) from e

    def total_durations(self, lines: Sequence[str]) -> Iterator[float]:
        """Yield the "Time taken for tests" samples."""
        return self.samples(TOTAL_DURATION, lines)

    def request_latencies(self, lines: Sequence[str]) -> Iterator[float]:
        """Yield the per-request latency across all concurrent requests."""
        return self.samples(REQUEST_LATENCY, lines)

    def throughputs(self, lines: Sequence[str]) -> Iterator[float]:
        """Yield the "Requests per second" samples."""
        return self.samples(THROUGHPUT, lines)

    def parse(self, text: str) -> BenchmarkResult:
        """Aggregate the full text of a load generator log.

        Returns:
            The mean of each metric across every run in the text.
        """
        lines = text.splitlines()
        return BenchmarkResult(
            total_duration_mean=mean(self.total_durations(lines), TOTAL_DURATION.name),
            request_latency_mean=mean(self.request_latencies(lines), REQUEST_LATENCY.name),
            requests_per_second_mean=mean(self.throughputs(lines), THROUGHPUT.name),
        )

    def parse_file(self, path: Path) -> BenchmarkResult:
        """Aggregate a load generator log file.

        Returns:
            The aggregated BenchmarkResult.
        """
        logger.debug("📄 Parsing load generator log %s", path)
        return self.parse(Path(path).read_text(encoding="utf-8", errors="replace"))
