"""Incremental mean computation over metric samples.

The accumulator only keeps a running sum and count, so partial accumulators
built over separate shards of the samples can be combined into one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class EmptySampleError(ValueError):
    """Raised when a mean is requested over zero samples."""

    def __init__(self, metric: str) -> None:
        """Initialise the error for the metric that produced no samples."""
        super().__init__(f"Cannot compute mean for {metric}: no samples")
        self.metric = metric


@dataclass
class StatAccumulator:
    """Running sum and count of numeric samples."""

    total: float = 0.0
    count: int = 0

    def accept(self, value: float) -> None:
        """Add one sample."""
        self.total += value
        self.count += 1

    def extend(self, values: Iterable[float]) -> StatAccumulator:
        """Add every sample from an iterable.

        Returns:
            This accumulator, for chaining.
        """
        for value in values:
            self.accept(value)
        return self

    def combine(self, other: StatAccumulator) -> StatAccumulator:
        """Merge another accumulator into this one.

        Returns:
            This accumulator, for chaining.
        """
        self.total += other.total
        self.count += other.count
        return self

    def mean(self, metric: str = "samples") -> float:
        """Arithmetic mean of the accepted samples.

        Raises:
            EmptySampleError: If no samples were accepted.

        Returns:
            The mean value.
        """
        if self.count == 0:
            raise EmptySampleError(metric)
        return self.total / self.count


def mean(samples: Iterable[float], metric: str = "samples") -> float:
    """Compute the mean of a (possibly lazy) sequence of samples.

    Args:
        samples: Any iterable of numbers, consumed once.
        metric: Name used in the error raised for an empty input.

    Returns:
        The arithmetic mean.
    """
    return StatAccumulator().extend(samples).mean(metric)
