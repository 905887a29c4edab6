"""Helper modules for comparative service benchmarking.

This package contains the building blocks of the variant benchmark harness:
process execution, health polling, load generation, result parsing and the
orchestrator that sequences one benchmark cycle per configuration variant.
"""

from __future__ import annotations
