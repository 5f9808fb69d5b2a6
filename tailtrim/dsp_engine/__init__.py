"""Sample-processing core for tailtrim.

This package contains the building blocks of the trimming engine:
sample streams, windowed RMS analysis, silence trimming, effect chains
and the directory-wide batch flows built on top of them.
"""
from .pipeline import (
  run_batch,
  find_quietest_target,
  measure_peaks,
  BatchOrchestrator,
  BatchResult,
  BatchSummary,
  FlowType,
)

__all__ = [
  "run_batch",
  "find_quietest_target",
  "measure_peaks",
  "BatchOrchestrator",
  "BatchResult",
  "BatchSummary",
  "FlowType",
]
