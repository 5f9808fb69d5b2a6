"""Stream durations and running before/after totals."""
from __future__ import annotations

from dataclasses import dataclass

from .stream import StreamSpec


def duration_of(spec: StreamSpec) -> float:
  return spec.duration


def format_time(seconds: float, hours: bool = False) -> str:
  """``MM:SS.ss``, or ``HH:MM:SS.ss`` when there are hours (or ``hours=True``)."""

  centis = int(round(max(float(seconds), 0.0) * 100))
  hh, rest = divmod(centis, 360000)
  mm, rest = divmod(rest, 6000)
  ss = rest / 100.0
  if hh or hours:
    return f"{hh:02d}:{mm:02d}:{ss:05.2f}"
  return f"{mm:02d}:{ss:05.2f}"


@dataclass
class DurationTracker:
  total_before: float = 0.0
  total_after: float = 0.0
  files: int = 0

  def record(self, before: float, after: float) -> None:
    self.total_before += float(before)
    self.total_after += float(after)
    self.files += 1

  @property
  def removed(self) -> float:
    return self.total_before - self.total_after
