"""Directory-wide batch flows.

Three flows share the same per-file discipline (open, measure, run one
chain, release everything before the next file):

- trim: rewrite every candidate with its trailing silence removed
- target: find the file with the longest trailing silence, rewriting nothing
- peaks: report the loudest windowed RMS of every candidate

A failing file never stops the batch: it is recorded as a failed
:class:`BatchResult` and the run moves on to the next candidate.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Literal, Optional, Union

from ..config import Settings
from ..errors import FileOpenError, NoCandidatesError, StreamFlowError, TailTrimError
from ..storage import (
  DirectoryLister,
  is_temp_name,
  list_directory,
  remove_file,
  replace_file,
  temp_path_for,
  working_directory,
)
from .chain import build_chain, peak_stages, trailing_silence_stages
from .duration import DurationTracker, format_time
from .rms import scale_level
from .silence import Threshold, parse_threshold
from .stages import RMSAnalyzerStage, SinkStage
from .stream import open_for_read, open_for_write

logger = logging.getLogger("tailtrim.pipeline")

FlowType = Literal["trim", "target", "peaks"]


@dataclass
class BatchResult:
  filename: str
  duration_before: float = 0.0
  duration_after: float = 0.0
  ok: bool = True
  error: Optional[str] = None
  processing_chain: List[str] = field(default_factory=list)
  peak_percent: Optional[float] = None
  peak_db: Optional[float] = None

  @property
  def silence_removed(self) -> float:
    return max(self.duration_before - self.duration_after, 0.0) if self.ok else 0.0


@dataclass
class BatchSummary:
  flow: FlowType = "trim"
  results: List[BatchResult] = field(default_factory=list)
  total_before: float = 0.0
  total_after: float = 0.0
  target: Optional[str] = None
  target_silence: float = 0.0

  @property
  def silence_removed(self) -> float:
    return self.total_before - self.total_after

  @property
  def failures(self) -> List[BatchResult]:
    return [r for r in self.results if not r.ok]

  def report_lines(self) -> List[str]:
    if not self.results:
      return ["No files found"]

    lines: List[str] = []
    for result in self.results:
      if not result.ok:
        lines.append(f"FAILED: {result.filename}: {result.error}")
      elif self.flow == "peaks":
        lines.append(f"PEAK: {result.filename}: {result.peak_percent:.4f}% ({result.peak_db:.2f} dB)")
      elif self.flow == "target":
        lines.append(f"FILE: {result.filename}: {format_time(result.duration_before)}")
      else:
        lines.append(f"FILE: {result.filename}: {format_time(result.duration_after)}")

    if self.flow == "trim":
      lines.append(f"Total duration: {format_time(self.total_after)}")
      lines.append(f"Silence removed: {format_time(self.silence_removed)}")
    elif self.flow == "target":
      lines.append(f"Total duration: {format_time(self.total_before)}")
      if self.target is None:
        lines.append("No target found")
      else:
        lines.append(f"Target: {self.target} ({format_time(self.target_silence)} trailing silence)")
    return lines


@dataclass
class RunContext:
  """Everything one run owns; handed to every per-file step."""

  directory: Path
  settings: Settings
  threshold: Threshold
  duration: float
  lister: DirectoryLister = list_directory
  tracker: DurationTracker = field(default_factory=DurationTracker)
  summary: BatchSummary = field(default_factory=BatchSummary)

  def path_for(self, name: str) -> Path:
    return self.directory / name


def discover_candidates(listing: Iterable[str]) -> Iterator[str]:
  """Drop ``.``/``..`` and our own scratch files, keeping listing order."""

  for name in listing:
    if name in (os.curdir, os.pardir) or is_temp_name(name):
      continue
    yield name


class BatchOrchestrator:
  def __init__(self, settings: Optional[Settings] = None, lister: Optional[DirectoryLister] = None) -> None:
    self.settings = settings or Settings.from_env()
    self.lister = lister or list_directory

  def context(
    self,
    directory: Union[str, Path],
    threshold: Union[str, Threshold, None] = None,
    duration: Optional[float] = None,
    flow: FlowType = "trim",
  ) -> RunContext:
    return RunContext(
      directory=Path(directory).expanduser().resolve(),
      settings=self.settings,
      threshold=parse_threshold(threshold if threshold is not None else self.settings.silence_threshold),
      duration=float(duration) if duration is not None else self.settings.silence_duration,
      lister=self.lister,
      summary=BatchSummary(flow=flow),
    )

  def candidates(self, ctx: RunContext) -> List[str]:
    # Materialised up front: the trim flow renames files while it runs.
    names = list(discover_candidates(ctx.lister(ctx.settings.pattern)))
    if not names:
      raise NoCandidatesError(f"no {ctx.settings.pattern} files in {ctx.directory}", location="candidates")
    return names

  def _run(self, ctx: RunContext, step) -> BatchSummary:
    if not ctx.directory.is_dir():
      raise FileOpenError(
        str(ctx.directory),
        NotADirectoryError(f"not a directory: {ctx.directory}"),
        location="working_directory",
      )

    with working_directory(ctx.directory):
      try:
        names = self.candidates(ctx)
      except NoCandidatesError as exc:
        logger.warning("[BATCH] No files found: %s", exc.message)
        return ctx.summary

      logger.info("[BATCH] %s: %d candidate(s) in %s", ctx.summary.flow, len(names), ctx.directory)
      for index, name in enumerate(names, 1):
        logger.info("[BATCH] [%d/%d] %s", index, len(names), name)
        result = self._guarded(ctx, name, step)
        ctx.summary.results.append(result)
        if result.ok:
          ctx.tracker.record(result.duration_before, result.duration_after)

    ctx.summary.total_before = ctx.tracker.total_before
    ctx.summary.total_after = ctx.tracker.total_after
    if ctx.summary.failures:
      logger.warning("[BATCH] %d of %d file(s) failed", len(ctx.summary.failures), len(ctx.summary.results))
    return ctx.summary

  def _guarded(self, ctx: RunContext, name: str, step) -> BatchResult:
    try:
      return step(ctx, name)
    except MemoryError:
      raise
    except TailTrimError as exc:
      logger.warning("[BATCH] %s failed: %s", name, exc)
      return BatchResult(filename=name, ok=False, error=str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.exception("[BATCH] Unexpected failure on %s", name)
      return BatchResult(filename=name, ok=False, error=f"{type(exc).__name__}: {exc}")

  # --- trim -------------------------------------------------------------

  def process_one(self, ctx: RunContext, name: str) -> BatchResult:
    """Trim one file in place; every handle and scratch file is released."""

    stages = trailing_silence_stages(ctx.duration, ctx.threshold, window=ctx.settings.rms_window)
    result = BatchResult(filename=name, processing_chain=[s.kind for s in stages])
    path = ctx.path_for(name)
    temp = temp_path_for(path)
    try:
      with open_for_read(str(path)) as reader:
        result.duration_before = reader.spec.duration
        with open_for_write(str(temp), reader.spec, reader.comments) as writer:
          with build_chain(reader, writer, stages, block_frames=ctx.settings.block_frames) as chain:
            chain.run()

      with open_for_read(str(temp)) as trimmed:
        result.duration_after = trimmed.spec.duration

      try:
        replace_file(temp, path)
      except OSError as exc:
        raise FileOpenError(str(path), exc, location="replace") from exc
    finally:
      remove_file(temp)

    logger.info(
      "[TRIM] %s: %.3fs -> %.3fs (removed %.3fs)",
      name,
      result.duration_before,
      result.duration_after,
      result.silence_removed,
    )
    return result

  def run_batch(
    self,
    directory: Union[str, Path],
    threshold: Union[str, Threshold, None] = None,
    duration: Optional[float] = None,
  ) -> BatchSummary:
    ctx = self.context(directory, threshold, duration, flow="trim")
    summary = self._run(ctx, self.process_one)
    logger.info(
      "[BATCH] Total duration %s, silence removed %s",
      format_time(summary.total_after),
      format_time(summary.silence_removed),
    )
    return summary

  # --- target -----------------------------------------------------------

  def measure_trailing_silence(self, ctx: RunContext, name: str) -> BatchResult:
    stages = trailing_silence_stages(
      ctx.duration, ctx.threshold, window=ctx.settings.rms_window, restore_order=False
    )
    result = BatchResult(filename=name, processing_chain=[s.kind for s in stages])
    with open_for_read(str(ctx.path_for(name))) as reader:
      result.duration_before = reader.spec.duration
      with build_chain(reader, None, stages, block_frames=ctx.settings.block_frames) as chain:
        sink = chain.run()
      if not isinstance(sink, SinkStage):
        raise StreamFlowError(sink.kind, TypeError("chain does not end in a sink"))
      result.duration_after = sink.frames / max(reader.spec.rate, 1)
    return result

  def find_quietest_target(
    self,
    directory: Union[str, Path],
    threshold: Union[str, Threshold, None] = None,
    duration: Optional[float] = None,
  ) -> BatchSummary:
    ctx = self.context(directory, threshold, duration, flow="target")

    def step(ctx: RunContext, name: str) -> BatchResult:
      result = self.measure_trailing_silence(ctx, name)
      silence = result.silence_removed
      # Strictly larger only: the first file keeps a tie.
      if silence > ctx.summary.target_silence:
        ctx.summary.target = name
        ctx.summary.target_silence = silence
      return result

    summary = self._run(ctx, step)
    if summary.target is None:
      logger.info("[TARGET] No file with trailing silence")
    else:
      logger.info("[TARGET] %s (%.3fs trailing silence)", summary.target, summary.target_silence)
    return summary

  # --- peaks ------------------------------------------------------------

  def measure_peak(self, ctx: RunContext, name: str) -> BatchResult:
    stages = peak_stages(window=ctx.settings.rms_window)
    result = BatchResult(filename=name, processing_chain=[s.kind for s in stages])
    with open_for_read(str(ctx.path_for(name))) as reader:
      result.duration_before = result.duration_after = reader.spec.duration
      with build_chain(reader, None, stages, block_frames=ctx.settings.block_frames) as chain:
        analyzer = chain.run()
      if not isinstance(analyzer, RMSAnalyzerStage) or analyzer.peak is None:
        raise StreamFlowError(analyzer.kind, TypeError("chain does not end in an rms analyzer"))
      result.peak_percent = analyzer.peak.value
      result.peak_db = float(scale_level(analyzer.peak.rms, "d"))
    return result

  def measure_peaks(self, directory: Union[str, Path]) -> BatchSummary:
    ctx = self.context(directory, flow="peaks")
    return self._run(ctx, self.measure_peak)


def run_batch(directory, threshold=None, duration=None, settings: Optional[Settings] = None) -> BatchSummary:
  return BatchOrchestrator(settings).run_batch(directory, threshold, duration)


def find_quietest_target(directory, threshold=None, duration=None, settings: Optional[Settings] = None) -> BatchSummary:
  return BatchOrchestrator(settings).find_quietest_target(directory, threshold, duration)


def measure_peaks(directory, settings: Optional[Settings] = None) -> BatchSummary:
  return BatchOrchestrator(settings).measure_peaks(directory)
