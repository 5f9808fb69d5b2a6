"""Effect chain construction and execution.

A chain is described as a list of :class:`StageSpec` (kind + raw params),
bound to an open reader and an optional writer. Building validates each
stage in order and fails with the index of the first stage that cannot be
appended; running streams every block from the source through the stages
and then flushes them front to back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
from pydantic import BaseModel, ValidationError

from ..errors import ChainBuildError, StreamFlowError
from .silence import SilenceTrimConfig, SilenceTrimStage, Threshold
from .stages import (
  SINK_KINDS,
  EffectStage,
  ReverseStage,
  RMSAnalyzerStage,
  RMSConfig,
  SinkStage,
  SourceStage,
)
from .stream import SampleReader, SampleWriter, StreamSpec

logger = logging.getLogger("tailtrim.chain")

DEFAULT_BLOCK_FRAMES = 8192


@dataclass(frozen=True)
class StageSpec:
  kind: str
  params: Mapping[str, Any] = field(default_factory=dict)


def _no_params(kind: str) -> Callable[[Mapping[str, Any]], None]:
  def check(params: Mapping[str, Any]) -> None:
    if params:
      raise ValueError(f"{kind} takes no parameters, got {sorted(params)}")
  return check


def _config_factory(model: type, stage_cls: type) -> Callable[[Mapping[str, Any]], EffectStage]:
  def make(params: Mapping[str, Any]) -> EffectStage:
    config: BaseModel = model(**dict(params))
    return stage_cls(config)
  return make


def _make_reverse(params: Mapping[str, Any]) -> EffectStage:
  _no_params("reverse")(params)
  return ReverseStage()


STAGE_FACTORIES: Dict[str, Callable[[Mapping[str, Any]], EffectStage]] = {
  "reverse": _make_reverse,
  "silence-trim": _config_factory(SilenceTrimConfig, SilenceTrimStage),
  "rms-analyze": _config_factory(RMSConfig, RMSAnalyzerStage),
}


def trailing_silence_stages(
  duration: Union[float, str] = 0.1,
  threshold: Union[str, Threshold] = "0.3%",
  *,
  window: Optional[int] = None,
  restore_order: bool = True,
) -> List[StageSpec]:
  """reverse → trim leading silence → reverse: trailing silence removal.

  ``window`` overrides the RMS window of the trim, in samples. With
  ``restore_order=False`` the second reverse is left out, which is enough
  when only the number of surviving frames matters.
  """

  trim: Dict[str, Any] = {"duration": duration, "threshold": threshold}
  if window is not None:
    trim["window"] = window
  stages = [
    StageSpec("source"),
    StageSpec("reverse"),
    StageSpec("silence-trim", trim),
  ]
  if restore_order:
    stages.append(StageSpec("reverse"))
  stages.append(StageSpec("sink"))
  return stages


def peak_stages(window: Optional[int] = None, unit: str = "%") -> List[StageSpec]:
  params: Dict[str, Any] = {"unit": unit}
  if window is not None:
    params["window"] = window
  return [StageSpec("source"), StageSpec("rms-analyze", params)]


class EffectChain:
  """A built chain. Run it once, then tear it down."""

  def __init__(self, stages: Sequence[EffectStage]) -> None:
    self.stages: List[EffectStage] = list(stages)
    self._result: Optional[EffectStage] = None
    self._error: Optional[StreamFlowError] = None
    self._active: EffectStage = self.stages[0]
    self._torn_down = False

  @property
  def source(self) -> SourceStage:
    return self.stages[0]  # type: ignore[return-value]

  @property
  def sink(self) -> EffectStage:
    return self.stages[-1]

  @property
  def names(self) -> List[str]:
    return [stage.kind for stage in self.stages]

  def stage(self, kind: str) -> EffectStage:
    for stage in self.stages:
      if stage.kind == kind:
        return stage
    raise KeyError(kind)

  def _push(self, start: int, block: np.ndarray) -> None:
    for stage in self.stages[start:]:
      if len(block) == 0:
        return
      self._active = stage
      block = stage.process(block)

  def run(self) -> EffectStage:
    """Stream the whole source through the chain; returns the sink stage."""

    if self._result is not None:
      return self._result
    if self._error is not None:
      raise self._error
    if self._torn_down:
      raise StreamFlowError("chain", RuntimeError("chain has been torn down"))

    try:
      while True:
        self._active = self.source
        block = self.source.read_block()
        if block is None:
          break
        self._push(1, block)
      for index in range(1, len(self.stages)):
        current = self.stages[index]
        self._active = current
        for block in current.flush():
          self._push(index + 1, block)
    except (OSError, RuntimeError, ValueError, MemoryError) as exc:
      self._error = StreamFlowError(self._active.kind, exc)
      raise self._error from exc

    logger.debug("[CHAIN] %s ran %d frames", " -> ".join(self.names), self.source.frames_read)
    self._result = self.sink
    return self._result

  def teardown(self) -> None:
    if self._torn_down:
      return
    self._torn_down = True
    for stage in self.stages:
      if stage.started:
        stage.stop()

  def __enter__(self) -> "EffectChain":
    return self

  def __exit__(self, *exc_info) -> None:
    self.teardown()


def build_chain(
  source: SampleReader,
  sink: Optional[SampleWriter],
  stage_list: Sequence[StageSpec],
  *,
  block_frames: int = DEFAULT_BLOCK_FRAMES,
) -> EffectChain:
  if not stage_list:
    raise ChainBuildError(0, "chain has no stages")
  if stage_list[0].kind != "source":
    raise ChainBuildError(0, f"first stage must be a source, got {stage_list[0].kind!r}")
  last = len(stage_list) - 1
  if stage_list[last].kind not in SINK_KINDS:
    raise ChainBuildError(last, f"last stage must be a sink or analyzer, got {stage_list[last].kind!r}")

  built: List[EffectStage] = []
  spec: Optional[StreamSpec] = None

  def fail(index: int, reason: str) -> ChainBuildError:
    for stage in built:
      if stage.started:
        stage.stop()
    return ChainBuildError(index, reason)

  for index, entry in enumerate(stage_list):
    kind = entry.kind
    if kind == "source" and index != 0:
      raise fail(index, "source may only be the first stage")
    if kind in SINK_KINDS and index != last:
      raise fail(index, f"{kind} may only be the last stage")

    try:
      if kind == "source":
        _no_params("source")(entry.params)
        stage: EffectStage = SourceStage(source, block_frames)
      elif kind == "sink":
        _no_params("sink")(entry.params)
        stage = SinkStage(sink)
      elif kind in STAGE_FACTORIES:
        stage = STAGE_FACTORIES[kind](entry.params)
      else:
        raise fail(index, f"unknown stage kind {kind!r}")
    except ValidationError as exc:
      errors = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
      raise fail(index, f"invalid {kind} parameters: {errors}") from exc
    except (TypeError, ValueError) as exc:
      raise fail(index, f"invalid {kind} parameters: {exc}") from exc

    try:
      spec = stage.start(spec if spec is not None else source.spec)
    except ValueError as exc:
      raise fail(index, str(exc)) from exc
    built.append(stage)

  logger.debug("[CHAIN] Built %s for %s", " -> ".join(s.kind for s in built), source.path)
  return EffectChain(built)
