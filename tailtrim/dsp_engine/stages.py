"""Effect stages that make up a chain.

Every stage exposes the same small surface: ``start`` binds it to the
incoming signal and returns the outgoing one, ``process`` takes a block of
``(frames, channels)`` int32 samples and returns whatever is ready to pass
on, ``flush`` releases what is still held at end of input, and ``stop``
drops any state.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from .rms import LoudnessPeak, RMSAnalyzer, RMSWindow, Unit, default_window
from .stream import SampleReader, SampleWriter, StreamSpec

logger = logging.getLogger("tailtrim.stages")

SINK_KINDS = frozenset({"sink", "rms-analyze"})


def empty_block(channels: int) -> np.ndarray:
  return np.empty((0, max(channels, 1)), dtype=np.int32)


class EffectStage:
  kind: str = ""

  def __init__(self) -> None:
    self.in_spec: Optional[StreamSpec] = None
    self.out_spec: Optional[StreamSpec] = None
    self.started = False

  def start(self, spec: StreamSpec) -> StreamSpec:
    """Bind to ``spec``; raises ``ValueError`` when the signal is unusable."""

    out = self.configure(spec)
    self.in_spec = spec
    self.out_spec = out
    self.started = True
    return out

  def configure(self, spec: StreamSpec) -> StreamSpec:
    return spec

  def process(self, block: np.ndarray) -> np.ndarray:
    raise NotImplementedError

  def flush(self) -> List[np.ndarray]:
    return []

  def stop(self) -> None:
    self.started = False

  def __repr__(self) -> str:
    return f"<{self.__class__.__name__} {self.kind}>"


class SourceStage(EffectStage):
  kind = "source"

  def __init__(self, reader: SampleReader, block_frames: int = 8192) -> None:
    super().__init__()
    if block_frames <= 0:
      raise ValueError("block_frames must be positive")
    self.reader = reader
    self.block_frames = int(block_frames)
    self.frames_read = 0

  def configure(self, spec: StreamSpec) -> StreamSpec:
    if self.reader.closed:
      raise ValueError(f"input {self.reader.path} is closed")
    return self.reader.spec

  def read_block(self) -> Optional[np.ndarray]:
    block = self.reader.read(self.block_frames)
    if len(block) == 0:
      return None
    self.frames_read += len(block)
    return block

  def process(self, block: np.ndarray) -> np.ndarray:
    return block


class SinkStage(EffectStage):
  """Terminal stage writing to an output stream, or only counting frames."""

  kind = "sink"

  def __init__(self, writer: Optional[SampleWriter] = None) -> None:
    super().__init__()
    self.writer = writer
    self.frames = 0

  def configure(self, spec: StreamSpec) -> StreamSpec:
    if self.writer is not None:
      if self.writer.closed:
        raise ValueError(f"output {self.writer.path} is closed")
      if not self.writer.spec.compatible_with(spec):
        raise ValueError(
          f"output expects {self.writer.spec.rate} Hz x{self.writer.spec.channels}, "
          f"signal is {spec.rate} Hz x{spec.channels}"
        )
    return spec

  def process(self, block: np.ndarray) -> np.ndarray:
    if self.writer is not None:
      self.writer.write(block)
    self.frames += len(block)
    return empty_block(block.shape[1] if block.ndim == 2 else 1)


class ReverseStage(EffectStage):
  """Holds the whole stream and plays it back last frame first."""

  kind = "reverse"

  def __init__(self) -> None:
    super().__init__()
    self._blocks: List[np.ndarray] = []

  def process(self, block: np.ndarray) -> np.ndarray:
    if len(block):
      self._blocks.append(np.array(block, copy=True))
    return empty_block(block.shape[1] if block.ndim == 2 else 1)

  def flush(self) -> List[np.ndarray]:
    out = [np.ascontiguousarray(block[::-1]) for block in reversed(self._blocks)]
    self._blocks = []
    return out

  def stop(self) -> None:
    self._blocks = []
    super().stop()


class RMSConfig(BaseModel):
  model_config = ConfigDict(frozen=True, extra="forbid")

  window: Optional[int] = Field(default=None, gt=0)
  unit: Unit = "%"


class RMSAnalyzerStage(EffectStage):
  """Sink-class stage measuring the loudest windowed RMS of the stream."""

  kind = "rms-analyze"

  def __init__(self, config: Optional[RMSConfig] = None) -> None:
    super().__init__()
    self.config = config or RMSConfig()
    self.analyzer: Optional[RMSAnalyzer] = None
    self.window: Optional[RMSWindow] = None
    self.peak: Optional[LoudnessPeak] = None
    self.frames = 0

  def configure(self, spec: StreamSpec) -> StreamSpec:
    size = self.config.window or default_window(spec)
    analyzer = RMSAnalyzer(precision=spec.precision, unit=self.config.unit)
    analyzer.reset(size)
    self.analyzer = analyzer
    return spec

  def process(self, block: np.ndarray) -> np.ndarray:
    if self.analyzer is None:
      raise RuntimeError("rms-analyze stage used before start()")
    self.analyzer.process_block(block)
    self.frames += len(block)
    return empty_block(block.shape[1] if block.ndim == 2 else 1)

  def flush(self) -> List[np.ndarray]:
    if self.analyzer is not None and self.peak is None:
      self.window, self.peak = self.analyzer.finalize()
      logger.debug("[RMS] Peak %.4f%s over %d frames", self.peak.value, self.peak.unit, self.frames)
    return []

  def stop(self) -> None:
    self.analyzer = None
    super().stop()
