"""Leading-silence detection and removal.

Silence is judged on the windowed RMS of the signal, not on raw sample
values: a frame counts as sound when the RMS after any of its channel
samples is above the threshold. Output starts at the first frame of the
first run of sound lasting at least ``duration`` seconds; shorter bursts are
dropped together with the silence around them.

Placed between two reverse stages this strips trailing silence instead.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .rms import RMSAnalyzer, Unit, default_window
from .stages import EffectStage, empty_block
from .stream import StreamSpec

logger = logging.getLogger("tailtrim.silence")

_THRESHOLD_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+))\s*(%|d|db|dB)?\s*$")


class Threshold(BaseModel):
  model_config = ConfigDict(frozen=True)

  value: float
  unit: Unit = "%"

  def __str__(self) -> str:
    return f"{self.value:g}{self.unit}"


def parse_threshold(text: Union[str, float, Threshold]) -> Threshold:
  """Parse ``"0.3%"``, ``".5"`` (percent) or ``"-48d"`` (dBFS)."""

  if isinstance(text, Threshold):
    return text
  if isinstance(text, (int, float)):
    text = f"{text}%"
  match = _THRESHOLD_RE.match(str(text))
  if not match:
    raise ValueError(f"invalid threshold {text!r}")
  value = float(match.group(1))
  unit: Unit = "d" if (match.group(2) or "%").lower().startswith("d") else "%"
  if unit == "%" and not 0.0 <= value <= 100.0:
    raise ValueError(f"threshold {text!r} must be between 0% and 100%")
  if unit == "d" and value > 0.0:
    raise ValueError(f"threshold {text!r} must be at or below 0 dB")
  return Threshold(value=value, unit=unit)


class SilenceTrimConfig(BaseModel):
  model_config = ConfigDict(frozen=True, extra="forbid")

  duration: float = Field(default=0.1, ge=0.0)
  threshold: Threshold = Field(default_factory=lambda: Threshold(value=0.3, unit="%"))
  window: Optional[int] = Field(default=None, gt=0)

  @field_validator("threshold", mode="before")
  @classmethod
  def _parse_threshold(cls, value):
    return parse_threshold(value)


def required_frames(duration: float, rate: int) -> int:
  return max(1, int(round(duration * rate)))


def sound_run_lengths(above: np.ndarray, carry: int = 0) -> np.ndarray:
  """Length of the run of sound frames ending at each frame (0 for silence).

  ``carry`` is the length of a run still open from the previous block.
  """

  idx = np.arange(above.shape[0])
  last_silent = np.maximum.accumulate(np.where(above, -1, idx))
  runs = idx - last_silent
  return np.where(last_silent < 0, runs + carry, runs)


def leading_silence_frames(block: np.ndarray, spec: StreamSpec, config: SilenceTrimConfig) -> int:
  """Count the leading frames a trim would drop from an in-memory signal."""

  stage = SilenceTrimStage(config)
  stage.start(spec.with_length(int(np.asarray(block).size)))
  stage.process(np.asarray(block))
  stage.flush()
  return stage.trimmed_frames


class SilenceTrimStage(EffectStage):
  kind = "silence-trim"

  def __init__(self, config: Optional[SilenceTrimConfig] = None) -> None:
    super().__init__()
    self.config = config or SilenceTrimConfig()
    self.analyzer: Optional[RMSAnalyzer] = None
    self.need = 1
    self.copying = False
    self.frames_in = 0
    self.frames_out = 0
    self._holdoff: List[np.ndarray] = []
    self._run = 0

  @property
  def trimmed_frames(self) -> int:
    return self.frames_in - self.frames_out

  def configure(self, spec: StreamSpec) -> StreamSpec:
    if spec.rate <= 0:
      raise ValueError(f"silence trim needs a positive sample rate, got {spec.rate}")
    analyzer = RMSAnalyzer(precision=spec.precision, unit=self.config.threshold.unit)
    analyzer.reset(self.config.window or default_window(spec))
    self.analyzer = analyzer
    self.need = required_frames(self.config.duration, spec.rate)
    self.copying = False
    self.frames_in = 0
    self.frames_out = 0
    self._holdoff = []
    self._run = 0
    # Output length is only known once the stream has been seen.
    return spec.with_length(0)

  def _emit(self, block: np.ndarray) -> np.ndarray:
    self.frames_out += len(block)
    return block

  def process(self, block: np.ndarray) -> np.ndarray:
    self.frames_in += len(block)
    if self.copying:
      return self._emit(block)
    if self.analyzer is None:
      raise RuntimeError("silence-trim stage used before start()")

    channels = block.shape[1]
    if len(block) == 0:
      return empty_block(channels)

    levels = self.analyzer.measure_block(block)
    above = np.any(levels > self.config.threshold.value, axis=1)
    runs = sound_run_lengths(above, carry=self._run)
    hits = np.nonzero(runs >= self.need)[0]

    if hits.size:
      hit = int(hits[0])
      start = hit - int(runs[hit]) + 1
      pieces = list(self._holdoff) if start < 0 else []
      pieces.append(block[max(start, 0):])
      self._holdoff = []
      self._run = 0
      self.copying = True
      logger.debug("[SILENCE] Sound found after %d frames", self.frames_in - len(block) + start)
      return self._emit(np.concatenate(pieces))

    tail = int(runs[-1])
    if tail == len(block) + self._run:
      self._holdoff.append(block)
    else:
      self._holdoff = [block[len(block) - tail:]] if tail else []
    self._run = tail
    return empty_block(channels)

  def flush(self) -> List[np.ndarray]:
    # A run that never reached the required length is silence too.
    self._holdoff = []
    self._run = 0
    return []

  def stop(self) -> None:
    self._holdoff = []
    self.analyzer = None
    super().stop()
