"""Streaming windowed RMS with peak loudness tracking.

The window is a ring of squared samples shared by the interleaved channels
of a stream: a frame's channel values enter the ring one after another, so
a window of ``rate // 50 * channels`` slots always spans the last 20 ms of
every channel. Each new value replaces the oldest square, and the RMS is
taken over the whole ring, zeros included while it is still filling.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence, Tuple

import numpy as np

from .stream import SAMPLE_BITS, SAMPLE_MAX, StreamSpec

Unit = Literal["%", "d"]


def default_window(spec: StreamSpec, window_ms: float = 20.0) -> int:
  frames = max(1, int(spec.rate * window_ms / 1000.0))
  return frames * max(1, spec.channels)


def precision_mask(precision: int) -> int:
  bits = min(max(int(precision), 1), SAMPLE_BITS)
  return -1 << (SAMPLE_BITS - bits)


def mask_samples(values: np.ndarray, precision: int) -> np.ndarray:
  """Zero the bits below ``precision``; quantisation noise there is not signal."""

  return np.bitwise_and(np.asarray(values, dtype=np.int64), precision_mask(precision))


def scale_level(rms, unit: Unit = "%"):
  """Express RMS amplitude as percent of full scale or as dBFS."""

  ratio = np.abs(np.asarray(rms, dtype=np.float64)) / SAMPLE_MAX
  if unit == "%":
    return ratio * 100.0
  with np.errstate(divide="ignore"):
    return 20.0 * np.log10(ratio)


@dataclass
class RMSWindow:
  capacity: int
  squares: np.ndarray = field(repr=False)
  total: float = 0.0
  cursor: int = 0

  @classmethod
  def empty(cls, capacity: int) -> "RMSWindow":
    if capacity <= 0:
      raise ValueError(f"RMS window must hold at least one sample, got {capacity}")
    return cls(capacity=int(capacity), squares=np.zeros(int(capacity), dtype=np.float64))

  def push(self, value: float) -> float:
    square = float(value) * float(value)
    total = self.total - float(self.squares[self.cursor]) + square
    self.squares[self.cursor] = square
    self.cursor = (self.cursor + 1) % self.capacity
    self.total = max(total, 0.0)
    return math.sqrt(self.total / self.capacity)

  def push_many(self, values: np.ndarray) -> np.ndarray:
    """Push a 1-D run of values; returns the RMS seen after each push."""

    n = int(values.shape[0])
    if n == 0:
      return np.empty(0, dtype=np.float64)

    size = self.capacity
    ordered = np.roll(self.squares, -self.cursor)
    ext = np.concatenate([ordered, np.asarray(values, dtype=np.float64) ** 2])
    csum = np.concatenate([[0.0], np.cumsum(ext)])
    sums = np.maximum(csum[size + 1:size + n + 1] - csum[1:n + 1], 0.0)

    self.squares = ext[-size:].copy()
    self.cursor = 0
    self.total = float(self.squares.sum())
    return np.sqrt(sums / size)


@dataclass
class LoudnessPeak:
  unit: Unit = "%"
  value: float = 0.0
  rms: float = 0.0
  observed: bool = False

  def offer(self, level: float, rms: float) -> bool:
    if self.observed and not level > self.value:
      return False
    self.value = float(level)
    self.rms = float(rms)
    self.observed = True
    return True


class RMSAnalyzer:
  """Windowed RMS over a sample stream, keeping the loudest value seen."""

  def __init__(self, precision: int = SAMPLE_BITS, unit: Unit = "%") -> None:
    self.precision = precision
    self.unit: Unit = unit
    self.window: Optional[RMSWindow] = None
    self.peak = LoudnessPeak(unit=unit)
    self._finalized = False

  def reset(self, window_size: int) -> None:
    self.window = RMSWindow.empty(window_size)
    self.peak = LoudnessPeak(unit=self.unit)
    self._finalized = False

  def _require_window(self) -> RMSWindow:
    if self.window is None or self._finalized:
      raise RuntimeError("RMSAnalyzer.reset() must be called before processing")
    return self.window

  def process_frame(self, samples: Sequence[int]) -> None:
    window = self._require_window()
    mask = precision_mask(self.precision)
    for value in samples:
      rms = window.push(float(int(value) & mask))
      self.peak.offer(float(scale_level(rms, self.unit)), rms)

  def measure_block(self, block: np.ndarray) -> np.ndarray:
    """Scaled RMS after every sample of a ``(frames, channels)`` block.

    Samples are consumed frame by frame, channels in order, exactly as
    :meth:`process_frame` would; the result has the block's shape.
    """

    window = self._require_window()
    block = np.asarray(block)
    if block.ndim == 1:
      block = block[:, np.newaxis]
    flat = mask_samples(block.reshape(-1), self.precision)
    rms = window.push_many(flat)
    levels = scale_level(rms, self.unit)
    if levels.size:
      best = int(np.argmax(levels))
      self.peak.offer(float(levels[best]), float(rms[best]))
    return levels.reshape(block.shape)

  def process_block(self, block: np.ndarray) -> None:
    self.measure_block(block)

  def finalize(self) -> Tuple[RMSWindow, LoudnessPeak]:
    window = self._require_window()
    self._finalized = True
    return window, self.peak
