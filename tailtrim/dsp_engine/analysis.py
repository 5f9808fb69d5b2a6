"""One-shot analysis of a signal already held in memory.

Used by the HTTP service for uploads; the batch flows stream files through
chains instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

import numpy as np
import soundfile as sf

from .rms import RMSAnalyzer, default_window, scale_level
from .silence import SilenceTrimConfig, leading_silence_frames
from .stream import StreamSpec, precision_for


@dataclass
class LoudnessStats:
  sample_rate: int
  channels: int
  duration: float
  peak_percent: float
  peak_db: float
  trailing_silence: float


def peak_rms(block: np.ndarray, spec: StreamSpec, window: Optional[int] = None) -> float:
  """Loudest windowed RMS of ``block`` as raw sample amplitude."""

  analyzer = RMSAnalyzer(precision=spec.precision)
  analyzer.reset(window or default_window(spec))
  analyzer.process_block(block)
  _, peak = analyzer.finalize()
  return peak.rms


def analyze_signal(
  block: np.ndarray,
  spec: StreamSpec,
  config: Optional[SilenceTrimConfig] = None,
  window: Optional[int] = None,
) -> LoudnessStats:
  config = config or SilenceTrimConfig()
  rms = peak_rms(block, spec, window) if len(block) else 0.0
  trailing = leading_silence_frames(block[::-1], spec, config) if len(block) else 0
  return LoudnessStats(
    sample_rate=spec.rate,
    channels=spec.channels,
    duration=spec.duration,
    peak_percent=float(scale_level(rms, "%")),
    peak_db=float(scale_level(rms, "d")),
    trailing_silence=trailing / max(spec.rate, 1),
  )


def analyze_file(
  file: Union[str, BinaryIO],
  config: Optional[SilenceTrimConfig] = None,
  window: Optional[int] = None,
) -> LoudnessStats:
  with sf.SoundFile(file) as handle:
    block = handle.read(dtype="int32", always_2d=True)
    encoding = str(handle.subtype)
    spec = StreamSpec(
      rate=int(handle.samplerate),
      channels=int(handle.channels),
      length=int(block.size),
      precision=precision_for(encoding),
      encoding=encoding,
      container=str(handle.format),
    )
  return analyze_signal(block, spec, config, window)
