"""Sample stream boundary for the trimming engine.

Audio decode/encode is delegated to libsndfile through ``soundfile``.
Everything past this module sees a :class:`StreamSpec` and blocks of signed
32-bit samples shaped ``(frames, channels)``, so the effects never depend on
the on-disk sample width.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

import numpy as np
import soundfile as sf

from ..errors import FileOpenError, InitializationError

logger = logging.getLogger("tailtrim.stream")

# Internal samples are full-scale signed 32-bit, whatever the file holds.
SAMPLE_BITS = 32
SAMPLE_MAX = 2 ** 31 - 1

_PRECISION: Dict[str, int] = {
  "PCM_S8": 8,
  "PCM_U8": 8,
  "PCM_16": 16,
  "PCM_24": 24,
  "PCM_32": 32,
  "FLOAT": 24,
  "DOUBLE": 32,
  "ULAW": 14,
  "ALAW": 13,
}

# String properties libsndfile can carry for a file.
_METADATA_KEYS = (
  "title",
  "copyright",
  "software",
  "artist",
  "comment",
  "date",
  "album",
  "license",
  "tracknumber",
  "genre",
)


def precision_for(encoding: str) -> int:
  return _PRECISION.get(encoding.upper(), 16)


@dataclass(frozen=True)
class StreamSpec:
  rate: int
  channels: int
  length: int
  precision: int = 16
  encoding: str = "PCM_16"
  container: str = "WAV"

  @property
  def frames(self) -> int:
    return self.length // max(self.channels, 1)

  @property
  def duration(self) -> float:
    return (self.length / max(self.channels, 1)) / max(self.rate, 1)

  def with_length(self, length: int) -> "StreamSpec":
    return replace(self, length=int(length))

  def compatible_with(self, other: "StreamSpec") -> bool:
    return self.rate == other.rate and self.channels == other.channels


def ensure_backend() -> str:
  """Check that libsndfile is usable for WAV and return its version."""

  try:
    formats = sf.available_formats()
  except (OSError, RuntimeError) as exc:  # pragma: no cover - broken install
    raise InitializationError(f"libsndfile unavailable: {exc}", location="ensure_backend") from exc
  if "WAV" not in formats:
    raise InitializationError("libsndfile has no WAV support", location="ensure_backend")
  return str(getattr(sf, "__libsndfile_version__", "unknown"))


class SampleReader:
  """Readable sample cursor over an opened file."""

  def __init__(self, path: str, handle: sf.SoundFile) -> None:
    self.path = path
    self._file = handle
    encoding = str(handle.subtype)
    self.spec = StreamSpec(
      rate=int(handle.samplerate),
      channels=int(handle.channels),
      length=int(handle.frames) * int(handle.channels),
      precision=precision_for(encoding),
      encoding=encoding,
      container=str(handle.format),
    )

  @property
  def closed(self) -> bool:
    return self._file.closed

  @property
  def comments(self) -> List[str]:
    meta = self._file.copy_metadata()
    return [f"{key}={value}" for key, value in meta.items() if value]

  def read(self, count: int) -> np.ndarray:
    """Return up to ``count`` frames; an empty block means end of stream."""

    return self._file.read(count, dtype="int32", always_2d=True)

  def close(self) -> None:
    if not self._file.closed:
      self._file.close()

  def __enter__(self) -> "SampleReader":
    return self

  def __exit__(self, *exc_info) -> None:
    self.close()


class SampleWriter:
  """Writable sample cursor; counts the frames it has been given."""

  def __init__(self, path: str, handle: sf.SoundFile, spec: StreamSpec) -> None:
    self.path = path
    self._file = handle
    self.spec = spec
    self.frames_written = 0

  @property
  def closed(self) -> bool:
    return self._file.closed

  def write(self, block: np.ndarray) -> None:
    if len(block) == 0:
      return
    self._file.write(block)
    self.frames_written += len(block)

  def close(self) -> None:
    if not self._file.closed:
      self._file.close()

  def __enter__(self) -> "SampleWriter":
    return self

  def __exit__(self, *exc_info) -> None:
    self.close()


def open_for_read(path: str) -> SampleReader:
  try:
    handle = sf.SoundFile(path, mode="r")
  except (OSError, RuntimeError) as exc:
    raise FileOpenError(path, exc, location="open_for_read") from exc
  return SampleReader(path, handle)


def open_for_write(path: str, spec: StreamSpec, comments: Optional[Sequence[str]] = None) -> SampleWriter:
  try:
    handle = sf.SoundFile(
      path,
      mode="w",
      samplerate=spec.rate,
      channels=spec.channels,
      subtype=spec.encoding,
      format=spec.container,
    )
  except (OSError, RuntimeError, ValueError) as exc:
    raise FileOpenError(path, exc, location="open_for_write") from exc

  for entry in comments or ():
    key, _, value = entry.partition("=")
    if key not in _METADATA_KEYS or not value:
      continue
    try:
      setattr(handle, key, value)
    except RuntimeError as exc:
      # Not every container stores every string property.
      logger.debug("[STREAM] Dropping %s metadata on %s: %s", key, path, exc)

  return SampleWriter(path, handle, spec.with_length(0))
