"""Run settings.

Defaults can be overridden through ``TAILTRIM_*`` environment variables;
command line flags override both.
"""

import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SILENCE_DURATION = 0.1
SILENCE_THRESHOLD = "0.3%"
DEFAULT_PATTERN = "*.wav"
DEFAULT_BLOCK_FRAMES = 8192


def _check_threshold(text: str) -> str:
    # dsp_engine imports this module, so the parser is looked up lazily.
    from tailtrim.dsp_engine.silence import parse_threshold

    parse_threshold(text)
    return text


def normalize_threshold(text: str) -> str:
    """Validate a command line threshold and default its unit to percent.

    A decimal point is required (``0.5``, ``.3``); ``%`` is appended when no
    unit is given, so ``0.5`` becomes ``0.5%``.
    """

    text = (text or "").strip()
    if "." not in text:
        raise ValueError(f"threshold {text!r} needs a decimal point, e.g. 0.3 or 0.3%")
    if not text.endswith(("%", "d", "dB", "db")):
        text = f"{text}%"
    _check_threshold(text)
    return text


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    silence_duration: float = Field(default=SILENCE_DURATION, ge=0.0)
    silence_threshold: str = SILENCE_THRESHOLD
    pattern: str = DEFAULT_PATTERN
    block_frames: int = Field(default=DEFAULT_BLOCK_FRAMES, gt=0)
    rms_window: Optional[int] = Field(default=None, gt=0)
    log_level: str = "INFO"

    @field_validator("silence_threshold", mode="before")
    @classmethod
    def _valid_threshold(cls, value):
        return _check_threshold(str(value))

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        values = {
            "silence_duration": os.getenv("TAILTRIM_SILENCE_DURATION"),
            "silence_threshold": os.getenv("TAILTRIM_SILENCE_THRESHOLD"),
            "pattern": os.getenv("TAILTRIM_PATTERN"),
            "block_frames": os.getenv("TAILTRIM_BLOCK_FRAMES"),
            "rms_window": os.getenv("TAILTRIM_RMS_WINDOW"),
            "log_level": os.getenv("TAILTRIM_LOG_LEVEL"),
        }
        values.update(overrides)
        return cls(**{key: value for key, value in values.items() if value is not None})
