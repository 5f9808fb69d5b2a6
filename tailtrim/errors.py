"""Error kinds raised by the trimming engine.

Every error carries a numeric ``code``, the ``location`` it was raised from
and a human readable message, so the CLI and the HTTP layer can report
failures without reaching back into the engine.
"""

from __future__ import annotations

from typing import Optional

# Generic code for failures reported by the audio layer rather than the OS.
AUDIO_LIB_ERROR = 399


class TailTrimError(Exception):
    code: int = AUDIO_LIB_ERROR

    def __init__(self, message: str, *, location: str = "", code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        where = f"{self.location}: " if self.location else ""
        return f"[{self.code}] {where}{self.message}"


class InitializationError(TailTrimError):
    """The audio backend could not be started. Fatal for the whole run."""


class FileOpenError(TailTrimError):
    """An input could not be opened for read, or an output for write."""

    def __init__(self, path: str, cause: BaseException, *, location: str = "open") -> None:
        code = getattr(cause, "errno", None) or AUDIO_LIB_ERROR
        reason = getattr(cause, "strerror", None) or str(cause)
        super().__init__(f"{path}: {reason}", location=location, code=code)
        self.path = path
        self.cause = cause


class ChainBuildError(TailTrimError):
    """A stage could not be appended to an effect chain."""

    def __init__(self, stage_index: int, reason: str, *, location: str = "build_chain") -> None:
        super().__init__(f"stage {stage_index}: {reason}", location=location)
        self.stage_index = stage_index
        self.reason = reason


class StreamFlowError(TailTrimError):
    """Samples could not be streamed through a built chain."""

    def __init__(self, stage: str, cause: BaseException, *, location: str = "run_chain") -> None:
        super().__init__(f"{stage}: {cause}", location=location)
        self.stage = stage
        self.cause = cause


class NoCandidatesError(TailTrimError):
    """The directory holds no file matching the candidate pattern."""
