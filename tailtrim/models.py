"""Response models for the HTTP service."""

import math
from typing import List, Optional

from pydantic import BaseModel

from tailtrim.dsp_engine import BatchSummary
from tailtrim.dsp_engine.analysis import LoudnessStats


def _finite(value: Optional[float]) -> Optional[float]:
    # JSON has no infinity; a silent file has a peak of -inf dB.
    if value is None or not math.isfinite(value):
        return None
    return value


class FileResult(BaseModel):
    filename: str
    ok: bool
    duration_before: float
    duration_after: float
    silence_removed: float
    error: Optional[str] = None
    peak_percent: Optional[float] = None
    peak_db: Optional[float] = None


class BatchResponse(BaseModel):
    status: str
    flow: str
    files: List[FileResult]
    total_before: float
    total_after: float
    silence_removed: float
    failures: int
    target: Optional[str] = None
    target_silence: Optional[float] = None
    report: List[str]

    @classmethod
    def from_summary(cls, summary: BatchSummary) -> "BatchResponse":
        files = [
            FileResult(
                filename=r.filename,
                ok=r.ok,
                duration_before=r.duration_before,
                duration_after=r.duration_after,
                silence_removed=r.silence_removed,
                error=r.error,
                peak_percent=r.peak_percent,
                peak_db=_finite(r.peak_db),
            )
            for r in summary.results
        ]
        return cls(
            status="failed" if summary.failures else "processed",
            flow=summary.flow,
            files=files,
            total_before=summary.total_before,
            total_after=summary.total_after,
            silence_removed=summary.silence_removed,
            failures=len(summary.failures),
            target=summary.target,
            target_silence=summary.target_silence if summary.flow == "target" else None,
            report=summary.report_lines(),
        )


class AnalysisResponse(BaseModel):
    sample_rate: int
    channels: int
    duration: float
    peak_percent: float
    peak_db: Optional[float] = None
    trailing_silence: float

    @classmethod
    def from_stats(cls, stats: LoudnessStats) -> "AnalysisResponse":
        return cls(
            sample_rate=stats.sample_rate,
            channels=stats.channels,
            duration=stats.duration,
            peak_percent=stats.peak_percent,
            peak_db=_finite(stats.peak_db),
            trailing_silence=stats.trailing_silence,
        )
