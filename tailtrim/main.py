import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import ValidationError

from tailtrim.config import Settings, normalize_threshold
from tailtrim.dsp_engine import BatchOrchestrator, BatchSummary
from tailtrim.dsp_engine.analysis import analyze_file
from tailtrim.dsp_engine.silence import SilenceTrimConfig
from tailtrim.errors import FileOpenError, TailTrimError
from tailtrim.models import AnalysisResponse, BatchResponse

logger = logging.getLogger("tailtrim")

app = FastAPI(title="tailtrim")


def _settings(duration: Optional[float]) -> Settings:
    try:
        if duration is None:
            return Settings.from_env()
        return Settings.from_env(silence_duration=duration)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"error": "INVALID_SETTINGS", "message": str(exc)}) from exc


def _threshold(threshold: Optional[str], settings: Settings) -> str:
    if not threshold:
        return settings.silence_threshold
    try:
        return normalize_threshold(threshold)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"error": "INVALID_THRESHOLD", "message": str(exc)}) from exc


def _error_detail(exc: TailTrimError) -> Dict[str, Any]:
    return {
        "error": type(exc).__name__,
        "code": exc.code,
        "location": exc.location,
        "message": exc.message,
    }


def _run_flow(flow: str, directory: str, threshold: Optional[str], duration: Optional[float]) -> BatchSummary:
    settings = _settings(duration)
    value = _threshold(threshold, settings)
    orchestrator = BatchOrchestrator(settings)
    try:
        if flow == "target":
            return orchestrator.find_quietest_target(directory, value)
        return orchestrator.run_batch(directory, value)
    except FileOpenError as exc:
        raise HTTPException(status_code=404, detail=_error_detail(exc)) from exc
    except TailTrimError as exc:
        logger.exception("[HTTP] %s failed for %s", flow, directory)
        raise HTTPException(status_code=500, detail=_error_detail(exc)) from exc


@app.get("/health")
async def health():
    """Lightweight health endpoint for uptime checks."""

    return {"status": "ok"}


@app.post("/trim", response_model=BatchResponse)
def trim(
    directory: str = Form(...),
    threshold: Optional[str] = Form(None),
    duration: Optional[float] = Form(None),
):
    """Trim trailing silence from every candidate file in ``directory``.

    Files are rewritten in place on the server's filesystem. Per-file
    failures do not fail the request; they are listed in ``files``.

    A plain ``def`` endpoint: the batch blocks on file I/O, so FastAPI runs
    it in its threadpool. Overlapping batches take turns on the process
    working directory (see ``storage.working_directory``).
    """

    summary = _run_flow("trim", directory, threshold, duration)
    return BatchResponse.from_summary(summary)


@app.post("/target", response_model=BatchResponse)
def target(
    directory: str = Form(...),
    threshold: Optional[str] = Form(None),
    duration: Optional[float] = Form(None),
):
    """Return the file with the longest trailing silence, rewriting nothing.

    Runs in the threadpool like ``/trim``.
    """

    summary = _run_flow("target", directory, threshold, duration)
    return BatchResponse.from_summary(summary)


@app.post("/analyze", response_model=AnalysisResponse)
def analyze(
    file: UploadFile = File(...),
    threshold: Optional[str] = Form(None),
    duration: Optional[float] = Form(None),
):
    """Peak RMS loudness and trailing silence of an uploaded file.

    Reads the whole upload in the threadpool; the working directory is
    never touched.
    """

    settings = _settings(duration)
    config = SilenceTrimConfig(
        duration=settings.silence_duration,
        threshold=_threshold(threshold, settings),
        window=settings.rms_window,
    )
    try:
        stats = analyze_file(file.file, config, window=settings.rms_window)
    except (RuntimeError, OSError) as exc:
        raise HTTPException(status_code=400, detail={"error": "UNREADABLE_AUDIO", "message": str(exc)}) from exc
    finally:
        file.file.close()
    return AnalysisResponse.from_stats(stats)
