"""tc <directory> <threshold>

Trim trailing silence from every .wav file in <directory>, in place:

  tc ~/Recordings 0.3
  tc ~/Recordings 0.5% --duration 0.25
  tc ~/Recordings 0.3 --target     # only report the file with the longest tail
  tc ~/Recordings --peak           # report the loudest windowed RMS per file
"""

import argparse
import sys
from typing import List, Optional

from pydantic import ValidationError

from tailtrim.config import Settings, normalize_threshold
from tailtrim.dsp_engine import BatchOrchestrator
from tailtrim.dsp_engine.stream import ensure_backend
from tailtrim.errors import InitializationError, TailTrimError
from tailtrim.logging_config import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tc",
        description="Trim trailing silence from the WAV files of a folder, in place.",
    )
    parser.add_argument("directory", nargs="?", help="Folder whose .wav files are rewritten.")
    parser.add_argument(
        "threshold",
        nargs="?",
        help="Silence threshold as percent of full scale, decimal point required (0.3 or 0.3%%).",
    )
    parser.add_argument("--duration", type=float, help="Seconds of sound that end a silent stretch (default 0.1).")
    parser.add_argument("--window", type=int, help="RMS window in samples (default 20 ms of audio).")
    parser.add_argument("--pattern", help="Glob for candidate files (default *.wav).")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--target", action="store_true", help="Find the file with the longest trailing silence.")
    mode.add_argument("--peak", action="store_true", help="Report peak RMS loudness per file.")
    parser.add_argument("--log-level", help="Logging level (default INFO, or TAILTRIM_LOG_LEVEL).")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.directory or (not args.threshold and not args.peak):
        parser.print_usage()
        return 0

    overrides = {
        "silence_duration": args.duration,
        "rms_window": args.window,
        "pattern": args.pattern,
        "log_level": args.log_level,
    }
    try:
        if args.threshold:
            overrides["silence_threshold"] = normalize_threshold(args.threshold)
        settings = Settings.from_env(**{k: v for k, v in overrides.items() if v is not None})
    except (ValueError, ValidationError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 2

    setup_logging(settings.log_level)

    try:
        ensure_backend()
    except InitializationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    orchestrator = BatchOrchestrator(settings)
    try:
        if args.peak:
            summary = orchestrator.measure_peaks(args.directory)
        elif args.target:
            summary = orchestrator.find_quietest_target(args.directory)
        else:
            summary = orchestrator.run_batch(args.directory)
    except TailTrimError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    for line in summary.report_lines():
        print(line)

    return 1 if summary.failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
