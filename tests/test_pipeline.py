import os
from concurrent.futures import ThreadPoolExecutor

import pytest
import soundfile as sf

from tailtrim.config import Settings
from tailtrim.dsp_engine import BatchOrchestrator, find_quietest_target, measure_peaks, run_batch
from tailtrim.dsp_engine import pipeline
from tailtrim.dsp_engine.chain import StageSpec
from tailtrim.dsp_engine.pipeline import discover_candidates
from tailtrim.dsp_engine.silence import SilenceTrimStage
from tailtrim.errors import ChainBuildError, FileOpenError

from conftest import RATE, write_wav


def temp_files(directory):
    return [name for name in os.listdir(directory) if name.startswith(".tc-")]


def test_trim_removes_trailing_silence(tmp_path):
    write_wav(tmp_path / "take.wav", sound=9.0, silence=1.0)

    summary = run_batch(tmp_path, "0.3%")

    assert [r.filename for r in summary.results] == ["take.wav"]
    assert summary.results[0].duration_before == pytest.approx(10.0)
    assert summary.results[0].duration_after == pytest.approx(9.0)
    assert sf.info(str(tmp_path / "take.wav")).frames == 9 * RATE
    assert summary.report_lines() == [
        "FILE: take.wav: 00:09.00",
        "Total duration: 00:09.00",
        "Silence removed: 00:01.00",
    ]


def test_trim_keeps_format_and_channels(tmp_path):
    write_wav(tmp_path / "stereo.wav", sound=2.0, silence=0.5, channels=2, subtype="PCM_24")

    run_batch(tmp_path, "0.3%")

    info = sf.info(str(tmp_path / "stereo.wav"))
    assert info.channels == 2
    assert info.subtype == "PCM_24"
    assert info.samplerate == RATE
    assert info.frames == 2 * RATE


def test_second_trim_changes_nothing(tmp_path):
    write_wav(tmp_path / "take.wav", sound=2.0, silence=1.0)
    run_batch(tmp_path, "0.3%")

    again = run_batch(tmp_path, "0.3%")

    assert again.silence_removed == pytest.approx(0.0)
    assert again.results[0].duration_after == pytest.approx(2.0)


def test_all_silent_file_becomes_empty(tmp_path):
    write_wav(tmp_path / "room.wav", sound=0.0, silence=2.0)

    summary = run_batch(tmp_path, "0.3%")

    assert summary.results[0].ok
    assert summary.results[0].duration_after == 0.0
    assert sf.info(str(tmp_path / "room.wav")).frames == 0


def test_empty_directory_reports_no_files(tmp_path):
    summary = run_batch(tmp_path, "0.3%")

    assert summary.results == []
    assert summary.total_before == summary.total_after == 0.0
    assert summary.report_lines() == ["No files found"]


def test_only_matching_files_are_candidates(tmp_path):
    write_wav(tmp_path / "take.wav", sound=1.0, silence=0.5)
    (tmp_path / "notes.txt").write_text("not audio")
    (tmp_path / ".tc-0123456789ab.wav").write_bytes(b"leftover")

    summary = run_batch(tmp_path, "0.3%")

    assert [r.filename for r in summary.results] == ["take.wav"]


def test_discover_candidates_skips_dot_entries_and_scratch_files():
    names = [".", "..", "a.wav", ".tc-abcdef012345.wav", "b.wav"]
    assert list(discover_candidates(names)) == ["a.wav", "b.wav"]


def test_broken_file_does_not_stop_the_batch(tmp_path):
    (tmp_path / "broken.wav").write_bytes(b"this is not a wav file")
    write_wav(tmp_path / "good.wav", sound=2.0, silence=1.0)

    summary = run_batch(tmp_path, "0.3%")

    by_name = {r.filename: r for r in summary.results}
    assert not by_name["broken.wav"].ok
    assert by_name["good.wav"].ok
    assert [r.filename for r in summary.failures] == ["broken.wav"]
    assert summary.total_before == pytest.approx(3.0)
    assert summary.total_after == pytest.approx(2.0)
    assert any(line.startswith("FAILED: broken.wav: ") for line in summary.report_lines())
    assert temp_files(tmp_path) == []


def test_no_scratch_files_left_and_cwd_restored(tmp_path):
    for index in range(3):
        write_wav(tmp_path / f"take{index}.wav", sound=1.0, silence=0.5)
    cwd = os.getcwd()

    run_batch(tmp_path, "0.3%")

    assert os.getcwd() == cwd
    assert temp_files(tmp_path) == []
    assert sorted(os.listdir(tmp_path)) == ["take0.wav", "take1.wav", "take2.wav"]


def test_metadata_survives_trim(tmp_path):
    write_wav(tmp_path / "take.wav", sound=1.0, silence=0.5, title="Take One")

    run_batch(tmp_path, "0.3%")

    with sf.SoundFile(str(tmp_path / "take.wav")) as f:
        assert f.title == "Take One"


def test_chain_failure_leaves_original_untouched(tmp_path, monkeypatch):
    write_wav(tmp_path / "take.wav", sound=1.0, silence=0.5)

    def broken(*args, **kwargs):
        raise ChainBuildError(1, "boom")

    monkeypatch.setattr(pipeline, "build_chain", broken)
    summary = run_batch(tmp_path, "0.3%")

    result = summary.results[0]
    assert not result.ok
    assert "boom" in result.error
    assert sf.info(str(tmp_path / "take.wav")).frames == int(1.5 * RATE)
    assert temp_files(tmp_path) == []


def test_missing_directory_raises(tmp_path):
    with pytest.raises(FileOpenError):
        run_batch(tmp_path / "nowhere", "0.3%")


def test_settings_supply_threshold_and_duration(tmp_path):
    write_wav(tmp_path / "take.wav", sound=1.0, silence=0.5)
    settings = Settings(silence_threshold="0.3%", silence_duration=0.05, block_frames=256)

    summary = BatchOrchestrator(settings).run_batch(tmp_path)

    assert summary.results[0].duration_after == pytest.approx(1.0)


def test_target_is_file_with_longest_silence(tmp_path):
    write_wav(tmp_path / "a.wav", sound=2.0, silence=0.2)
    write_wav(tmp_path / "b.wav", sound=2.0, silence=0.9)
    write_wav(tmp_path / "c.wav", sound=2.0, silence=0.5)

    summary = find_quietest_target(tmp_path, "0.3%")

    assert summary.target == "b.wav"
    assert summary.target_silence == pytest.approx(0.9)
    assert summary.report_lines()[-1] == "Target: b.wav (00:00.90 trailing silence)"
    # nothing is rewritten
    assert sf.info(str(tmp_path / "b.wav")).frames == round(2.9 * RATE)
    assert temp_files(tmp_path) == []


@pytest.mark.parametrize("order", [["a.wav", "b.wav"], ["b.wav", "a.wav"]])
def test_target_tie_goes_to_first_listed(tmp_path, order):
    write_wav(tmp_path / "a.wav", sound=1.0, silence=0.5)
    write_wav(tmp_path / "b.wav", sound=1.0, silence=0.5)

    orchestrator = BatchOrchestrator(Settings(), lister=lambda pattern: iter(order))
    summary = orchestrator.find_quietest_target(tmp_path, "0.3%")

    assert summary.target == order[0]


def test_no_target_without_trailing_silence(tmp_path):
    write_wav(tmp_path / "a.wav", sound=1.0, silence=0.0)

    summary = find_quietest_target(tmp_path, "0.3%")

    assert summary.target is None
    assert summary.report_lines()[-1] == "No target found"


def test_peaks_report_loudness(tmp_path):
    write_wav(tmp_path / "tone.wav", sound=1.0, silence=0.5)
    write_wav(tmp_path / "room.wav", sound=0.0, silence=1.0)

    summary = measure_peaks(tmp_path)

    by_name = {r.filename: r for r in summary.results}
    assert by_name["tone.wav"].peak_percent == pytest.approx(35.4, abs=1.5)
    assert by_name["tone.wav"].peak_db == pytest.approx(-9.0, abs=0.5)
    assert by_name["room.wav"].peak_percent == 0.0
    assert sf.info(str(tmp_path / "tone.wav")).frames == int(1.5 * RATE)
    assert any(line.startswith("PEAK: tone.wav: ") for line in summary.report_lines())


def test_parallel_batches_stay_in_their_own_directories(tmp_path):
    directories = []
    for batch in range(2):
        directory = tmp_path / f"batch{batch}"
        directory.mkdir()
        for index in range(3):
            write_wav(directory / f"take{batch}_{index}.wav", sound=1.0, silence=0.5)
        directories.append(directory)

    with ThreadPoolExecutor(max_workers=2) as pool:
        summaries = list(pool.map(lambda d: BatchOrchestrator(Settings()).run_batch(d, "0.3%"), directories))

    for batch, (directory, summary) in enumerate(zip(directories, summaries)):
        assert summary.failures == []
        assert sorted(r.filename for r in summary.results) == [f"take{batch}_{i}.wav" for i in range(3)]
        assert summary.total_after == pytest.approx(3.0)
        assert temp_files(directory) == []
        for name in os.listdir(directory):
            assert sf.info(str(directory / name)).frames == RATE


def test_rms_window_setting_reaches_trim_and_target(tmp_path, monkeypatch):
    write_wav(tmp_path / "take.wav", sound=1.0, silence=0.5)
    seen = []
    configure = SilenceTrimStage.configure

    def spy(self, spec):
        out = configure(self, spec)
        seen.append(self.analyzer.window.capacity)
        return out

    monkeypatch.setattr(SilenceTrimStage, "configure", spy)
    orchestrator = BatchOrchestrator(Settings(rms_window=400))
    orchestrator.find_quietest_target(tmp_path, "0.3%")
    orchestrator.run_batch(tmp_path, "0.3%")

    assert seen == [400, 400]


def test_peak_chain_without_analyzer_fails_the_file(tmp_path, monkeypatch):
    write_wav(tmp_path / "tone.wav", sound=1.0, silence=0.5)
    monkeypatch.setattr(pipeline, "peak_stages", lambda window=None: [StageSpec("source"), StageSpec("sink")])

    summary = measure_peaks(tmp_path)

    result = summary.results[0]
    assert not result.ok
    assert "rms analyzer" in result.error
