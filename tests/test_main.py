from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from tailtrim.main import app

from conftest import write_wav


@pytest.fixture
def client():
    return TestClient(app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_analyze_upload(client, tmp_path):
    path = write_wav(tmp_path / "take.wav", sound=1.0, silence=0.5)

    with open(path, "rb") as fh:
        response = client.post(
            "/analyze",
            files={"file": ("take.wav", fh, "audio/wav")},
            data={"threshold": "0.3"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["sample_rate"] == 8000
    assert body["duration"] == pytest.approx(1.5)
    assert body["trailing_silence"] == pytest.approx(0.5)
    assert body["peak_percent"] == pytest.approx(35.4, abs=1.5)


def test_analyze_silent_upload_has_no_db_peak(client, tmp_path):
    path = write_wav(tmp_path / "room.wav", sound=0.0, silence=1.0)

    with open(path, "rb") as fh:
        response = client.post("/analyze", files={"file": ("room.wav", fh, "audio/wav")})

    assert response.status_code == 200
    assert response.json()["peak_db"] is None


def test_analyze_rejects_non_audio(client):
    response = client.post("/analyze", files={"file": ("notes.wav", b"plain text", "audio/wav")})
    assert response.status_code == 400


def test_trim_directory(client, tmp_path):
    write_wav(tmp_path / "take.wav", sound=2.0, silence=1.0)

    response = client.post("/trim", data={"directory": str(tmp_path), "threshold": "0.3"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "processed"
    assert body["total_after"] == pytest.approx(2.0)
    assert body["silence_removed"] == pytest.approx(1.0)
    assert body["files"][0]["filename"] == "take.wav"
    assert body["report"][-1] == "Silence removed: 00:01.00"


def test_target_directory(client, tmp_path):
    write_wav(tmp_path / "a.wav", sound=1.0, silence=0.2)
    write_wav(tmp_path / "b.wav", sound=1.0, silence=0.6)

    response = client.post("/target", data={"directory": str(tmp_path)})

    assert response.status_code == 200
    assert response.json()["target"] == "b.wav"
    assert response.json()["target_silence"] == pytest.approx(0.6)


def test_missing_directory_is_404(client, tmp_path):
    response = client.post("/trim", data={"directory": str(tmp_path / "nowhere")})
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "FileOpenError"


def test_bad_threshold_is_422(client, tmp_path):
    response = client.post("/trim", data={"directory": str(tmp_path), "threshold": "1"})
    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "INVALID_THRESHOLD"


def test_overlapping_trim_requests(client, tmp_path):
    directories = []
    for batch in range(2):
        directory = tmp_path / f"batch{batch}"
        directory.mkdir()
        for index in range(2):
            write_wav(directory / f"take{index}.wav", sound=1.0, silence=0.5)
        directories.append(directory)

    def trim(directory):
        return client.post("/trim", data={"directory": str(directory), "threshold": "0.3"})

    with ThreadPoolExecutor(max_workers=2) as pool:
        responses = list(pool.map(trim, directories))

    for directory, response in zip(directories, responses):
        assert response.status_code == 200
        assert response.json()["failures"] == 0
        assert response.json()["total_after"] == pytest.approx(2.0)
        assert sorted(p.name for p in directory.iterdir()) == ["take0.wav", "take1.wav"]
