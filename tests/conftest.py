import os

import numpy as np
import pytest
import soundfile as sf

RATE = 8000


def tone(seconds, rate=RATE, amplitude=0.5, freq=440.0, channels=1):
    t = np.arange(int(round(seconds * rate))) / rate
    mono = amplitude * np.sin(2 * np.pi * freq * t)
    if channels == 1:
        return mono
    return np.stack([mono] * channels, axis=1)


def write_wav(path, sound=9.0, silence=1.0, rate=RATE, channels=1, subtype="PCM_16", title=None):
    """Write ``sound`` seconds of a sine followed by ``silence`` seconds of zeros."""

    body = tone(sound, rate=rate, channels=channels)
    tail_shape = (int(round(silence * rate)),) if channels == 1 else (int(round(silence * rate)), channels)
    data = np.concatenate([body, np.zeros(tail_shape)])
    with sf.SoundFile(str(path), "w", samplerate=rate, channels=channels, subtype=subtype, format="WAV") as f:
        if title:
            f.title = title
        f.write(data)
    return path


@pytest.fixture(autouse=True)
def _restore_cwd():
    cwd = os.getcwd()
    yield
    os.chdir(cwd)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("TAILTRIM_"):
            monkeypatch.delenv(key)
