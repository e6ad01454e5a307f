"""Tests for the eSpeak + mbrola backend (no binaries needed)."""
from __future__ import annotations

import struct
import subprocess
import threading
from unittest.mock import MagicMock, patch

import pytest

from tts_gateway.core.config import EspeakConfig
from tts_gateway.tts.backend import AudioFormat, BackendTimeout, EngineFailure
from tts_gateway.tts.backends.espeak_backend import BASE_WPM, MBROWRAP_HEADER_ERROR, EspeakBackend

HEADER = (
    b"RIFF" + struct.pack("<I", 0) + b"WAVE"
    + b"fmt " + struct.pack("<IHHIIHH", 16, 1, 1, 16000, 32000, 2, 16)
    + b"data" + struct.pack("<I", 0)
)


@pytest.fixture
def backend(tmp_path):
    voices = tmp_path / "mb"
    voices.mkdir()
    for name in ("mb-en1", "mb-de2", "mb-fr-extra", "README"):
        (voices / name).write_text("x")
    (voices / "mb-dir").mkdir()
    return EspeakBackend(EspeakConfig(voices_dir=str(voices), max_attempts=3, timeout_s=2))


class TestDescriptor:

    def test_bounds(self, backend):
        d = backend.descriptor
        assert d.mode == "eSpeak"
        assert d.native_format == AudioFormat.WAV
        assert d.rate_violation(0.5) is None
        assert d.rate_violation(2.5) is None
        assert d.rate_violation(0.49) is not None
        assert d.rate_violation(2.51) is not None


class TestVoices:

    def test_scan(self, backend):
        assert backend.supported_voices() == {"en1", "de2"}
        assert backend.list_voices() == ["de2", "en1"]
        assert backend.list_voices_raw() == ["de2", "en1"]

    def test_missing_dir(self, tmp_path):
        backend = EspeakBackend(EspeakConfig(voices_dir=str(tmp_path / "none")))
        assert backend.supported_voices() == set()


class TestPipeline:

    def test_commands(self, backend):
        espeak_cmd, mbrola_cmd = backend._commands("Hello", "en1", 263)
        assert espeak_cmd == ["espeak", "--pho", "-q", "-s", "263", "-v", "mb/mb-en1", "Hello"]
        assert mbrola_cmd[0] == "mbrola"
        assert mbrola_cmd[-2:] == ["-", "-.wav"]
        assert mbrola_cmd[2].endswith("en1/en1") or mbrola_cmd[2].endswith("en1\\en1")

    def test_wpm_from_rate(self, backend):
        with patch.object(backend, "_run_once", return_value=(HEADER + b"\x00" * 10, "")) as run:
            backend.synthesize("Hi", "en1", rate=1.5)
        run.assert_called_once_with("Hi", "en1", round(BASE_WPM * 1.5))

    def test_header_fixed(self, backend):
        with patch.object(backend, "_run_once", return_value=(HEADER + b"\x01\x00" * 8, "")):
            result = backend.synthesize("Hi", "en1")
        assert result.audio_format == AudioFormat.WAV
        assert struct.unpack_from("<I", result.audio, 40)[0] == 16
        assert struct.unpack_from("<I", result.audio, 4)[0] == len(result.audio) - 8

    def test_mbrowrap_retry(self, backend):
        outputs = [
            (HEADER, MBROWRAP_HEADER_ERROR),
            (HEADER, MBROWRAP_HEADER_ERROR),
            (HEADER + b"\x00" * 4, ""),
        ]
        with patch.object(backend, "_run_once", side_effect=outputs) as run:
            result = backend.synthesize("Hi", "en1")
        assert run.call_count == 3
        assert len(result.audio) == 48

    def test_mbrowrap_gives_up(self, backend):
        with patch.object(backend, "_run_once", return_value=(HEADER, MBROWRAP_HEADER_ERROR)) as run:
            with pytest.raises(EngineFailure):
                backend.synthesize("Hi", "en1")
        assert run.call_count == 3

    def test_empty_output_is_failure(self, backend):
        with patch.object(backend, "_run_once", return_value=(HEADER, "voice not found")):
            with pytest.raises(EngineFailure, match="voice not found"):
                backend.synthesize("Hi", "en1")

    def test_missing_binary(self, backend):
        with patch("tts_gateway.tts.backends.espeak_backend.subprocess.Popen", side_effect=FileNotFoundError("espeak")):
            with pytest.raises(EngineFailure, match="cannot start espeak"):
                backend._run_once("Hi", "en1", 175)

    def test_timeout(self, backend):
        espeak = MagicMock()
        mbrola = MagicMock()
        mbrola.communicate.side_effect = [subprocess.TimeoutExpired("mbrola", 2), (b"", b"")]
        with patch(
            "tts_gateway.tts.backends.espeak_backend.subprocess.Popen",
            side_effect=[espeak, mbrola],
        ):
            with pytest.raises(BackendTimeout):
                backend._run_once("Hi", "en1", 175)
        mbrola.kill.assert_called_once()
        espeak.kill.assert_called_once()

    def test_mbrola_nonzero_exit(self, backend):
        espeak = MagicMock()
        espeak.stderr.read.return_value = b""
        mbrola = MagicMock()
        mbrola.communicate.return_value = (b"", b"Fatal error: voice file missing")
        mbrola.returncode = 1
        with patch(
            "tts_gateway.tts.backends.espeak_backend.subprocess.Popen",
            side_effect=[espeak, mbrola],
        ):
            with pytest.raises(EngineFailure, match="voice file missing"):
                backend._run_once("Hi", "en1", 175)

    def test_run_once_success(self, backend):
        espeak = MagicMock()
        espeak.stderr.read.return_value = b"warn"
        mbrola = MagicMock()
        mbrola.communicate.return_value = (HEADER + b"\x00\x00", b"")
        mbrola.returncode = 0
        with patch(
            "tts_gateway.tts.backends.espeak_backend.subprocess.Popen",
            side_effect=[espeak, mbrola],
        ) as popen:
            wav, err = backend._run_once("Hi", "en1", 175)
        assert wav == HEADER + b"\x00\x00"
        assert err == "warn"
        assert popen.call_args_list[1].kwargs["stdin"] is espeak.stdout

    def test_espeak_stderr_read_while_mbrola_runs(self, backend):
        stderr_read = threading.Event()
        espeak = MagicMock()

        def read():
            stderr_read.set()
            return b"lots of warnings"

        espeak.stderr.read.side_effect = read
        mbrola = MagicMock()

        def communicate(timeout=None):
            assert stderr_read.wait(timeout=5)
            return HEADER + b"\x00\x00", b""

        mbrola.communicate.side_effect = communicate
        mbrola.returncode = 0
        with patch(
            "tts_gateway.tts.backends.espeak_backend.subprocess.Popen",
            side_effect=[espeak, mbrola],
        ):
            wav, err = backend._run_once("Hi", "en1", 175)
        assert err == "lots of warnings"
        espeak.stderr.close.assert_called_once()
