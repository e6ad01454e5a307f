"""
eSpeak + mbrola Backend (local engine).

Pipeline:
    espeak --pho -q -s <wpm> -v mb/mb-<voice> <text>
        | mbrola -e <mbrola_dir>/<voice>/<voice> - -.wav

espeak emits phonemes for an mbrola voice, mbrola renders them to WAV on
stdout. Because mbrola writes to a pipe it leaves the RIFF and data sizes
unset; they are rewritten once the whole stream is read.

Known Quirk:
    mbrola sporadically fails to produce anything but the 44-byte header,
    with espeak reporting "mbrowrap error: unable to get .wav header from
    mbrola". That run is retried, up to max_attempts.

Speaking Rate:
    wpm = round(175 * rate), rate in [0.5, 2.5].

Voices:
    Files in voices_dir named mb-<voice> (no further dash), e.g. mb-en1,
    mb-de2. Listed once and cached.

Configuration:
    backends:
      espeak:
        voices_dir: /usr/local/share/espeak-ng-data/voices/mb
        mbrola_dir: /usr/share/mbrola
        timeout_s: 10
        max_attempts: 5
"""
from __future__ import annotations

import os
import shutil
import subprocess
import threading
from typing import List, Optional, Set, Tuple

from tts_gateway.core.config import EspeakConfig
from tts_gateway.core.logging import debug, get_logger, verbose, warn
from tts_gateway.tts.backend import (
    AudioFormat,
    BackendDescriptor,
    BackendTimeout,
    BaseBackend,
    EngineFailure,
    SynthResult,
)
from tts_gateway.utils.audio import WAV_HEADER_SIZE, fix_wav_header
from tts_gateway.utils.timeit import timeit

_LOG = get_logger("tts-gateway.espeak")

BASE_WPM = 175
MBROWRAP_HEADER_ERROR = "mbrowrap error: unable to get .wav header from mbrola"

# mbrola prints this for every phoneme it has to substitute
_MBROLA_NOISE = "unknown, replaced with "


def _drain(stream, sink: List[bytes]) -> None:
    sink.append(stream.read())


class EspeakBackend(BaseBackend):
    """
    Local espeak + mbrola synthesis.

    Each call spawns its own pair of processes, so concurrent requests
    never share buffers.
    """

    def __init__(self, config: EspeakConfig):
        self._config = config
        self.descriptor = BackendDescriptor(
            mode="eSpeak",
            native_format=AudioFormat.WAV,
            min_rate=0.5,
            max_rate=2.5,
            default_voice="en1",
            timeout_s=config.timeout_s,
        )
        self._voices: Optional[Set[str]] = None
        self._voices_lock = threading.Lock()

    def is_available(self) -> bool:
        return (
            shutil.which(self._config.espeak_binary) is not None
            and shutil.which(self._config.mbrola_binary) is not None
        )

    # =========================================================================
    # Voices
    # =========================================================================

    def _scan_voices(self) -> Set[str]:
        voices: Set[str] = set()
        try:
            entries = os.listdir(self._config.voices_dir)
        except OSError as e:
            warn(_LOG, "voices_dir_unreadable", path=self._config.voices_dir, error=str(e))
            return voices

        for name in entries:
            if not os.path.isfile(os.path.join(self._config.voices_dir, name)):
                continue
            parts = name.split("-")
            if len(parts) == 2 and parts[1]:
                voices.add(parts[1])
        return voices

    def supported_voices(self) -> Set[str]:
        if self._voices is None:
            with self._voices_lock:
                if self._voices is None:
                    self._voices = self._scan_voices()
                    verbose(_LOG, "voices_loaded", count=len(self._voices))
        return self._voices

    # =========================================================================
    # Synthesis
    # =========================================================================

    def _commands(self, text: str, voice: str, wpm: int) -> Tuple[List[str], List[str]]:
        espeak_cmd = [
            self._config.espeak_binary,
            "--pho",
            "-q",
            "-s",
            str(wpm),
            "-v",
            f"mb/mb-{voice}",
            text,
        ]
        voice_file = os.path.join(self._config.mbrola_dir, voice, voice)
        mbrola_cmd = [self._config.mbrola_binary, "-e", voice_file, "-", "-.wav"]
        return espeak_cmd, mbrola_cmd

    def _run_once(self, text: str, voice: str, wpm: int) -> Tuple[bytes, str]:
        """
        Run the pipeline once.

        Returns:
            Tuple of (wav bytes, espeak stderr).
        """
        espeak_cmd, mbrola_cmd = self._commands(text, voice, wpm)
        timeout = self._config.timeout_s

        try:
            espeak = subprocess.Popen(espeak_cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise EngineFailure(self.mode, f"cannot start espeak: {e}") from e

        try:
            mbrola = subprocess.Popen(
                mbrola_cmd,
                stdin=espeak.stdout,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            espeak.kill()
            espeak.wait()
            raise EngineFailure(self.mode, f"cannot start mbrola: {e}") from e

        # mbrola owns the read end now; espeak gets SIGPIPE if mbrola dies
        assert espeak.stdout is not None and espeak.stderr is not None
        espeak.stdout.close()

        # espeak stderr is drained while mbrola runs
        espeak_err_parts: List[bytes] = []
        drain = threading.Thread(
            target=_drain,
            args=(espeak.stderr, espeak_err_parts),
            name="espeak-stderr",
            daemon=True,
        )
        drain.start()

        try:
            wav, mbrola_err = mbrola.communicate(timeout=timeout)
            espeak.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            mbrola.kill()
            espeak.kill()
            mbrola.communicate()
            espeak.wait()
            raise BackendTimeout(self.mode, f"synthesis exceeded {timeout}s") from e
        finally:
            drain.join(timeout=timeout)
            espeak.stderr.close()
        espeak_err = b"".join(espeak_err_parts)

        mbrola_msg = mbrola_err.decode("utf-8", errors="replace")
        for line in mbrola_msg.splitlines():
            if line.strip() and _MBROLA_NOISE not in line:
                debug(_LOG, "mbrola_stderr", line=line.strip())

        if mbrola.returncode != 0:
            raise EngineFailure(self.mode, f"mbrola exited with {mbrola.returncode}: {mbrola_msg.strip()[:200]}")

        return wav, espeak_err.decode("utf-8", errors="replace")

    def synthesize(
        self,
        text: str,
        voice: str,
        rate: float = 1.0,
        preferred_format: Optional[AudioFormat] = None,
    ) -> SynthResult:
        """
        Synthesize text with an mbrola voice. preferred_format is ignored.

        Raises:
            EngineFailure: Process failure, or no audio after max_attempts.
            BackendTimeout: A run exceeded timeout_s.
        """
        wpm = round(BASE_WPM * rate)
        attempts = self._config.max_attempts

        with timeit("espeak") as t:
            for attempt in range(1, attempts + 1):
                wav, espeak_err = self._run_once(text, voice, wpm)
                if len(wav) == WAV_HEADER_SIZE and MBROWRAP_HEADER_ERROR in espeak_err:
                    debug(_LOG, "mbrowrap_retry", attempt=attempt)
                    continue
                break
            else:
                raise EngineFailure(self.mode, f"no audio after {attempts} attempts: {MBROWRAP_HEADER_ERROR}")

        if len(wav) <= WAV_HEADER_SIZE:
            raise EngineFailure(self.mode, espeak_err.strip()[:200] or "engine produced no audio")

        try:
            audio = fix_wav_header(wav)
        except ValueError as e:
            raise EngineFailure(self.mode, str(e)) from e

        verbose(
            _LOG,
            "synth_done",
            voice=voice,
            wpm=wpm,
            attempts=attempt,
            bytes=len(audio),
            seconds=t.timing.seconds if t.timing else None,
        )
        return SynthResult(audio=audio, audio_format=AudioFormat.WAV)
