from __future__ import annotations

import errno
import json
import threading
import time
from typing import Any

import sounddevice as sd
from vosk import KaldiRecognizer, Model, SetLogLevel  # type: ignore[import]

from jugadwake.config import RecognitionSettings
from jugadwake.orchestrator.policies import SessionErrorCode
from jugadwake.recognition.base import RecognitionEngine, RecognitionListener
from jugadwake.telemetry.logging import get_logger

LOGGER = get_logger(__name__)


def _extract_text(payload: str, key: str) -> str:
    if not payload:
        return ""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        LOGGER.debug("vosk.payload.unparsable", payload=payload[:120])
        return ""
    alternatives = data.get("alternatives")
    if alternatives:
        # Only the top alternative is matched.
        return (alternatives[0].get("text") or "").strip()
    return (data.get(key) or "").strip()


class _VoskSession(threading.Thread):
    """One utterance: microphone open until a final result, a timeout or a stop request."""

    def __init__(
        self,
        model: Model,
        config: RecognitionSettings,
        listener: RecognitionListener,
        device: str | int | None,
    ) -> None:
        super().__init__(name="vosk-session", daemon=True)
        self._model = model
        self._config = config
        self._listener = listener
        self._device = device
        self._stop_requested = threading.Event()

    def request_stop(self) -> None:
        self._stop_requested.set()

    def run(self) -> None:
        try:
            code = self._listen()
        except sd.PortAudioError as exc:
            LOGGER.error("vosk.audio.failed", error=str(exc))
            code = SessionErrorCode.AUDIO
        except PermissionError as exc:
            LOGGER.error("vosk.audio.denied", error=str(exc))
            code = SessionErrorCode.INSUFFICIENT_PERMISSIONS
        except OSError as exc:
            LOGGER.error("vosk.audio.os_error", error=str(exc))
            code = SessionErrorCode.INSUFFICIENT_PERMISSIONS if exc.errno == errno.EACCES else SessionErrorCode.AUDIO
        except Exception as exc:
            LOGGER.exception("vosk.session.crashed", error=str(exc))
            code = SessionErrorCode.CLIENT
        if code is None:
            self._listener.on_end()
        else:
            self._listener.on_error(int(code))

    def _listen(self) -> SessionErrorCode | None:
        config = self._config
        recognizer = KaldiRecognizer(self._model, config.sample_rate)
        if config.max_results > 1:
            recognizer.SetMaxAlternatives(config.max_results)
        blocksize = max(int(config.sample_rate * config.frame_ms / 1000), 1)
        last_partial = ""
        heard_speech = False
        started = time.monotonic()

        with sd.RawInputStream(
            samplerate=config.sample_rate,
            blocksize=blocksize,
            channels=1,
            dtype="int16",
            device=self._device,
        ) as stream:
            self._listener.on_ready()
            while not self._stop_requested.is_set():
                data, overflowed = stream.read(blocksize)
                if overflowed:
                    LOGGER.debug("vosk.audio.overflow")
                if recognizer.AcceptWaveform(bytes(data)):
                    text = _extract_text(recognizer.Result(), "text")
                    if text:
                        self._listener.on_final_result(text)
                        return None
                elif config.partial_results:
                    partial = _extract_text(recognizer.PartialResult(), "partial")
                    if partial and partial != last_partial:
                        heard_speech = True
                        last_partial = partial
                        self._listener.on_partial_result(partial)
                if not heard_speech and time.monotonic() - started > config.speech_timeout:
                    return SessionErrorCode.SPEECH_TIMEOUT

        text = _extract_text(recognizer.FinalResult(), "text")
        if text:
            self._listener.on_final_result(text)
        return None


class VoskRecognitionEngine(RecognitionEngine):
    """Offline recognition on the default (or configured) microphone."""

    def __init__(self, model_path: str, device: str | int | None = None) -> None:
        if not model_path:
            raise ValueError("Vosk model path must be provided.")
        SetLogLevel(-1)
        self._model = Model(model_path)
        self._device = device
        LOGGER.info("vosk.model.loaded", model_path=model_path)

    def open(self, config: RecognitionSettings, listener: RecognitionListener) -> Any:
        session = _VoskSession(self._model, config, listener, self._device if self._device is not None else config.input_device)
        session.start()
        return session

    def close(self, handle: Any) -> None:
        handle.request_stop()


__all__ = ["VoskRecognitionEngine"]
