from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jugadwake.orchestrator.policies import LeasePolicy, RestartPolicy


class RecognitionSettings(BaseModel):
    """Request handed to the recognition engine for every session."""

    engine: Literal["vosk"] = "vosk"
    model_path: str | None = None
    language: str = "en-US"
    sample_rate: int = 16_000
    frame_ms: int = 100
    max_results: int = 3
    partial_results: bool = True
    speech_timeout: float = 8.0
    input_device: str | int | None = None


class WakeWordSettings(BaseModel):
    phrase: str = "hey boy"


class StorageSettings(BaseModel):
    preferences_path: Path


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    otlp_endpoint: str | None = None


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    WAKE_PHRASE: str = "hey boy"
    RESTART_DELAY_SECONDS: float = 0.3
    SESSION_STOP_GRACE_SECONDS: float = 5.0
    LEASE_DURATION_SECONDS: float = 600.0
    LEASE_RENEWAL_LEAD_SECONDS: float = 60.0
    LEASE_MAX_CONSECUTIVE_FAILURES: int = 2
    RECOGNITION_ENGINE: Literal["vosk"] = "vosk"
    VOSK_MODEL_PATH: str | None = None
    RECOGNITION_LANGUAGE: str = "en-US"
    RECOGNITION_SAMPLE_RATE: int = 16_000
    RECOGNITION_FRAME_MS: int = 100
    RECOGNITION_MAX_RESULTS: int = 3
    RECOGNITION_PARTIAL_RESULTS: bool = True
    SPEECH_TIMEOUT_SECONDS: float = 8.0
    AUDIO_INPUT_DEVICE: str | int | None = None
    PREFERENCES_PATH: str = "~/.jugadwake/preferences.db"
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None

    @model_validator(mode="after")
    def _check_policies(self) -> "AppSettings":
        if not self.WAKE_PHRASE.strip():
            raise ValueError("WAKE_PHRASE must not be blank")
        # Surface bad timing values at load time instead of at first start().
        self.lease
        self.session
        return self

    @staticmethod
    def _coerce_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str):
            trimmed = device.strip()
            if not trimmed:
                return None
            if trimmed.isdigit():
                return int(trimmed)
            return trimmed
        return device

    @property
    def wakeword(self) -> WakeWordSettings:
        return WakeWordSettings(phrase=self.WAKE_PHRASE.strip())

    @property
    def session(self) -> RestartPolicy:
        return RestartPolicy(
            delay_seconds=self.RESTART_DELAY_SECONDS,
            stop_grace_seconds=self.SESSION_STOP_GRACE_SECONDS,
        )

    @property
    def lease(self) -> LeasePolicy:
        return LeasePolicy(
            duration_seconds=self.LEASE_DURATION_SECONDS,
            lead_seconds=self.LEASE_RENEWAL_LEAD_SECONDS,
            max_consecutive_failures=self.LEASE_MAX_CONSECUTIVE_FAILURES,
        )

    @property
    def recognition(self) -> RecognitionSettings:
        return RecognitionSettings(
            engine=self.RECOGNITION_ENGINE,
            model_path=self.VOSK_MODEL_PATH,
            language=self.RECOGNITION_LANGUAGE,
            sample_rate=self.RECOGNITION_SAMPLE_RATE,
            frame_ms=self.RECOGNITION_FRAME_MS,
            max_results=self.RECOGNITION_MAX_RESULTS,
            partial_results=self.RECOGNITION_PARTIAL_RESULTS,
            speech_timeout=self.SPEECH_TIMEOUT_SECONDS,
            input_device=self._coerce_device(self.AUDIO_INPUT_DEVICE),
        )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings(preferences_path=Path(self.PREFERENCES_PATH).expanduser())

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(log_level=self.LOG_LEVEL, otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


__all__ = ["AppSettings", "RecognitionSettings", "load_settings"]
