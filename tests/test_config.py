from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from jugadwake.config import AppSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("WAKE_PHRASE", "RESTART_DELAY_SECONDS", "LEASE_DURATION_SECONDS", "LEASE_RENEWAL_LEAD_SECONDS"):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = AppSettings()

    assert settings.wakeword.phrase == "hey boy"
    assert settings.session.delay_seconds == pytest.approx(0.3)
    assert settings.lease.duration_seconds == 600
    assert settings.lease.renew_after_seconds == 540
    assert settings.lease.max_consecutive_failures == 2
    assert settings.recognition.partial_results is True
    assert settings.storage.preferences_path == Path("~/.jugadwake/preferences.db").expanduser()


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("WAKE_PHRASE", "  Okay Jugad ")
    monkeypatch.setenv("RESTART_DELAY_SECONDS", "1.5")
    monkeypatch.setenv("LEASE_DURATION_SECONDS", "120")
    monkeypatch.setenv("LEASE_RENEWAL_LEAD_SECONDS", "30")

    settings = AppSettings()

    assert settings.wakeword.phrase == "Okay Jugad"
    assert settings.session.delay_seconds == pytest.approx(1.5)
    assert settings.lease.renew_after_seconds == 90


def test_env_file_is_read(tmp_path) -> None:
    (tmp_path / ".env").write_text("WAKE_PHRASE=listen up\n", encoding="utf-8")
    assert AppSettings().wakeword.phrase == "listen up"


def test_lead_must_be_shorter_than_lease() -> None:
    with pytest.raises(ValidationError):
        AppSettings(LEASE_DURATION_SECONDS=60, LEASE_RENEWAL_LEAD_SECONDS=60)


def test_blank_wake_phrase_is_rejected() -> None:
    with pytest.raises(ValidationError):
        AppSettings(WAKE_PHRASE="   ")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("", None), ("  ", None), ("2", 2), ("USB Mic", "USB Mic"), (None, None)],
)
def test_input_device_coercion(raw, expected) -> None:
    assert AppSettings(AUDIO_INPUT_DEVICE=raw).recognition.input_device == expected
