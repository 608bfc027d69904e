from __future__ import annotations

from jugadwake.storage.preferences import PreferenceStore


def test_defaults_to_not_running(tmp_path) -> None:
    store = PreferenceStore(tmp_path / "nested" / "prefs.db")
    assert store.was_running() is False
    assert store.path.exists()


def test_flag_survives_reopen(tmp_path) -> None:
    path = tmp_path / "prefs.db"
    PreferenceStore(path).set_was_running(True)
    assert PreferenceStore(path).was_running() is True

    PreferenceStore(path).set_was_running(False)
    assert PreferenceStore(path).was_running() is False
