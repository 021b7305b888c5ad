import json
from pathlib import Path

from birthday_portal.models import AuthResult
from birthday_portal.session import SessionStore, load_sessions


def test_start_persists_and_hydrate_restores(tmp_path: Path) -> None:
    path = tmp_path / "data" / "sessions.json"
    store = SessionStore(path)

    store.start(100, AuthResult(token="jwt-1", user_id=7, email="a@example.com", name="Ann"))

    restored = SessionStore(path)
    assert restored.get(100) is None
    assert restored.hydrate() == 1
    session = restored.get(100)
    assert session is not None
    assert session.token == "jwt-1"
    assert session.name == "Ann"


def test_end_clears_session_on_disk(tmp_path: Path) -> None:
    path = tmp_path / "sessions.json"
    store = SessionStore(path)
    store.start(1, AuthResult(token="a", user_id=1, email="a@example.com", name="A"))
    store.start(2, AuthResult(token="b", user_id=2, email="b@example.com", name="B"))

    assert store.end(1) is True
    assert store.end(1) is False

    assert set(load_sessions(path)) == {2}


def test_hydrate_without_file_is_empty(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "missing.json")

    assert store.hydrate() == 0
    assert store.get(5) is None


def test_load_skips_rows_without_token(tmp_path: Path) -> None:
    path = tmp_path / "sessions.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "sessions": {
                    "10": {"token": "", "user_id": 1, "email": "", "name": ""},
                    "11": {"token": "ok", "user_id": 2, "email": "b@example.com", "name": "B"},
                },
            }
        ),
        encoding="utf-8",
    )

    assert list(load_sessions(path)) == [11]
