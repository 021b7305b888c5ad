from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path

from birthday_portal.models import AuthResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    token: str
    user_id: int
    email: str
    name: str

    @classmethod
    def from_auth(cls, auth: AuthResult) -> Session:
        return cls(token=auth.token, user_id=auth.user_id, email=auth.email, name=auth.name)


def load_sessions(path: Path) -> dict[int, Session]:
    if not path.exists():
        return {}

    with path.open("r", encoding="utf-8") as file_obj:
        data = json.load(file_obj)

    sessions: dict[int, Session] = {}
    for chat_id, row in (data.get("sessions") or {}).items():
        if not isinstance(row, dict) or not row.get("token"):
            continue
        sessions[int(chat_id)] = Session(
            token=str(row["token"]),
            user_id=int(row.get("user_id", 0)),
            email=str(row.get("email", "")),
            name=str(row.get("name", "")),
        )
    return sessions


def save_sessions_atomic(path: Path, sessions: dict[int, Session]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "version": 1,
        "sessions": {str(chat_id): asdict(session) for chat_id, session in sorted(sessions.items())},
    }

    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        delete=False,
    ) as temp_file:
        json.dump(payload, temp_file, indent=2)
        temp_file.write("\n")
        temp_name = temp_file.name

    os.replace(temp_name, path)


class SessionStore:
    """Authenticated sessions keyed by Telegram chat id."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._sessions: dict[int, Session] = {}

    def hydrate(self) -> int:
        self._sessions = load_sessions(self._path)
        LOGGER.info("Restored %s sessions from %s", len(self._sessions), self._path)
        return len(self._sessions)

    def get(self, chat_id: int) -> Session | None:
        return self._sessions.get(chat_id)

    def start(self, chat_id: int, auth: AuthResult) -> Session:
        session = Session.from_auth(auth)
        self._sessions[chat_id] = session
        save_sessions_atomic(self._path, self._sessions)
        return session

    def end(self, chat_id: int) -> bool:
        removed = self._sessions.pop(chat_id, None)
        if removed is None:
            return False
        save_sessions_atomic(self._path, self._sessions)
        return True
