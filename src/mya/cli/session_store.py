"""Session storage for the CLI.

One JSON file (~/.mya/session.json) holds the current login. A missing,
unreadable, or expired file means "logged out"; an expired file is deleted on
load and never revalidated.
"""

from __future__ import annotations

import json
import time
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

SESSION_LIFETIME_SECONDS = 24 * 60 * 60


class Session(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    machine_id: str = Field(alias="machineId")
    session_token: str = Field(default="", alias="sessionToken")
    session_jwt: str = Field(alias="sessionJwt")
    email: str
    created_at: float = Field(alias="createdAt")
    last_activity: float = Field(alias="lastActivity")
    expires_at: float = Field(alias="expiresAt")
    last_request_id: str | None = Field(default=None, alias="lastRequestId")

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        machine_id: str,
        session_token: str,
        session_jwt: str,
        email: str,
        now: float | None = None,
    ) -> Session:
        created = now if now is not None else time.time()
        return cls(
            user_id=user_id,
            machine_id=machine_id,
            session_token=session_token,
            session_jwt=session_jwt,
            email=email,
            created_at=created,
            last_activity=created,
            expires_at=created + SESSION_LIFETIME_SECONDS,
        )

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) > self.expires_at


def session_path() -> Path:
    return Path.home() / ".mya" / "session.json"


def load_session(path: Path | None = None, *, now: float | None = None) -> Session | None:
    p = path or session_path()
    if not p.exists():
        return None
    try:
        session = Session.model_validate(json.loads(p.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError):
        return None
    if session.is_expired(now):
        p.unlink(missing_ok=True)
        return None
    return session


def save_session(session: Session, path: Path | None = None, *, now: float | None = None) -> None:
    """Persist session, touching last_activity."""
    p = path or session_path()
    session.last_activity = now if now is not None else time.time()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(
        json.dumps(session.model_dump(by_alias=True), indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def clear_session(path: Path | None = None) -> None:
    p = path or session_path()
    p.unlink(missing_ok=True)
