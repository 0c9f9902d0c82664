"""Client credential store.

The store holds the current session credential pair and is the single source
of truth for every request the client makes. Writes replace the whole pair in
one step, so a reader never observes a half-updated session.
"""

import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class CredentialPair(BaseModel):
    """Access and refresh token issued together, with the session's CSRF token."""

    access_token: str
    refresh_token: str
    issued_at: datetime
    access_expires_at: datetime
    csrf_token: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    def access_expired(self, now: datetime | None = None, leeway: timedelta = timedelta(0)) -> bool:
        """Whether the access token is (or within ``leeway`` will be) past its expiry."""
        return (now or datetime.now(UTC)) + leeway >= self.access_expires_at


class CredentialRepository(Protocol):
    """Persistence for the current credential pair."""

    def get(self) -> CredentialPair | None: ...

    def set(self, pair: CredentialPair) -> None: ...

    def clear(self) -> None: ...


class MemoryCredentialRepository:
    """Keeps the pair for the lifetime of the process."""

    def __init__(self, pair: CredentialPair | None = None):
        self._pair = pair

    def get(self) -> CredentialPair | None:
        return self._pair

    def set(self, pair: CredentialPair) -> None:
        self._pair = pair

    def clear(self) -> None:
        self._pair = None


class FileCredentialRepository:
    """Persists the pair as JSON so sessions survive process restarts.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``; the file is readable by its owner only.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()
        self._cached: CredentialPair | None = None
        self._loaded = False

    def get(self) -> CredentialPair | None:
        if not self._loaded:
            self._cached = self._read()
            self._loaded = True
        return self._cached

    def set(self, pair: CredentialPair) -> None:
        self._write(pair.model_dump_json())
        self._cached = pair
        self._loaded = True

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
        self._cached = None
        self._loaded = True

    def _read(self) -> CredentialPair | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return CredentialPair.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Ignoring unreadable credentials file {self.path}")
            return None

    def _write(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
