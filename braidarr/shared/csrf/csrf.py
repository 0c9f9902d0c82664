"""Anti-forgery tokens bound to a session."""

import hashlib
import hmac

from braidarr.config.settings import settings


class CSRFTokenManager:
    """Issues and validates CSRF tokens.

    A token is HMAC-SHA256 of the session id under the server secret, so it
    stays the same for the whole session (across refresh rotations) and needs
    no server-side storage.
    """

    def __init__(self, secret: str):
        self._secret = secret.encode()

    def issue(self, session_id: str) -> str:
        """Token for the given session."""
        return hmac.new(self._secret, f"csrf:{session_id}".encode(), hashlib.sha256).hexdigest()

    def validate(self, session_id: str, token: str | None) -> bool:
        """Constant-time check that ``token`` belongs to ``session_id``."""
        if not token:
            return False
        return hmac.compare_digest(self.issue(session_id), token)


csrf_manager = CSRFTokenManager(settings.secret_key)
