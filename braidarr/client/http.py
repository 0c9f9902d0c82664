"""HTTP client that keeps a session alive.

``AuthenticatedClient`` wraps ``httpx.AsyncClient``: it attaches the current
access token (and the CSRF token on state-changing requests), and when a
request comes back 401 it asks the ``RefreshCoordinator`` for new credentials
and retries that request once. Only 401 is treated as refreshable; 403 and
every other status is returned to the caller as-is.
"""

import logging
from typing import Any

import httpx

from .config import ClientSettings
from .coordinator import RefreshCoordinator, SessionExpiredCallback
from .credentials import CredentialPair, CredentialRepository, FileCredentialRepository, MemoryCredentialRepository
from .exceptions import ApiError, SessionExpiredError

logger = logging.getLogger(__name__)

STATE_CHANGING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _api_error(response: httpx.Response) -> ApiError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") if isinstance(body, dict) else None
    code = body.get("code") if isinstance(body, dict) else None
    return ApiError(response.status_code, detail=str(detail) if detail is not None else None, code=code)


class AuthenticatedClient:
    """Session-aware API client.

    Usage:
        async with AuthenticatedClient() as client:
            await client.login("me@example.com", "Secret123")
            response = await client.get("/users/me")
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        store: CredentialRepository | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_session_expired: SessionExpiredCallback | None = None,
    ):
        self.settings = settings or ClientSettings()
        if store is None:
            if self.settings.credentials_path is not None:
                store = FileCredentialRepository(self.settings.credentials_path)
            else:
                store = MemoryCredentialRepository()
        self.store = store

        self._http = httpx.AsyncClient(base_url=self.settings.base_url, transport=transport)
        self._on_session_expired = on_session_expired
        self.coordinator = RefreshCoordinator(
            store,
            self._refresh,
            timeout=self.settings.refresh_timeout_seconds,
            on_session_expired=self._session_expired,
        )

    async def __aenter__(self) -> "AuthenticatedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _session_expired(self, error: SessionExpiredError) -> None:
        # Session cookies would otherwise outlive the cleared store
        self._http.cookies.clear()
        if self._on_session_expired is not None:
            self._on_session_expired(error)

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://", self.settings.api_prefix)):
            return path
        return f"{self.settings.api_prefix}/{path.lstrip('/')}"

    def _headers(self, method: str, headers: dict[str, str] | None, pair: CredentialPair | None) -> dict[str, str]:
        prepared = dict(headers or {})
        if pair is not None:
            prepared["Authorization"] = f"Bearer {pair.access_token}"
            if method.upper() in STATE_CHANGING_METHODS and pair.csrf_token:
                prepared[self.settings.csrf_header_name] = pair.csrf_token
        return prepared

    async def _refresh(self, pair: CredentialPair) -> CredentialPair:
        """Exchange the refresh token. Goes straight to the transport, never through 401 handling."""
        response = await self._http.post(self._url("/auth/refresh"), json={"refresh_token": pair.refresh_token})
        if response.status_code != 200:
            raise _api_error(response)
        return CredentialPair.model_validate(response.json())

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request with the current credentials, renewing them once on 401."""
        headers = kwargs.pop("headers", None)
        url = self._url(path)

        pair = self.store.get()
        response = await self._http.request(method, url, headers=self._headers(method, headers, pair), **kwargs)
        if response.status_code != 401 or pair is None:
            return response

        fresh = await self.coordinator.handle_unauthorized(pair.access_token)
        return await self._http.request(method, url, headers=self._headers(method, headers, fresh), **kwargs)

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def _open_session(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._http.post(self._url(path), json=payload)
        if response.status_code not in (200, 201):
            raise _api_error(response)
        body = response.json()
        self.store.set(CredentialPair.model_validate(body))
        self.coordinator.resume()
        return body.get("user", {})

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Log in and store the issued credentials.

        Returns:
            Public fields of the logged-in user

        Raises:
            ApiError: Rejected credentials, inactive account, rate limiting

        """
        user = await self._open_session("/auth/login", {"email": email, "password": password})
        logger.info(f"Logged in as {user.get('username', email)}")
        return user

    async def register(self, email: str, username: str, password: str, **profile: Any) -> dict[str, Any]:
        """Create an account and store the issued credentials."""
        return await self._open_session(
            "/auth/register", {"email": email, "username": username, "password": password, **profile}
        )

    async def logout(self) -> None:
        """End the session: drop waiting requests, forget credentials, revoke server-side.

        Local state is cleared before the revoke call goes out, so a request
        failing with 401 meanwhile cannot start a refresh.
        """
        pair = self.store.get()
        self.coordinator.cancel()
        self.store.clear()
        self._http.cookies.clear()
        if pair is None:
            return

        try:
            await self._http.post(
                self._url("/auth/logout"),
                json={"refresh_token": pair.refresh_token},
                headers=self._headers("POST", None, pair),
            )
        except httpx.HTTPError as err:
            logger.warning(f"Server-side logout failed, local session already cleared: {err}")
        finally:
            # Drop whatever the logout response set
            self._http.cookies.clear()
