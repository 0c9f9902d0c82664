"""Single-flight renewal of session credentials.

When requests fail authorization, only the first one triggers a refresh call;
every other failing request waits on the same outcome. On success all waiters
are released in arrival order with the new pair; on failure they all receive
the same ``SessionExpiredError`` and the store is cleared.

The coordinator is driven from one asyncio event loop. State changes happen
between awaits, so no lock is needed for the single-flight guarantee.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from enum import StrEnum

from .credentials import CredentialPair, CredentialRepository
from .exceptions import RefreshTimeoutError, SessionCancelledError, SessionExpiredError

logger = logging.getLogger(__name__)

RefreshCall = Callable[[CredentialPair], Awaitable[CredentialPair]]
SessionExpiredCallback = Callable[[SessionExpiredError], None]

DEFAULT_REFRESH_TIMEOUT = 10.0


class CoordinatorState(StrEnum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """Coordinates credential refresh for one client session.

    Args:
        store: Credential store holding the current pair
        refresh: Exchanges the current pair for a new one; raising means the session is over
        timeout: Seconds before an in-flight refresh counts as failed
        on_session_expired: Called once per failed refresh, after waiters have been rejected

    """

    def __init__(
        self,
        store: CredentialRepository,
        refresh: RefreshCall,
        timeout: float = DEFAULT_REFRESH_TIMEOUT,
        on_session_expired: SessionExpiredCallback | None = None,
    ):
        self._store = store
        self._refresh = refresh
        self._timeout = timeout
        self._on_session_expired = on_session_expired

        self._state = CoordinatorState.IDLE
        self._waiters: deque[asyncio.Future[CredentialPair]] = deque()
        self._task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        # Bumped on every refresh start and on cancel; stale refresh results are discarded
        self._generation = 0
        # Set by cancel() until the next session is opened
        self._cancelled = False
        self.refresh_calls = 0

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def pending(self) -> int:
        """Number of requests waiting for the in-flight refresh."""
        return len(self._waiters)

    async def handle_unauthorized(self, failed_access_token: str | None) -> CredentialPair:
        """Wait for credentials to retry a request that was rejected with 401.

        Args:
            failed_access_token: Access token the rejected request was sent with

        Returns:
            The pair to retry with

        Raises:
            SessionExpiredError: No session, or the refresh failed
            SessionCancelledError: The session was ended while waiting

        """
        if self._cancelled:
            raise SessionCancelledError("Session ended by logout")

        current = self._store.get()

        if self._state is CoordinatorState.IDLE:
            if current is None:
                raise SessionExpiredError("No active session")
            if current.access_token != failed_access_token:
                # Credentials were already renewed after this request went out
                return current

        waiter: asyncio.Future[CredentialPair] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)

        if self._state is CoordinatorState.IDLE:
            self._start_refresh(current)

        return await waiter

    def _start_refresh(self, pair: CredentialPair) -> None:
        self._state = CoordinatorState.REFRESHING
        self._generation += 1
        self.refresh_calls += 1
        logger.debug(f"Refreshing session credentials ({len(self._waiters)} request(s) waiting)")
        self._task = asyncio.create_task(self._run_refresh(pair, self._generation))
        # Strong reference until done, even after cancel() drops _task
        self._background.add(self._task)
        self._task.add_done_callback(self._background.discard)

    async def _run_refresh(self, pair: CredentialPair, generation: int) -> None:
        try:
            async with asyncio.timeout(self._timeout):
                new_pair = await self._refresh(pair)
        except TimeoutError as err:
            timeout_error = RefreshTimeoutError(f"Refresh did not complete within {self._timeout}s")
            timeout_error.__cause__ = err
            self._fail(generation, timeout_error)
            return
        except Exception as err:
            self._fail(generation, err)
            return

        if generation != self._generation:
            return

        self._store.set(new_pair)
        self._state = CoordinatorState.IDLE
        self._task = None

        waiters, self._waiters = self._waiters, deque()
        logger.debug(f"Session credentials refreshed, releasing {len(waiters)} request(s)")
        while waiters:
            waiter = waiters.popleft()
            if not waiter.done():
                waiter.set_result(new_pair)

    def _fail(self, generation: int, cause: BaseException) -> None:
        if generation != self._generation:
            return

        self._store.clear()
        self._state = CoordinatorState.IDLE
        self._task = None

        error = SessionExpiredError("Session expired: credentials could not be refreshed")
        error.__cause__ = cause

        waiters, self._waiters = self._waiters, deque()
        logger.warning(f"Session refresh failed ({type(cause).__name__}), rejecting {len(waiters)} request(s)")
        while waiters:
            waiter = waiters.popleft()
            if not waiter.done():
                waiter.set_exception(error)

        if self._on_session_expired is not None:
            self._on_session_expired(error)

    def cancel(self) -> None:
        """End the session locally: reject waiters and abandon any in-flight refresh.

        A refresh that completes after this call has no effect, and later 401s are
        rejected with ``SessionCancelledError`` until ``resume()``.
        """
        self._cancelled = True
        self._generation += 1
        task, self._task = self._task, None
        self._state = CoordinatorState.IDLE

        waiters, self._waiters = self._waiters, deque()
        if waiters:
            error = SessionCancelledError("Session ended by logout")
            while waiters:
                waiter = waiters.popleft()
                if not waiter.done():
                    waiter.set_exception(error)

        if task is not None and not task.done():
            task.cancel()

    def resume(self) -> None:
        """Accept refreshes again once a new session has been opened."""
        self._cancelled = False
