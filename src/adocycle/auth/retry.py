"""Retry a command run once after an authentication failure.

The wrapper is a two-state machine. A run starts in FIRST_ATTEMPT; an
authentication failure in an interactive terminal reacquires the token
and moves to RETRIED_ONCE, from which every failure propagates. A
PartialFailure, returned or raised, is never retried because the run
already created an artifact.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

from src.adocycle.auth.credentials import Credentials
from src.adocycle.errors import PartialFailureError, is_auth_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptState(str, Enum):
    FIRST_ATTEMPT = "first_attempt"
    RETRIED_ONCE = "retried_once"


class AuthRetryWrapper(Generic[T]):
    """Runs an attempt, reacquiring credentials once on an auth failure.

    Attributes:
        reacquire: Prompts for and persists a replacement token, returning
            the rebuilt credentials.
        is_interactive: Reports whether a terminal is attached.
        on_retry: Called with the failure before reacquiring (e.g., to
            tell the user the token was rejected).
    """

    def __init__(
        self,
        reacquire: Callable[[Credentials], Credentials],
        is_interactive: Callable[[], bool],
        on_retry: Callable[[Exception], None] = lambda exc: None,
    ):
        self.reacquire = reacquire
        self.is_interactive = is_interactive
        self.on_retry = on_retry

    def _should_retry(self, state: AttemptState, error: Exception) -> bool:
        return (
            state is AttemptState.FIRST_ATTEMPT
            and not isinstance(error, PartialFailureError)
            and is_auth_error(error)
            and self.is_interactive()
        )

    async def run(
        self,
        attempt: Callable[[Credentials], Awaitable[T]],
        credentials: Credentials,
    ) -> T:
        """Execute ``attempt`` with at most one credential refresh.

        Args:
            attempt: One full orchestration run using the given credentials.
            credentials: Credentials for the first attempt.

        Returns:
            Whatever the successful (or partially failed) attempt returned.

        Raises:
            Exception: The failure of the last attempt made.
        """
        state = AttemptState.FIRST_ATTEMPT
        while True:
            try:
                return await attempt(credentials)
            except Exception as e:
                if not self._should_retry(state, e):
                    raise
                logger.warning(
                    "Authentication failed, reacquiring token",
                    extra={"attempt_state": state.value, "error": str(e)},
                )
                self.on_retry(e)
                credentials = self.reacquire(credentials)
                state = AttemptState.RETRIED_ONCE
