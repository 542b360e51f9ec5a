"""Unit tests for the single re-authentication retry."""

import asyncio
from dataclasses import replace
from pathlib import Path

import pytest

from src.adocycle.auth.credentials import CredentialSource, Credentials
from src.adocycle.auth.retry import AuthRetryWrapper
from src.adocycle.errors import AuthError, ConflictError, NotFoundError, PartialFailureError


def run_async(coro):
    return asyncio.run(coro)


class StatusError(Exception):
    def __init__(self, status_code):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


@pytest.fixture
def credentials():
    return Credentials(
        organization_input="contoso",
        organization_url="https://dev.azure.com/contoso",
        token="first",
        organization_source=CredentialSource.CONFIG,
        token_source=CredentialSource.CONFIG,
        config_path=Path("/tmp/adocycle/config.json"),
    )


class ScriptedAttempt:
    """Raises queued errors, then returns the token it was called with."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.tokens = []

    async def __call__(self, credentials):
        self.tokens.append(credentials.token)
        if self.errors:
            raise self.errors.pop(0)
        return credentials.token


def _wrapper(interactive=True, reacquired=None):
    reacquired = reacquired if reacquired is not None else []

    def reacquire(credentials):
        reacquired.append(credentials.token)
        return replace(credentials, token="second")

    return AuthRetryWrapper(reacquire=reacquire, is_interactive=lambda: interactive)


class TestAuthRetryWrapper:

    def test_success_needs_no_retry(self, credentials):
        attempt = ScriptedAttempt()
        assert run_async(_wrapper().run(attempt, credentials)) == "first"
        assert attempt.tokens == ["first"]

    def test_auth_failure_retries_once_with_new_token(self, credentials):
        attempt = ScriptedAttempt(AuthError("rejected"))
        reacquired = []
        notified = []
        wrapper = _wrapper(reacquired=reacquired)
        wrapper.on_retry = notified.append

        assert run_async(wrapper.run(attempt, credentials)) == "second"
        assert attempt.tokens == ["first", "second"]
        assert reacquired == ["first"]
        assert len(notified) == 1

    @pytest.mark.parametrize(
        "error",
        [StatusError(401), StatusError(403), RuntimeError("Unauthorized"), RuntimeError("Forbidden")],
    )
    def test_status_codes_and_messages_count_as_auth(self, credentials, error):
        attempt = ScriptedAttempt(error)
        assert run_async(_wrapper().run(attempt, credentials)) == "second"

    def test_second_auth_failure_propagates(self, credentials):
        attempt = ScriptedAttempt(AuthError("rejected"), AuthError("still rejected"))
        reacquired = []

        with pytest.raises(AuthError, match="still rejected"):
            run_async(_wrapper(reacquired=reacquired).run(attempt, credentials))

        assert len(attempt.tokens) == 2
        assert len(reacquired) == 1

    def test_non_interactive_does_not_retry(self, credentials):
        attempt = ScriptedAttempt(AuthError("rejected"))
        reacquired = []

        with pytest.raises(AuthError):
            run_async(_wrapper(interactive=False, reacquired=reacquired).run(attempt, credentials))

        assert reacquired == []

    def test_other_errors_are_not_retried(self, credentials):
        attempt = ScriptedAttempt(NotFoundError("Work item 1 was not found."))

        with pytest.raises(NotFoundError):
            run_async(_wrapper().run(attempt, credentials))

        assert attempt.tokens == ["first"]

    @pytest.mark.parametrize(
        "error",
        [
            NotFoundError("Work item 401 was not found."),
            ConflictError("Branch 'feature/403-x' already exists in Fabrikam/Website."),
        ],
    )
    def test_status_like_ids_in_domain_errors_are_not_retried(self, credentials, error):
        attempt = ScriptedAttempt(error)
        reacquired = []

        with pytest.raises(type(error)):
            run_async(_wrapper(reacquired=reacquired).run(attempt, credentials))

        assert reacquired == []
        assert attempt.tokens == ["first"]

    def test_partial_failure_is_not_retried(self, credentials):
        attempt = ScriptedAttempt(
            PartialFailureError("401 while updating state", artifact="feature/1-x")
        )

        with pytest.raises(PartialFailureError):
            run_async(_wrapper().run(attempt, credentials))

        assert attempt.tokens == ["first"]
