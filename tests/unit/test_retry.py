import pytest

from prepcoach.auth.errors import (
    STAGE_AUTHORIZATION,
    STAGE_CALLBACK,
    STAGE_PROFILE,
    STAGE_TOKEN_EXCHANGE,
    AuthError,
)
from prepcoach.auth.models import AttemptStatus
from prepcoach.auth.retry import RetryCoordinator
from prepcoach.auth.state import StateTokenManager

CANDIDATES = [
    "https://app.example.com/auth/callback",
    "https://fallback.example.com/auth/callback",
    "https://third.example.com/auth/callback",
    "http://localhost:5000/auth/callback",
]


@pytest.fixture
def states(store):
    return StateTokenManager(store)


@pytest.fixture
def coordinator(states):
    return RetryCoordinator(states, max_attempts=3)


def _consumed(states, sid="sid-1", candidates=CANDIDATES):
    attempt = states.begin_attempt(sid, candidates)
    return states.consume_attempt(sid, attempt.state_token)


@pytest.mark.parametrize("stage", [STAGE_TOKEN_EXCHANGE, STAGE_PROFILE])
def test_retryable_stages(coordinator, states, stage):
    assert coordinator.should_retry(_consumed(states), AuthError(stage, "boom"))


@pytest.mark.parametrize("stage", [STAGE_AUTHORIZATION, STAGE_CALLBACK])
def test_other_stages_are_terminal(coordinator, states, stage):
    assert not coordinator.should_retry(_consumed(states), AuthError(stage, "boom"))


def test_no_retry_without_fallbacks(coordinator, states):
    attempt = _consumed(states, candidates=CANDIDATES[:1])
    assert not coordinator.should_retry(attempt, AuthError(STAGE_TOKEN_EXCHANGE, "boom"))


def test_finished_attempt_is_not_retried(coordinator, states):
    attempt = _consumed(states)
    attempt.status = AttemptStatus.FAILED
    assert not coordinator.should_retry(attempt, AuthError(STAGE_TOKEN_EXCHANGE, "boom"))


def test_retry_moves_to_next_candidate_with_fresh_state(coordinator, states, store):
    attempt = _consumed(states)
    old_state = attempt.state_token

    retried = coordinator.retry("sid-1", attempt)

    assert retried.active_redirect_uri == CANDIDATES[1]
    assert retried.fallback_redirect_uris == CANDIDATES[2:]
    assert retried.attempt_count == 1
    assert retried.status is AttemptStatus.PENDING
    assert retried.state_token != old_state
    assert store.get_attempt("sid-1") == retried
    # the consumed token stays dead
    assert states.consume_attempt("sid-1", old_state) is None


def test_bounded_by_max_attempts(coordinator, states):
    err = AuthError(STAGE_TOKEN_EXCHANGE, "redirect mismatch")
    attempt = _consumed(states)
    seen = 1
    while coordinator.should_retry(attempt, err):
        attempt = coordinator.retry("sid-1", attempt)
        attempt = states.consume_attempt("sid-1", attempt.state_token)
        seen += 1
    # three authorization round trips in total
    assert seen == 3
    assert attempt.attempt_count == 2
    assert attempt.fallback_redirect_uris == CANDIDATES[3:]


def test_bounded_by_candidate_count(states):
    coordinator = RetryCoordinator(states, max_attempts=3)
    err = AuthError(STAGE_TOKEN_EXCHANGE, "redirect mismatch")
    attempt = _consumed(states, candidates=CANDIDATES[:2])
    attempt = coordinator.retry("sid-1", attempt)
    assert not coordinator.should_retry(attempt, err)
    assert attempt.attempt_count == 1


def test_retry_without_fallback_raises(coordinator, states):
    attempt = _consumed(states, candidates=CANDIDATES[:1])
    with pytest.raises(ValueError):
        coordinator.retry("sid-1", attempt)
