import pytest

from prepcoach.auth.models import AttemptStatus
from prepcoach.auth.state import StateTokenManager

CANDIDATES = [
    "https://app.example.com/auth/callback",
    "https://fallback.example.com/auth/callback",
    "http://localhost:5000/auth/callback",
]


@pytest.fixture
def states(store, clock):
    return StateTokenManager(store, ttl_seconds=600, clock=clock)


def test_begin_attempt_initial_fields(states, store):
    attempt = states.begin_attempt("sid-1", CANDIDATES)

    assert attempt.active_redirect_uri == CANDIDATES[0]
    assert attempt.fallback_redirect_uris == CANDIDATES[1:]
    assert attempt.attempt_count == 0
    assert attempt.status is AttemptStatus.PENDING
    # 256 bits, url-safe base64 without padding
    assert len(attempt.state_token) == 43
    assert store.get_attempt("sid-1") == attempt


def test_state_tokens_are_unique(states):
    tokens = {states.begin_attempt(f"sid-{i}", CANDIDATES).state_token for i in range(50)}
    assert len(tokens) == 50


def test_begin_attempt_requires_a_candidate(states):
    with pytest.raises(ValueError):
        states.begin_attempt("sid-1", [])


def test_consume_returns_attempt_once(states):
    attempt = states.begin_attempt("sid-1", CANDIDATES)

    got = states.consume_attempt("sid-1", attempt.state_token)
    assert got is not None
    assert got.status is AttemptStatus.CALLBACK_RECEIVED
    assert got.active_redirect_uri == CANDIDATES[0]

    assert states.consume_attempt("sid-1", attempt.state_token) is None


def test_wrong_state_is_rejected_and_burns_the_attempt(states):
    attempt = states.begin_attempt("sid-1", CANDIDATES)

    assert states.consume_attempt("sid-1", "not-the-token") is None
    assert states.consume_attempt("sid-1", attempt.state_token) is None


def test_state_is_bound_to_its_session(states):
    attempt = states.begin_attempt("sid-1", CANDIDATES)
    assert states.consume_attempt("sid-2", attempt.state_token) is None


def test_missing_state_is_rejected(states):
    states.begin_attempt("sid-1", CANDIDATES)
    assert states.consume_attempt("sid-1", None) is None


def test_expired_attempt_is_rejected(states, clock):
    attempt = states.begin_attempt("sid-1", CANDIDATES)
    clock.advance(601)
    assert states.consume_attempt("sid-1", attempt.state_token) is None


def test_new_attempt_replaces_pending_one(states):
    first = states.begin_attempt("sid-1", CANDIDATES)
    second = states.begin_attempt("sid-1", CANDIDATES)

    assert states.consume_attempt("sid-1", first.state_token) is None
    # the mismatch above consumed the second attempt too
    assert states.consume_attempt("sid-1", second.state_token) is None


def test_discard(states):
    attempt = states.begin_attempt("sid-1", CANDIDATES)
    states.discard("sid-1")
    assert states.consume_attempt("sid-1", attempt.state_token) is None
