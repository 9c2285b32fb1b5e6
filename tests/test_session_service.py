"""Tests for the session/status service."""

import pytest

from contact_exchange.domain.errors import (
    InvalidHitError,
    InvalidTokenError,
    ProfileNotFoundError,
    RateLimitedError,
    SessionExpiredError,
    SessionNotFoundError,
)
from contact_exchange.domain.exchange import SessionStatus, SharingCategory, StatusResult
from contact_exchange.services.correlator import HitCorrelator
from contact_exchange.services.exchange_store import is_well_formed_token
from contact_exchange.services.profiles import ProfileService
from contact_exchange.services.rate_limit import InMemoryRateLimiter
from contact_exchange.services.sessions import SessionService
from tests.conftest import (
    FixedClock,
    InMemoryExchangeRepository,
    InMemoryProfileRepository,
    make_profile_data,
)


def _build(
    clock: FixedClock, rate_limit: int = 60
) -> tuple[SessionService, InMemoryExchangeRepository]:
    repository = InMemoryExchangeRepository()
    profiles = InMemoryProfileRepository()
    profiles.add("profile-a", make_profile_data("Ada"))
    profiles.add("profile-b", make_profile_data("Grace"))
    service = SessionService(
        repository=repository,
        correlator=HitCorrelator(repository=repository, clock=clock),
        profile_service=ProfileService(profiles),
        rate_limiter=InMemoryRateLimiter(limit=rate_limit, window_seconds=60, clock=clock),
        clock=clock,
    )
    return service, repository


def _bump(service: SessionService, clock: FixedClock, session_id: str, hit_number: int = 1):
    return service.submit_hit(
        session_id=session_id,
        ts=clock.epoch_ms(),
        magnitude=9.0,
        hit_number=hit_number,
        sharing_category=SharingCategory.ALL,
    )


def test_initiate_issues_token_and_is_idempotent() -> None:
    clock = FixedClock()
    service, _ = _build(clock)

    first = service.initiate("session-1", SharingCategory.WORK, "profile-a")
    second = service.initiate("session-1", SharingCategory.WORK, "profile-a")

    assert is_well_formed_token(first.token)
    assert first.status is SessionStatus.OPEN
    assert second == first


def test_initiate_rejects_expired_session_id() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    service.initiate("session-1", SharingCategory.ALL)
    clock.advance(301)

    with pytest.raises(SessionExpiredError):
        service.initiate("session-1", SharingCategory.ALL)


def test_status_is_idempotent_until_match() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    service.initiate("session-1", SharingCategory.ALL)

    first = service.status("session-1")
    second = service.status("session-1")

    assert first == second == StatusResult(has_match=False)


def test_status_does_not_write_expiry() -> None:
    clock = FixedClock()
    service, repository = _build(clock)
    service.initiate("session-1", SharingCategory.ALL)
    clock.advance(301)

    with pytest.raises(SessionExpiredError):
        service.status("session-1")
    assert repository.get_session("session-1").status is SessionStatus.OPEN


def test_status_unknown_session() -> None:
    service, _ = _build(FixedClock())

    with pytest.raises(SessionNotFoundError):
        service.status("missing")


def test_bump_match_is_symmetric() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    service.initiate("session-b", SharingCategory.ALL, "profile-b")
    service.initiate("session-a", SharingCategory.ALL, "profile-a")

    waiting = _bump(service, clock, "session-b")
    instant = _bump(service, clock, "session-a")

    assert waiting.matched is False
    assert instant.matched is True
    assert instant.you_are == "A"
    status_a = service.status("session-a")
    status_b = service.status("session-b")
    assert status_a.has_match and status_b.has_match
    assert status_a.token == status_b.token == instant.token
    assert {status_a.you_are, status_b.you_are} == {"A", "B"}


def test_hit_on_matched_session_returns_existing_match() -> None:
    clock = FixedClock()
    service, repository = _build(clock)
    service.initiate("session-a", SharingCategory.ALL)
    service.initiate("session-b", SharingCategory.ALL)
    _bump(service, clock, "session-a")
    match = _bump(service, clock, "session-b")

    again = _bump(service, clock, "session-a", hit_number=2)

    assert again.token == match.token
    assert again.you_are == "A"
    assert len(repository.matches) == 1


def test_hit_with_skewed_timestamp_is_rejected() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    service.initiate("session-1", SharingCategory.ALL)

    with pytest.raises(InvalidHitError):
        service.submit_hit(
            session_id="session-1",
            ts=clock.epoch_ms() - 60_000,
            magnitude=9.0,
            hit_number=1,
            sharing_category=SharingCategory.ALL,
        )


def test_hits_are_rate_limited_per_session() -> None:
    clock = FixedClock()
    service, _ = _build(clock, rate_limit=2)
    service.initiate("session-1", SharingCategory.ALL)

    _bump(service, clock, "session-1", hit_number=1)
    _bump(service, clock, "session-1", hit_number=2)
    with pytest.raises(RateLimitedError):
        _bump(service, clock, "session-1", hit_number=3)

    clock.advance(61)
    assert _bump(service, clock, "session-1", hit_number=4).matched is False


def test_hit_on_expired_session_is_rejected() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    service.initiate("session-1", SharingCategory.ALL)
    clock.advance(301)

    with pytest.raises(SessionExpiredError):
        _bump(service, clock, "session-1")


def test_resolve_pair_releases_counterpart_profile_by_category() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    service.initiate("session-a", SharingCategory.WORK, "profile-a")
    service.initiate("session-b", SharingCategory.ALL, "profile-b")
    _bump(service, clock, "session-a")
    match = _bump(service, clock, "session-b")

    for_a = service.resolve_pair(match.token, "session-a")
    for_b = service.resolve_pair(match.token, "session-b")

    # session-b shares All, which releases the personal section.
    fields_for_a = {entry["fieldType"] for entry in for_a.profile.data["contactEntries"]}
    assert fields_for_a == {"name", "bio", "phone"}
    assert for_a.you_are == "A"
    fields_for_b = {entry["fieldType"] for entry in for_b.profile.data["contactEntries"]}
    assert fields_for_b == {"name", "bio", "email"}
    assert for_b.profile.data["userId"] == "user-ada"


def test_resolve_pair_rejects_unknown_token_and_outsiders() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    for session_id in ("session-a", "session-b", "session-c"):
        service.initiate(session_id, SharingCategory.ALL, "profile-a")
    _bump(service, clock, "session-a")
    match = _bump(service, clock, "session-b")

    with pytest.raises(InvalidTokenError):
        service.resolve_pair("unknown", "session-a")
    with pytest.raises(InvalidTokenError):
        service.resolve_pair(match.token, "session-c")


def test_resolve_pair_without_profile() -> None:
    clock = FixedClock()
    service, _ = _build(clock)
    service.initiate("session-a", SharingCategory.ALL, "profile-a")
    service.initiate("session-b", SharingCategory.ALL)
    _bump(service, clock, "session-a")
    match = _bump(service, clock, "session-b")

    with pytest.raises(ProfileNotFoundError):
        service.resolve_pair(match.token, "session-a")
