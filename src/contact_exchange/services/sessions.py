"""Session lifecycle, hit submission, and status polling."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from contact_exchange.domain.errors import (
    InvalidHitError,
    InvalidTokenError,
    SessionExpiredError,
    SessionNotFoundError,
)
from contact_exchange.domain.exchange import (
    ExchangeSession,
    HitLocation,
    HitRecord,
    HitResult,
    MatchRecord,
    SessionStatus,
    SharingCategory,
    StatusResult,
)
from contact_exchange.domain.profiles import Profile
from contact_exchange.services.correlator import HitCorrelator
from contact_exchange.services.exchange_store import (
    ExchangeRepository,
    generate_token,
    utcnow,
)
from contact_exchange.services.profiles import ProfileService
from contact_exchange.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairResult:
    """Counterpart profile released after a match."""

    token: str
    you_are: str
    profile: Profile
    matched_at: datetime


@dataclass
class SessionService:
    """Owns the server-side exchange session lifecycle."""

    repository: ExchangeRepository
    correlator: HitCorrelator
    profile_service: ProfileService
    rate_limiter: RateLimiter | None = None
    session_ttl_seconds: int = 300
    max_clock_skew_ms: int = 10_000
    token_factory: Callable[[], str] = field(default=generate_token)
    clock: Callable[[], datetime] = field(default=utcnow)

    def initiate(
        self,
        session_id: str,
        sharing_category: SharingCategory,
        profile_id: str | None = None,
    ) -> ExchangeSession:
        """Create a session and issue its token.

        Repeating the call for a live session returns it unchanged; an
        expired session id cannot be reused.
        """
        now = self.clock()
        existing = self.repository.get_session(session_id)
        if existing is not None:
            if existing.effective_status(now) is SessionStatus.EXPIRED:
                raise SessionExpiredError("Exchange timed out")
            return existing

        session = self.repository.create_session(
            ExchangeSession(
                session_id=session_id,
                sharing_category=sharing_category,
                token=self.token_factory(),
                status=SessionStatus.OPEN,
                created_at=now,
                expires_at=now + timedelta(seconds=self.session_ttl_seconds),
                profile_id=profile_id,
            )
        )
        logger.info(
            "Exchange session initiated",
            extra={
                "session_id": session_id,
                "sharing_category": sharing_category.value,
            },
        )
        return session

    def submit_hit(  # noqa: PLR0913
        self,
        session_id: str,
        ts: int,
        magnitude: float,
        hit_number: int,
        sharing_category: SharingCategory,
        vector_hash: str | None = None,
        location: HitLocation | None = None,
    ) -> HitResult:
        """Record a hit and attempt an instant match."""
        session = self._get_live_session(session_id)
        if session.status is SessionStatus.MATCHED:
            existing = self.repository.get_match_for_session(session_id)
            return _hit_result(existing, session_id)

        if self.rate_limiter is not None:
            self.rate_limiter.check(session_id)

        now = self.clock()
        skew_ms = abs(now.timestamp() * 1000 - ts)
        if skew_ms > self.max_clock_skew_ms:
            logger.warning(
                "Hit timestamp rejected",
                extra={"session_id": session_id, "skew_ms": round(skew_ms)},
            )
            raise InvalidHitError("Request timestamp is invalid")

        hit = HitRecord(
            session_id=session_id,
            ts=ts,
            magnitude=magnitude,
            hit_number=hit_number,
            sharing_category=sharing_category,
            received_at=now,
            vector_hash=vector_hash,
            location=location,
        )
        match = self.correlator.correlate(hit)
        if match is None:
            logger.info(
                "Hit stored, waiting for match",
                extra={"session_id": session_id, "hit_number": hit_number},
            )
        return _hit_result(match, session_id)

    def status(self, session_id: str) -> StatusResult:
        """Return the session's match state without modifying anything."""
        session = self._get_live_session(session_id)
        if session.status is SessionStatus.MATCHED:
            match = self.repository.get_match_for_session(session_id)
            if match is not None:
                return StatusResult(
                    has_match=True,
                    token=match.token,
                    you_are=match.role_for(session_id),
                )
        if session.status is SessionStatus.PENDING_AUTH:
            return StatusResult(has_match=False, scan_status="pending_auth")
        return StatusResult(has_match=False)

    def resolve_pair(self, token: str, session_id: str) -> PairResult:
        """Return the counterpart profile for a matched session."""
        match = self.repository.get_match(token)
        if match is None:
            raise InvalidTokenError("Invalid or expired token")
        if not match.includes(session_id):
            raise InvalidTokenError("Session is not part of this exchange")
        counterpart = self.repository.get_session(match.counterpart_of(session_id))
        if counterpart is None:
            raise SessionNotFoundError("Counterpart session not found")
        return PairResult(
            token=match.token,
            you_are=match.role_for(session_id),
            profile=self.profile_service.released_profile(counterpart),
            matched_at=match.matched_at,
        )

    def _get_live_session(self, session_id: str) -> ExchangeSession:
        session = self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError("Session not found")
        if session.effective_status(self.clock()) is SessionStatus.EXPIRED:
            raise SessionExpiredError("Exchange timed out")
        return session


def _hit_result(match: MatchRecord | None, session_id: str) -> HitResult:
    if match is None:
        return HitResult(matched=False)
    return HitResult(matched=True, token=match.token, you_are=match.role_for(session_id))
