"""Server-side correlation of bump hits into matches."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from contact_exchange.domain.exchange import (
    UNMATCHED_STATUSES,
    HitRecord,
    LocationConfidence,
    MatchRecord,
    assign_roles,
    location_confidence,
)
from contact_exchange.services.exchange_store import (
    ExchangeRepository,
    generate_token,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class HitCorrelator:
    """Pairs a new hit with a compatible recent hit from another session."""

    repository: ExchangeRepository
    coincidence_window_ms: int = 1500
    min_magnitude: float = 5.0
    hit_retention_seconds: int = 30
    token_factory: Callable[[], str] = field(default=generate_token)
    clock: Callable[[], datetime] = field(default=utcnow)

    def correlate(self, hit: HitRecord) -> MatchRecord | None:
        """Store the hit and try to bind it into a match.

        Returns the session's match when one exists after this call, whether
        it was created now, earlier, or by a concurrent submission.
        """
        existing = self.repository.get_match_for_session(hit.session_id)
        if existing is not None:
            return existing

        now = self.clock()
        purged = self.repository.delete_hits_before(self.retention_cutoff(now))
        if purged:
            logger.debug("Purged stale hits", extra={"count": purged})

        self.repository.add_hit(hit)
        if hit.magnitude < self.min_magnitude:
            logger.info(
                "Hit below magnitude threshold",
                extra={"session_id": hit.session_id, "magnitude": hit.magnitude},
            )
            return None

        for candidate in self.candidates_for(hit, now):
            session_a, session_b = assign_roles(hit.session_id, candidate.session_id)
            match = MatchRecord(
                token=self.token_factory(),
                session_a=session_a,
                session_b=session_b,
                matched_at=now,
                source="bump",
            )
            if self.repository.bind_match(match):
                logger.info(
                    "Bump match created",
                    extra={
                        "token": match.token,
                        "session_a": session_a,
                        "session_b": session_b,
                        "time_diff_ms": abs(hit.ts - candidate.ts),
                        "confidence": location_confidence(
                            hit.location, candidate.location
                        ).value,
                    },
                )
                return match
            # Lost the bind race; a concurrent hit may have matched us already.
            existing = self.repository.get_match_for_session(hit.session_id)
            if existing is not None:
                return existing
        return None

    def retention_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self.hit_retention_seconds)

    def is_compatible(self, hit: HitRecord, other: HitRecord) -> bool:
        """Return true when two hits look like one physical bump."""
        if hit.session_id == other.session_id:
            return False
        if hit.magnitude < self.min_magnitude or other.magnitude < self.min_magnitude:
            return False
        if (
            location_confidence(hit.location, other.location)
            is LocationConfidence.NO_MATCH
        ):
            return False
        return abs(hit.ts - other.ts) <= self.coincidence_window_ms

    def candidates_for(self, hit: HitRecord, now: datetime) -> list[HitRecord]:
        """Return the best compatible hit per unmatched session, best first."""
        best_by_session: dict[str, HitRecord] = {}
        for other in self.repository.list_hits_since(self.retention_cutoff(now)):
            if not self.is_compatible(hit, other):
                continue
            current = best_by_session.get(other.session_id)
            if current is None or _rank(hit, other) > _rank(hit, current):
                best_by_session[other.session_id] = other

        candidates: list[HitRecord] = []
        for session_id, other in best_by_session.items():
            session = self.repository.get_session(session_id)
            if session is None:
                continue
            if session.effective_status(now) not in UNMATCHED_STATUSES:
                continue
            candidates.append(other)
        return sorted(candidates, key=lambda other: _rank(hit, other), reverse=True)


def _rank(hit: HitRecord, other: HitRecord) -> tuple[bool, int, int, int]:
    """Order candidates by vector match, location, recency, then hit numbers."""
    vector_match = hit.vector_hash is not None and hit.vector_hash == other.vector_hash
    confidence = location_confidence(hit.location, other.location)
    return (
        vector_match,
        confidence.rank,
        other.ts,
        -(hit.hit_number + other.hit_number),
    )
