"""Domain models for exchange sessions, hits, and matches."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SharingCategory(str, Enum):
    """Which profile subset is released on match."""

    ALL = "All"
    PERSONAL = "Personal"
    WORK = "Work"


class SessionStatus(str, Enum):
    """Server-side lifecycle of an exchange session."""

    OPEN = "open"
    PENDING_AUTH = "pending_auth"
    MATCHED = "matched"
    EXPIRED = "expired"


UNMATCHED_STATUSES = frozenset({SessionStatus.OPEN, SessionStatus.PENDING_AUTH})


@dataclass(frozen=True)
class ExchangeSession:
    """One device's exchange attempt."""

    session_id: str
    sharing_category: SharingCategory
    token: str
    status: SessionStatus
    created_at: datetime
    expires_at: datetime
    profile_id: str | None = None
    match_token: str | None = None

    def effective_status(self, now: datetime) -> SessionStatus:
        """Return the status with lazy expiry applied."""
        if self.status in UNMATCHED_STATUSES and now >= self.expires_at:
            return SessionStatus.EXPIRED
        return self.status


class LocationConfidence(str, Enum):
    """How closely two hits' network locations agree, strongest first."""

    CITY = "city"
    REGION = "region"
    NETWORK = "network"
    UNKNOWN = "unknown"
    NO_MATCH = "no_match"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    LocationConfidence.CITY: 3,
    LocationConfidence.REGION: 2,
    LocationConfidence.NETWORK: 1,
    LocationConfidence.UNKNOWN: 0,
    LocationConfidence.NO_MATCH: -1,
}


@dataclass(frozen=True)
class HitLocation:
    """Coarse origin of a hit derived from the client address."""

    network: str
    city: str | None = None
    region: str | None = None
    country: str | None = None

    @classmethod
    def from_address(
        cls,
        address: str,
        city: str | None = None,
        region: str | None = None,
        country: str | None = None,
    ) -> "HitLocation":
        """Build a location keyed on the leading block of an IPv4 or IPv6 address."""
        separator = ":" if ":" in address else "."
        return cls(
            network=address.split(separator)[0],
            city=city or None,
            region=region or None,
            country=country or None,
        )


def location_confidence(
    first: HitLocation | None, second: HitLocation | None
) -> LocationConfidence:
    """Compare two hit locations.

    Hits without a location (in-process callers) are UNKNOWN rather than
    rejected; hits with locations must share at least a network block.
    """
    if first is None or second is None:
        return LocationConfidence.UNKNOWN
    if (
        first.city
        and first.city == second.city
        and first.region == second.region
        and first.country == second.country
    ):
        return LocationConfidence.CITY
    if (
        first.region
        and first.region == second.region
        and first.country == second.country
    ):
        return LocationConfidence.REGION
    if first.network == second.network:
        return LocationConfidence.NETWORK
    return LocationConfidence.NO_MATCH


@dataclass(frozen=True)
class HitRecord:
    """A single physical bump submitted by a session."""

    session_id: str
    ts: int
    magnitude: float
    hit_number: int
    sharing_category: SharingCategory
    received_at: datetime
    vector_hash: str | None = None
    location: HitLocation | None = None


@dataclass(frozen=True)
class MatchRecord:
    """Binding of two sessions into one exchange."""

    token: str
    session_a: str
    session_b: str
    matched_at: datetime
    source: str = "bump"

    def role_for(self, session_id: str) -> str:
        """Return "A" or "B" for a participating session."""
        if session_id == self.session_a:
            return "A"
        if session_id == self.session_b:
            return "B"
        raise ValueError(f"Session {session_id} is not part of match {self.token}")

    def counterpart_of(self, session_id: str) -> str:
        """Return the other participant's session id."""
        if self.role_for(session_id) == "A":
            return self.session_b
        return self.session_a

    def includes(self, session_id: str) -> bool:
        return session_id in {self.session_a, self.session_b}


def assign_roles(first: str, second: str) -> tuple[str, str]:
    """Order two session ids as (A, B); the lexicographically smaller id is A."""
    if first == second:
        raise ValueError("A session cannot be matched with itself")
    return (first, second) if first < second else (second, first)


@dataclass(frozen=True)
class HitResult:
    """Outcome of a hit submission."""

    matched: bool
    token: str | None = None
    you_are: str | None = None


@dataclass(frozen=True)
class StatusResult:
    """Point-in-time view of a session's match state."""

    has_match: bool
    scan_status: str | None = None
    token: str | None = None
    you_are: str | None = None
