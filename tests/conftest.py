"""Shared test fixtures."""

import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

import pytest

from contact_exchange.adapters.exchange_client import ExchangeApi
from contact_exchange.config import Settings
from contact_exchange.containers import AppContainer, build_services
from contact_exchange.domain.exchange import (
    UNMATCHED_STATUSES,
    ExchangeSession,
    HitRecord,
    HitResult,
    MatchRecord,
    SessionStatus,
    SharingCategory,
    StatusResult,
)
from contact_exchange.domain.profiles import Profile
from contact_exchange.services.exchange_store import ExchangeRepository
from contact_exchange.services.profiles import ProfileRepository


@dataclass
class InMemoryExchangeRepository(ExchangeRepository):
    """In-memory exchange repository for tests."""

    sessions: dict[str, ExchangeSession] = field(default_factory=dict)
    hits: list[HitRecord] = field(default_factory=list)
    matches: dict[str, MatchRecord] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def create_session(self, session: ExchangeSession) -> ExchangeSession:
        with self.lock:
            self.sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> ExchangeSession | None:
        return self.sessions.get(session_id)

    def get_session_by_token(self, token: str) -> ExchangeSession | None:
        for session in list(self.sessions.values()):
            if session.token == token:
                return session
        return None

    def mark_pending_auth(self, session_id: str, expires_at: datetime) -> bool:
        with self.lock:
            session = self.sessions.get(session_id)
            if session is None or session.status not in UNMATCHED_STATUSES:
                return False
            self.sessions[session_id] = replace(
                session, status=SessionStatus.PENDING_AUTH, expires_at=expires_at
            )
            return True

    def add_hit(self, hit: HitRecord) -> None:
        with self.lock:
            self.hits.append(hit)

    def list_hits_since(self, since: datetime) -> list[HitRecord]:
        with self.lock:
            return [hit for hit in self.hits if hit.received_at >= since]

    def delete_hits_before(self, cutoff: datetime) -> int:
        with self.lock:
            kept = [hit for hit in self.hits if hit.received_at >= cutoff]
            removed = len(self.hits) - len(kept)
            self.hits = kept
            return removed

    def bind_match(self, match: MatchRecord) -> bool:
        with self.lock:
            pair = [self.sessions.get(match.session_a), self.sessions.get(match.session_b)]
            for session in pair:
                if session is None or session.status not in UNMATCHED_STATUSES:
                    return False
                if session.expires_at <= match.matched_at:
                    return False
            for session in pair:
                self.sessions[session.session_id] = replace(
                    session, status=SessionStatus.MATCHED, match_token=match.token
                )
            self.matches[match.token] = match
            return True

    def get_match(self, token: str) -> MatchRecord | None:
        return self.matches.get(token)

    def get_match_for_session(self, session_id: str) -> MatchRecord | None:
        session = self.sessions.get(session_id)
        if session is None or session.match_token is None:
            return None
        return self.matches.get(session.match_token)


@dataclass
class InMemoryProfileRepository(ProfileRepository):
    """In-memory profile repository for tests."""

    profiles: dict[str, Profile] = field(default_factory=dict)

    def add(self, profile_id: str, data: dict[str, object]) -> Profile:
        profile = Profile(profile_id=profile_id, data=data)
        self.profiles[profile_id] = profile
        return profile

    def get_profile(self, profile_id: str) -> Profile | None:
        return self.profiles.get(profile_id)


@dataclass
class FixedClock:
    """Manually advanced UTC clock."""

    now: datetime = field(default_factory=lambda: datetime(2026, 1, 15, 12, tzinfo=UTC))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def epoch_ms(self) -> int:
        return int(self.now.timestamp() * 1000)


@dataclass
class ServiceBackedExchangeApi(ExchangeApi):
    """Exchange API that calls the services in-process."""

    container: AppContainer
    hits: list[dict[str, object]] = field(default_factory=list)

    async def initiate(
        self,
        session_id: str,
        sharing_category: SharingCategory,
        profile_id: str | None = None,
    ) -> str:
        session = self.container.session_service.initiate(
            session_id, sharing_category, profile_id
        )
        return session.token

    async def submit_hit(  # noqa: PLR0913
        self,
        session_id: str,
        ts: int,
        magnitude: float,
        hit_number: int,
        sharing_category: SharingCategory,
        vector_hash: str | None = None,
    ) -> HitResult:
        self.hits.append(
            {"session_id": session_id, "ts": ts, "hit_number": hit_number}
        )
        return self.container.session_service.submit_hit(
            session_id=session_id,
            ts=ts,
            magnitude=magnitude,
            hit_number=hit_number,
            sharing_category=sharing_category,
            vector_hash=vector_hash,
        )

    async def status(self, session_id: str) -> StatusResult:
        return self.container.session_service.status(session_id)

    async def pair(self, token: str, session_id: str) -> dict[str, object]:
        return self.container.session_service.resolve_pair(token, session_id).profile.data


def make_profile_data(name: str) -> dict[str, object]:
    return {
        "userId": f"user-{name.lower()}",
        "shortCode": name[:3].upper(),
        "profileImage": f"https://img.example/{name.lower()}.png",
        "contactEntries": [
            {"fieldType": "name", "value": name, "section": "universal"},
            {"fieldType": "bio", "value": f"{name} bio", "section": "universal"},
            {
                "fieldType": "phone",
                "value": "+1 555 0100",
                "section": "personal",
            },
            {
                "fieldType": "email",
                "value": f"{name.lower()}@work.example",
                "section": "work",
            },
            {
                "fieldType": "instagram",
                "value": f"@{name.lower()}",
                "section": "personal",
                "isVisible": False,
            },
        ],
    }


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
    )


@pytest.fixture
def exchange_repository() -> InMemoryExchangeRepository:
    return InMemoryExchangeRepository()


@pytest.fixture
def profile_repository() -> InMemoryProfileRepository:
    repository = InMemoryProfileRepository()
    repository.add("profile-a", make_profile_data("Ada"))
    repository.add("profile-b", make_profile_data("Grace"))
    return repository


@pytest.fixture
def container(
    settings: Settings,
    exchange_repository: InMemoryExchangeRepository,
    profile_repository: InMemoryProfileRepository,
) -> AppContainer:
    return build_services(
        settings,
        exchange_repository=exchange_repository,
        profile_repository=profile_repository,
    )
