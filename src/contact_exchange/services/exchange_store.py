"""Persistence contract shared by the session, correlation, and QR services."""

import secrets
import string
from datetime import UTC, datetime
from typing import Protocol

from contact_exchange.domain.exchange import ExchangeSession, HitRecord, MatchRecord

_TOKEN_ALPHABET = string.digits + string.ascii_letters
TOKEN_LENGTH = 32


class ExchangeRepository(Protocol):
    """Persistence interface for exchange sessions, hits, and matches."""

    def create_session(self, session: ExchangeSession) -> ExchangeSession:
        """Store a new session and return it."""

    def get_session(self, session_id: str) -> ExchangeSession | None:
        """Return a session by id, if present."""

    def get_session_by_token(self, token: str) -> ExchangeSession | None:
        """Return the session that owns a token, if present."""

    def mark_pending_auth(self, session_id: str, expires_at: datetime) -> bool:
        """Move an unmatched session to pending_auth; return false if matched."""

    def add_hit(self, hit: HitRecord) -> None:
        """Append a hit record."""

    def list_hits_since(self, since: datetime) -> list[HitRecord]:
        """Return hits received at or after the given time."""

    def delete_hits_before(self, cutoff: datetime) -> int:
        """Delete hits received before the cutoff and return how many were removed."""

    def bind_match(self, match: MatchRecord) -> bool:
        """Atomically mark both sessions matched and store the match.

        Succeeds only when neither session is already matched; returns false
        without writing anything otherwise.
        """

    def get_match(self, token: str) -> MatchRecord | None:
        """Return a match by token, if present."""

    def get_match_for_session(self, session_id: str) -> MatchRecord | None:
        """Return the match a session participates in, if any."""


def generate_token() -> str:
    """Generate an opaque exchange token."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def is_well_formed_token(token: str) -> bool:
    return len(token) == TOKEN_LENGTH and all(ch in _TOKEN_ALPHABET for ch in token)


def utcnow() -> datetime:
    return datetime.now(tz=UTC)
