"""Supabase-backed exchange repository."""

from dataclasses import dataclass
from datetime import datetime

from supabase import Client

from contact_exchange.domain.exchange import (
    UNMATCHED_STATUSES,
    ExchangeSession,
    HitLocation,
    HitRecord,
    MatchRecord,
    SessionStatus,
    SharingCategory,
)
from contact_exchange.services.exchange_store import ExchangeRepository

_SESSION_COLUMNS = (
    "session_id, sharing_category, token, status, created_at, expires_at, "
    "profile_id, match_token"
)
_HIT_COLUMNS = (
    "session_id, ts, magnitude, vector_hash, hit_number, sharing_category, "
    "received_at, location"
)
_MATCH_COLUMNS = "token, session_a, session_b, matched_at, source"


@dataclass
class SupabaseExchangeRepository(ExchangeRepository):
    """Supabase implementation for exchange sessions, hits, and matches."""

    client: Client

    def create_session(self, session: ExchangeSession) -> ExchangeSession:
        """Insert a session row and return it."""
        response = (
            self.client.table("exchange_sessions")
            .insert(
                {
                    "session_id": session.session_id,
                    "sharing_category": session.sharing_category.value,
                    "token": session.token,
                    "status": session.status.value,
                    "created_at": session.created_at.isoformat(),
                    "expires_at": session.expires_at.isoformat(),
                    "profile_id": session.profile_id,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create exchange session")
        return _session_from_row(response.data[0])

    def get_session(self, session_id: str) -> ExchangeSession | None:
        """Return a session by id, if present."""
        response = (
            self.client.table("exchange_sessions")
            .select(_SESSION_COLUMNS)
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _session_from_row(response.data[0])

    def get_session_by_token(self, token: str) -> ExchangeSession | None:
        """Return the session that owns a token, if present."""
        response = (
            self.client.table("exchange_sessions")
            .select(_SESSION_COLUMNS)
            .eq("token", token)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _session_from_row(response.data[0])

    def mark_pending_auth(self, session_id: str, expires_at: datetime) -> bool:
        """Conditionally move an unmatched session to pending_auth."""
        response = (
            self.client.table("exchange_sessions")
            .update(
                {
                    "status": SessionStatus.PENDING_AUTH.value,
                    "expires_at": expires_at.isoformat(),
                }
            )
            .eq("session_id", session_id)
            .in_("status", [status.value for status in UNMATCHED_STATUSES])
            .execute()
        )
        return bool(response.data)

    def add_hit(self, hit: HitRecord) -> None:
        """Insert a hit row."""
        self.client.table("exchange_hits").insert(
            {
                "session_id": hit.session_id,
                "ts": hit.ts,
                "magnitude": hit.magnitude,
                "vector_hash": hit.vector_hash,
                "hit_number": hit.hit_number,
                "sharing_category": hit.sharing_category.value,
                "received_at": hit.received_at.isoformat(),
                "location": _location_to_json(hit.location),
            }
        ).execute()

    def list_hits_since(self, since: datetime) -> list[HitRecord]:
        """Return hits received at or after the given time."""
        response = (
            self.client.table("exchange_hits")
            .select(_HIT_COLUMNS)
            .gte("received_at", since.isoformat())
            .order("received_at", desc=True)
            .execute()
        )
        return [_hit_from_row(row) for row in response.data or []]

    def delete_hits_before(self, cutoff: datetime) -> int:
        """Delete hit rows received before the cutoff."""
        response = (
            self.client.table("exchange_hits")
            .delete()
            .lt("received_at", cutoff.isoformat())
            .execute()
        )
        return len(response.data or [])

    def bind_match(self, match: MatchRecord) -> bool:
        """Bind both sessions through the bind_exchange_match database function."""
        response = self.client.rpc(
            "bind_exchange_match",
            {
                "p_token": match.token,
                "p_session_a": match.session_a,
                "p_session_b": match.session_b,
                "p_matched_at": match.matched_at.isoformat(),
                "p_source": match.source,
            },
        ).execute()
        return response.data is True

    def get_match(self, token: str) -> MatchRecord | None:
        """Return a match by token, if present."""
        response = (
            self.client.table("exchange_matches")
            .select(_MATCH_COLUMNS)
            .eq("token", token)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _match_from_row(response.data[0])

    def get_match_for_session(self, session_id: str) -> MatchRecord | None:
        """Return the match a session participates in, if any."""
        session = self.get_session(session_id)
        if session is None or session.match_token is None:
            return None
        return self.get_match(session.match_token)


def _session_from_row(row: dict[str, object]) -> ExchangeSession:
    return ExchangeSession(
        session_id=str(row["session_id"]),
        sharing_category=SharingCategory(row["sharing_category"]),
        token=str(row["token"]),
        status=SessionStatus(row["status"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        expires_at=datetime.fromisoformat(str(row["expires_at"])),
        profile_id=str(row["profile_id"]) if row.get("profile_id") else None,
        match_token=str(row["match_token"]) if row.get("match_token") else None,
    )


def _hit_from_row(row: dict[str, object]) -> HitRecord:
    return HitRecord(
        session_id=str(row["session_id"]),
        ts=int(row["ts"]),
        magnitude=float(row["magnitude"]),
        hit_number=int(row["hit_number"]),
        sharing_category=SharingCategory(row["sharing_category"]),
        received_at=datetime.fromisoformat(str(row["received_at"])),
        vector_hash=str(row["vector_hash"]) if row.get("vector_hash") else None,
        location=_location_from_json(row.get("location")),
    )


def _match_from_row(row: dict[str, object]) -> MatchRecord:
    return MatchRecord(
        token=str(row["token"]),
        session_a=str(row["session_a"]),
        session_b=str(row["session_b"]),
        matched_at=datetime.fromisoformat(str(row["matched_at"])),
        source=str(row.get("source") or "bump"),
    )


def _location_to_json(location: HitLocation | None) -> dict[str, object] | None:
    if location is None:
        return None
    return {
        "network": location.network,
        "city": location.city,
        "region": location.region,
        "country": location.country,
    }


def _location_from_json(payload: object) -> HitLocation | None:
    if not isinstance(payload, dict) or not payload.get("network"):
        return None
    return HitLocation(
        network=str(payload["network"]),
        city=payload.get("city"),
        region=payload.get("region"),
        country=payload.get("country"),
    )
