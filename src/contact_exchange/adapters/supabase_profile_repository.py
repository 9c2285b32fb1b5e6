"""Supabase-backed profile lookup."""

from dataclasses import dataclass

from supabase import Client

from contact_exchange.domain.profiles import Profile
from contact_exchange.services.profiles import ProfileRepository


@dataclass
class SupabaseProfileRepository(ProfileRepository):
    """Reads profile documents from the profiles table."""

    client: Client

    def get_profile(self, profile_id: str) -> Profile | None:
        """Return a profile by id, if present."""
        response = (
            self.client.table("profiles")
            .select("id, profile_json")
            .eq("id", profile_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        data = row.get("profile_json") or {}
        return Profile(profile_id=str(row["id"]), data=dict(data))
