"""Profile lookup for matched counterparts."""

import logging
from dataclasses import dataclass
from typing import Protocol

from contact_exchange.domain.errors import ProfileNotFoundError
from contact_exchange.domain.exchange import ExchangeSession
from contact_exchange.domain.profiles import (
    Profile,
    filter_profile,
    preview_profile,
    release_category,
)

logger = logging.getLogger(__name__)


class ProfileRepository(Protocol):
    """Read-only access to stored profiles."""

    def get_profile(self, profile_id: str) -> Profile | None:
        """Return a profile by id, if present."""


@dataclass
class ProfileService:
    """Resolves the profile a session releases to its counterpart."""

    repository: ProfileRepository

    def released_profile(self, session: ExchangeSession) -> Profile:
        """Return the session owner's profile filtered by their category."""
        profile = self._load(session)
        return filter_profile(profile, release_category(session.sharing_category))

    def preview(self, session: ExchangeSession) -> Profile:
        """Return the limited preview shown to a signed-out scanner."""
        profile = self._load(session)
        return preview_profile(profile, release_category(session.sharing_category))

    def _load(self, session: ExchangeSession) -> Profile:
        if session.profile_id is None:
            raise ProfileNotFoundError("Session has no profile attached")
        profile = self.repository.get_profile(session.profile_id)
        if profile is None:
            logger.warning(
                "Profile missing for session",
                extra={
                    "session_id": session.session_id,
                    "profile_id": session.profile_id,
                },
            )
            raise ProfileNotFoundError("Profile not found")
        return profile
