"""QR pairing: attach a scanning device to an existing session's token."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from contact_exchange.domain.errors import (
    InvalidTokenError,
    SessionExpiredError,
    TokenAlreadyUsedError,
)
from contact_exchange.domain.exchange import (
    ExchangeSession,
    MatchRecord,
    SessionStatus,
    SharingCategory,
)
from contact_exchange.domain.profiles import Profile
from contact_exchange.services.exchange_store import (
    ExchangeRepository,
    is_well_formed_token,
    utcnow,
)
from contact_exchange.services.profiles import ProfileService
from contact_exchange.services.sessions import SessionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanResult:
    """Outcome of a QR scan for the scanning device."""

    token: str
    you_are: str
    match: MatchRecord


@dataclass(frozen=True)
class PreviewResult:
    """Limited profile shown before the scanner signs in."""

    profile: Profile
    sharing_category: SharingCategory


@dataclass
class QrPairingService:
    """Resolves QR-presented tokens into matches."""

    repository: ExchangeRepository
    session_service: SessionService
    profile_service: ProfileService
    pending_auth_ttl_seconds: int = 300
    clock: Callable[[], datetime] = field(default=utcnow)

    def preview(self, token: str) -> PreviewResult:
        """Mark the token's session pending_auth and return a limited profile.

        Called when the scanner must sign in before pairing; the presenting
        device sees pending_auth on its next poll and extends its timeout.
        """
        owner = self._open_owner(token)
        profile = self.profile_service.preview(owner)
        now = self.clock()
        expires_at = max(
            owner.expires_at, now + timedelta(seconds=self.pending_auth_ttl_seconds)
        )
        if not self.repository.mark_pending_auth(owner.session_id, expires_at):
            raise TokenAlreadyUsedError(
                "This QR code was already scanned by someone else"
            )
        logger.info(
            "QR preview accessed, session pending auth",
            extra={"session_id": owner.session_id},
        )
        return PreviewResult(
            profile=profile,
            sharing_category=owner.sharing_category,
        )

    def resolve(
        self,
        token: str,
        scanner_session_id: str,
        sharing_category: SharingCategory = SharingCategory.ALL,
        profile_id: str | None = None,
    ) -> ScanResult:
        """Pair the scanner's session with the token's session."""
        owner = self._owner(token)
        if owner.session_id == scanner_session_id:
            raise InvalidTokenError("Cannot pair a session with its own code")

        existing = self.repository.get_match(token)
        if existing is not None:
            return self._existing_result(existing, scanner_session_id)
        if owner.effective_status(self.clock()) is SessionStatus.EXPIRED:
            raise SessionExpiredError("Exchange timed out")
        if owner.status is SessionStatus.MATCHED:
            raise TokenAlreadyUsedError(
                "This QR code was already scanned by someone else"
            )

        scanner = self.session_service.initiate(
            scanner_session_id, sharing_category, profile_id
        )
        if scanner.status is SessionStatus.MATCHED:
            raise InvalidTokenError("Scanning session is already matched")

        match = MatchRecord(
            token=owner.token,
            session_a=owner.session_id,
            session_b=scanner.session_id,
            matched_at=self.clock(),
            source="qr",
        )
        if self.repository.bind_match(match):
            logger.info(
                "QR match created",
                extra={
                    "token": match.token,
                    "session_a": match.session_a,
                    "session_b": match.session_b,
                },
            )
            return ScanResult(token=match.token, you_are="B", match=match)

        current = self.repository.get_match(token)
        if current is None:
            raise TokenAlreadyUsedError(
                "This QR code was already scanned by someone else"
            )
        return self._existing_result(current, scanner_session_id)

    def _owner(self, token: str) -> ExchangeSession:
        if not is_well_formed_token(token):
            raise InvalidTokenError("Malformed token")
        owner = self.repository.get_session_by_token(token)
        if owner is None:
            raise InvalidTokenError("Invalid or expired token")
        return owner

    def _open_owner(self, token: str) -> ExchangeSession:
        owner = self._owner(token)
        status = owner.effective_status(self.clock())
        if status is SessionStatus.EXPIRED:
            raise SessionExpiredError("Exchange timed out")
        if status is SessionStatus.MATCHED:
            raise TokenAlreadyUsedError(
                "This QR code was already scanned by someone else"
            )
        return owner

    @staticmethod
    def _existing_result(match: MatchRecord, scanner_session_id: str) -> ScanResult:
        if not match.includes(scanner_session_id):
            raise TokenAlreadyUsedError(
                "This QR code was already scanned by someone else"
            )
        return ScanResult(
            token=match.token,
            you_are=match.role_for(scanner_session_id),
            match=match,
        )
