"""Dependency container wiring for the exchange service."""

from dataclasses import dataclass

from supabase import create_client

from contact_exchange.adapters.supabase_exchange_repository import (
    SupabaseExchangeRepository,
)
from contact_exchange.adapters.supabase_profile_repository import (
    SupabaseProfileRepository,
)
from contact_exchange.config import Settings
from contact_exchange.services.correlator import HitCorrelator
from contact_exchange.services.exchange_store import ExchangeRepository
from contact_exchange.services.profiles import ProfileRepository, ProfileService
from contact_exchange.services.qr_pairing import QrPairingService
from contact_exchange.services.rate_limit import InMemoryRateLimiter
from contact_exchange.services.sessions import SessionService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    session_service: SessionService
    qr_pairing_service: QrPairingService


def build_services(
    settings: Settings,
    exchange_repository: ExchangeRepository,
    profile_repository: ProfileRepository,
) -> AppContainer:
    """Wire services around the given repositories."""
    profile_service = ProfileService(profile_repository)
    correlator = HitCorrelator(
        repository=exchange_repository,
        coincidence_window_ms=settings.coincidence_window_ms,
        min_magnitude=settings.min_hit_magnitude,
        hit_retention_seconds=settings.hit_retention_seconds,
    )
    session_service = SessionService(
        repository=exchange_repository,
        correlator=correlator,
        profile_service=profile_service,
        rate_limiter=InMemoryRateLimiter(
            limit=settings.hit_rate_limit,
            window_seconds=settings.hit_rate_window_seconds,
        ),
        session_ttl_seconds=settings.session_ttl_seconds,
        max_clock_skew_ms=settings.max_clock_skew_ms,
    )
    qr_pairing_service = QrPairingService(
        repository=exchange_repository,
        session_service=session_service,
        profile_service=profile_service,
        pending_auth_ttl_seconds=settings.pending_auth_ttl_seconds,
    )
    return AppContainer(
        settings=settings,
        session_service=session_service,
        qr_pairing_service=qr_pairing_service,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    return build_services(
        resolved_settings,
        exchange_repository=SupabaseExchangeRepository(supabase_client),
        profile_repository=SupabaseProfileRepository(supabase_client),
    )
