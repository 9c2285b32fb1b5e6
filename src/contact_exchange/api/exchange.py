"""Exchange session endpoints consumed by the device orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import unquote

from fastapi import APIRouter, Query, Request

from contact_exchange.api.exchange_models import (
    HitRequest,
    InitiateRequest,
    ScanRequest,
)
from contact_exchange.domain.exchange import HitLocation

if TYPE_CHECKING:
    from contact_exchange.containers import AppContainer
    from contact_exchange.domain.exchange import StatusResult

router = APIRouter(prefix="/exchange", tags=["exchange"])


def _container(request: Request) -> AppContainer:
    return request.app.state.container


def _client_location(request: Request) -> HitLocation | None:
    """Derive a coarse hit location from the caller's address and edge geo headers."""
    forwarded = request.headers.get("x-forwarded-for", "")
    address = forwarded.split(",")[0].strip()
    if not address and request.client is not None:
        address = request.client.host
    if not address:
        return None
    return HitLocation.from_address(
        address,
        city=unquote(request.headers.get("x-vercel-ip-city", "")),
        region=request.headers.get("x-vercel-ip-country-region"),
        country=request.headers.get("x-vercel-ip-country"),
    )


@router.post("/initiate")
async def initiate(payload: InitiateRequest, request: Request) -> dict[str, object]:
    """Create a session and return its token for QR display."""
    session = _container(request).session_service.initiate(
        payload.session_id, payload.sharing_category, payload.profile_id
    )
    return {"success": True, "token": session.token}


@router.post("/hit")
async def hit(payload: HitRequest, request: Request) -> dict[str, object]:
    """Record a bump and report an instant match if one formed."""
    result = _container(request).session_service.submit_hit(
        session_id=payload.session,
        ts=payload.ts,
        magnitude=payload.mag,
        hit_number=payload.hit_number,
        sharing_category=payload.sharing_category,
        vector_hash=payload.vector,
        location=_client_location(request),
    )
    body: dict[str, object] = {"success": True, "matched": result.matched}
    if result.matched:
        body["token"] = result.token
        body["youAre"] = result.you_are
    return body


@router.get("/status/{session_id}")
async def status(session_id: str, request: Request) -> dict[str, object]:
    """Polling read of a session's match state."""
    result = _container(request).session_service.status(session_id)
    return _status_body(result)


@router.post("/scan/{token}")
async def scan(token: str, payload: ScanRequest, request: Request) -> dict[str, object]:
    """Pair the scanning device's session with a QR token."""
    result = _container(request).qr_pairing_service.resolve(
        token,
        scanner_session_id=payload.session,
        sharing_category=payload.sharing_category,
        profile_id=payload.profile_id,
    )
    return {
        "success": True,
        "matched": True,
        "token": result.token,
        "youAre": result.you_are,
    }


@router.get("/preview/{token}")
async def preview(token: str, request: Request) -> dict[str, object]:
    """Limited profile for a scanner who still has to sign in."""
    result = _container(request).qr_pairing_service.preview(token)
    return {
        "success": True,
        "profile": result.profile.data,
        "sharingCategory": result.sharing_category.value,
    }


@router.get("/pair/{token}")
async def pair(
    token: str, request: Request, session: str = Query(min_length=1)
) -> dict[str, object]:
    """Release the counterpart profile for a matched session."""
    result = _container(request).session_service.resolve_pair(token, session)
    return {
        "success": True,
        "profile": result.profile.data,
        "youAre": result.you_are,
        "matchedAt": int(result.matched_at.timestamp() * 1000),
    }


def _status_body(result: StatusResult) -> dict[str, object]:
    body: dict[str, object] = {"success": True, "hasMatch": result.has_match}
    if result.scan_status is not None:
        body["scanStatus"] = result.scan_status
    if result.has_match:
        body["match"] = {"token": result.token, "youAre": result.you_are}
    return body
