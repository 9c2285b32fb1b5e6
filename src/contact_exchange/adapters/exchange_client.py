"""HTTP client for the exchange API, used by the device orchestrator."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from contact_exchange.domain.errors import ExchangeTransportError, error_for_code
from contact_exchange.domain.exchange import HitResult, SharingCategory, StatusResult

logger = logging.getLogger(__name__)


class ExchangeApi(Protocol):
    """Interface for exchange server interactions."""

    async def initiate(
        self,
        session_id: str,
        sharing_category: SharingCategory,
        profile_id: str | None = None,
    ) -> str:
        """Create a session and return its token."""

    async def submit_hit(  # noqa: PLR0913
        self,
        session_id: str,
        ts: int,
        magnitude: float,
        hit_number: int,
        sharing_category: SharingCategory,
        vector_hash: str | None = None,
    ) -> HitResult:
        """Submit a bump."""

    async def status(self, session_id: str) -> StatusResult:
        """Read the session's match state."""

    async def pair(self, token: str, session_id: str) -> dict[str, object]:
        """Fetch the counterpart profile for a match."""


@dataclass
class HttpxExchangeClient(ExchangeApi):
    """HTTPX-backed exchange API client."""

    base_url: str
    http_client: httpx.AsyncClient
    timeout: float = 10

    @classmethod
    def create(cls, base_url: str) -> "HttpxExchangeClient":
        """Create an exchange client with a managed httpx session."""
        return cls(base_url=base_url.rstrip("/"), http_client=httpx.AsyncClient())

    async def initiate(
        self,
        session_id: str,
        sharing_category: SharingCategory,
        profile_id: str | None = None,
    ) -> str:
        payload: dict[str, object] = {
            "sessionId": session_id,
            "sharingCategory": sharing_category.value,
        }
        if profile_id is not None:
            payload["profileId"] = profile_id
        data = await self._request("POST", "/exchange/initiate", json=payload)
        return str(data["token"])

    async def submit_hit(  # noqa: PLR0913
        self,
        session_id: str,
        ts: int,
        magnitude: float,
        hit_number: int,
        sharing_category: SharingCategory,
        vector_hash: str | None = None,
    ) -> HitResult:
        payload: dict[str, object] = {
            "session": session_id,
            "ts": ts,
            "mag": magnitude,
            "hitNumber": hit_number,
            "sharingCategory": sharing_category.value,
        }
        if vector_hash is not None:
            payload["vector"] = vector_hash
        data = await self._request("POST", "/exchange/hit", json=payload)
        if not data.get("matched"):
            return HitResult(matched=False)
        return HitResult(matched=True, token=data.get("token"), you_are=data.get("youAre"))

    async def status(self, session_id: str) -> StatusResult:
        data = await self._request("GET", f"/exchange/status/{session_id}")
        match = data.get("match") or {}
        return StatusResult(
            has_match=bool(data.get("hasMatch")),
            scan_status=data.get("scanStatus"),
            token=match.get("token"),
            you_are=match.get("youAre"),
        )

    async def pair(self, token: str, session_id: str) -> dict[str, object]:
        data = await self._request(
            "GET", f"/exchange/pair/{token}", params={"session": session_id}
        )
        return data["profile"]

    async def scan(
        self,
        token: str,
        session_id: str,
        sharing_category: SharingCategory = SharingCategory.ALL,
        profile_id: str | None = None,
    ) -> HitResult:
        """Claim a scanned QR token for this device's session."""
        payload: dict[str, object] = {
            "session": session_id,
            "sharingCategory": sharing_category.value,
        }
        if profile_id is not None:
            payload["profileId"] = profile_id
        data = await self._request("POST", f"/exchange/scan/{token}", json=payload)
        return HitResult(matched=True, token=data.get("token"), you_are=data.get("youAre"))

    async def preview(self, token: str) -> dict[str, object]:
        """Fetch the limited profile behind a scanned token."""
        data = await self._request("GET", f"/exchange/preview/{token}")
        return data["profile"]

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _request(self, method: str, path: str, **kwargs: object) -> dict:
        try:
            response = await self.http_client.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except httpx.HTTPError as exc:
            raise ExchangeTransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 500:
            logger.warning(
                "Exchange server error",
                extra={"path": path, "status_code": response.status_code},
            )
            raise ExchangeTransportError(
                f"{method} {path} failed with status {response.status_code}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ExchangeTransportError(f"{method} {path} returned invalid JSON") from exc
        if response.is_error or not data.get("success", False):
            message = data.get("message") or f"Request failed ({response.status_code})"
            raise error_for_code(data.get("code"), message)
        return data
