"""Pydantic models for exchange request payloads."""

from pydantic import BaseModel, ConfigDict, Field

from contact_exchange.domain.exchange import SharingCategory


class InitiateRequest(BaseModel):
    """Start of an exchange attempt."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    sharing_category: SharingCategory = Field(
        default=SharingCategory.ALL, alias="sharingCategory"
    )
    profile_id: str | None = Field(default=None, alias="profileId")


class HitRequest(BaseModel):
    """A single bump reported by a device."""

    model_config = ConfigDict(populate_by_name=True)

    session: str = Field(min_length=1)
    ts: int
    mag: float
    vector: str | None = None
    sharing_category: SharingCategory = Field(
        default=SharingCategory.ALL, alias="sharingCategory"
    )
    hit_number: int = Field(default=1, alias="hitNumber", ge=1)


class ScanRequest(BaseModel):
    """A device resolving a scanned QR token."""

    model_config = ConfigDict(populate_by_name=True)

    session: str = Field(min_length=1)
    sharing_category: SharingCategory = Field(
        default=SharingCategory.ALL, alias="sharingCategory"
    )
    profile_id: str | None = Field(default=None, alias="profileId")
