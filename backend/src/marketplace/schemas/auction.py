"""Auction schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field


class ImageMedia(BaseModel):
    """One or more uploaded images."""

    kind: Literal["image"] = "image"
    refs: list[str] = Field(default_factory=list, max_length=10)


class VideoMedia(BaseModel):
    """A single uploaded video."""

    kind: Literal["video"] = "video"
    ref: str = Field(..., min_length=1)


Media = Annotated[Union[ImageMedia, VideoMedia], Field(discriminator="kind")]


class DurationSpec(BaseModel):
    """Auction length as a value and a unit (hours, days or weeks)."""

    value: int
    unit: str = "days"


class AuctionCreate(BaseModel):
    """Schema for listing creation request."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    starting_price: Decimal = Field(..., max_digits=12, decimal_places=2)
    duration: DurationSpec
    category: str
    condition: str
    media: Media | None = None


class VerificationRequest(BaseModel):
    """Schema for a content verification request."""

    media: Media
    description: str = ""


class VerificationResponse(BaseModel):
    """Schema for a content verification result."""

    approved: bool
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class AuctionResponse(BaseModel):
    """Schema for auction response."""

    auction_id: UUID
    seller_id: UUID
    title: str
    description: str
    category: str
    condition: str
    media_kind: str | None
    media_refs: list[str]
    verified: bool
    starting_price: Decimal
    current_price: Decimal
    end_time: datetime
    status: str
    winner_id: UUID | None
    bid_count: int
    created_at: datetime
    ended_at: datetime | None

    model_config = {"from_attributes": True}


class AuctionBidEntry(BaseModel):
    """A bid as shown on an auction page."""

    bid_id: UUID
    user_id: UUID
    username: str | None = None
    amount: Decimal
    created_at: datetime


class AuctionDetailResponse(AuctionResponse):
    """Schema for auction detail response with seller and bids."""

    seller_name: str | None = None
    bids: list[AuctionBidEntry] = Field(default_factory=list)


class AuctionListResponse(BaseModel):
    """Schema for auction list response."""

    auctions: list[AuctionResponse]
    total: int


class AuctionSnapshot(BaseModel):
    """Lightweight auction state for clients polling for price changes."""

    auction_id: UUID
    current_price: Decimal
    bid_count: int
    status: str
    end_time: datetime
    winner_id: UUID | None = None
    version: int = 0


class SettlementResponse(BaseModel):
    """Schema for settlement result."""

    auction_id: UUID
    winner_id: UUID | None
    final_price: Decimal
    refund_count: int
    refunded_total: Decimal
