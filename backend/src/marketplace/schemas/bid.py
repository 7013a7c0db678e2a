"""Bid schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class BidCreate(BaseModel):
    """Schema for bid creation request."""

    auction_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class BidResponse(BaseModel):
    """Schema for bid response."""

    bid_id: UUID
    auction_id: UUID
    user_id: UUID
    amount: Decimal
    hold_amount: Decimal
    sequence: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserBidResponse(BidResponse):
    """A caller's bid together with the auction it was placed on."""

    auction_title: str
    auction_status: str
    auction_current_price: Decimal
    is_leading: bool


class UserBidListResponse(BaseModel):
    """Schema for the caller's bid history."""

    bids: list[UserBidResponse]
    total: int
