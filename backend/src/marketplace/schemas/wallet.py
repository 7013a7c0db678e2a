"""Wallet and ledger schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class DepositCreate(BaseModel):
    """Schema for a wallet deposit request."""

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class WalletResponse(BaseModel):
    """Schema for wallet balance response."""

    wallet_id: UUID
    user_id: UUID
    balance: Decimal

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    """Schema for a single ledger entry."""

    transaction_id: UUID
    amount: Decimal
    kind: str
    description: str
    auction_id: UUID | None
    bid_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    """Schema for ledger history response."""

    transactions: list[TransactionResponse]
    total: int
