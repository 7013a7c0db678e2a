"""Wallet and ledger transaction models."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.core.database import Base
from marketplace.models.base import TimestampMixin, utcnow

if TYPE_CHECKING:
    from marketplace.models.user import User


class TransactionKind:
    """Kinds of ledger entries."""

    DEPOSIT = "DEPOSIT"
    BID_HOLD = "BID_HOLD"
    REFUND = "REFUND"

    ALL = (DEPOSIT, BID_HOLD, REFUND)


class Wallet(Base, TimestampMixin):
    """A user's available (unreserved) funds."""

    __tablename__ = "wallets"

    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.user_id"),
        unique=True,
        nullable=False,
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="wallet")
    transactions: Mapped[List["LedgerTransaction"]] = relationship(
        "LedgerTransaction", back_populates="wallet"
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="chk_wallet_balance_non_negative"),
    )


class LedgerTransaction(Base):
    """Append-only wallet movement. The wallet balance is the sum of these."""

    __tablename__ = "ledger_transactions"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("wallets.wallet_id"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.user_id"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        default="",
    )
    auction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("auctions.auction_id"),
        nullable=True,
    )
    # Plain reference: the hold is written before its bid row exists
    bid_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )

    # Relationships
    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount <> 0", name="chk_ledger_amount_non_zero"),
        # A bid is held once and refunded at most once
        UniqueConstraint("bid_id", "kind", name="uq_ledger_bid_kind"),
        Index("idx_ledger_user_created", "user_id", "created_at"),
        Index("idx_ledger_auction", "auction_id"),
    )
