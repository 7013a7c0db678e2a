"""Bid model for user bidding records."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.core.database import Base
from marketplace.models.base import utcnow

if TYPE_CHECKING:
    from marketplace.models.auction import Auction
    from marketplace.models.user import User


class Bid(Base):
    """An immutable offer by one user against one auction."""

    __tablename__ = "bids"

    bid_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    auction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("auctions.auction_id"),
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
    hold_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )

    # Relationships
    auction: Mapped["Auction"] = relationship("Auction", back_populates="bids")
    user: Mapped["User"] = relationship("User", back_populates="bids")

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_bid_amount_positive"),
        CheckConstraint("hold_amount >= 0", name="chk_bid_hold_non_negative"),
        Index("uq_bids_auction_sequence", "auction_id", "sequence", unique=True),
        Index("idx_bids_auction_amount", "auction_id", "amount"),
        Index("idx_bids_user_created", "user_id", "created_at"),
    )
