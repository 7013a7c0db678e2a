"""Auction model for listed items."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, List

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.core.database import Base
from marketplace.models.base import utcnow

if TYPE_CHECKING:
    from marketplace.models.bid import Bid
    from marketplace.models.user import User


class AuctionStatus:
    """Auction lifecycle states. ENDED is terminal."""

    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


CATEGORIES = ("electronics", "collectibles", "fashion", "home", "art", "other")
CONDITIONS = ("new", "like-new", "good", "fair", "poor")


class Auction(Base):
    """Auction model representing one listed item and its bidding state."""

    __tablename__ = "auctions"

    auction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.user_id"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    condition: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    media_kind: Mapped[str | None] = mapped_column(
        String(10),
        nullable=True,
    )
    media_refs: Mapped[list[Any]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    starting_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    current_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    end_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AuctionStatus.ACTIVE,
    )
    winner_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.user_id"),
        nullable=True,
    )
    bid_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Relationships
    seller: Mapped["User"] = relationship(
        "User", back_populates="auctions", foreign_keys=[seller_id]
    )
    bids: Mapped[List["Bid"]] = relationship("Bid", back_populates="auction")

    __table_args__ = (
        CheckConstraint("starting_price > 0", name="chk_auction_starting_price_positive"),
        CheckConstraint("current_price >= starting_price", name="chk_auction_price_floor"),
        Index("idx_auctions_status_end", "status", "end_time"),
        Index("idx_auctions_seller_created", "seller_id", "created_at"),
        Index("idx_auctions_category", "category"),
    )
