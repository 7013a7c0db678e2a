"""User model for member data."""

import uuid
from typing import TYPE_CHECKING, List

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.core.database import Base
from marketplace.models.base import TimestampMixin

if TYPE_CHECKING:
    from marketplace.models.auction import Auction
    from marketplace.models.bid import Bid
    from marketplace.models.wallet import Wallet


class User(Base, TimestampMixin):
    """User model representing a member."""

    __tablename__ = "users"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    username: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
    )

    # Relationships
    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="user", uselist=False)
    auctions: Mapped[List["Auction"]] = relationship(
        "Auction", back_populates="seller", foreign_keys="Auction.seller_id"
    )
    bids: Mapped[List["Bid"]] = relationship("Bid", back_populates="user")

    __table_args__ = (
        Index("idx_users_status", "status"),
    )
