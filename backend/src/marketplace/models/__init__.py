"""SQLAlchemy ORM models."""

from marketplace.models.auction import Auction, AuctionStatus
from marketplace.models.base import TimestampMixin
from marketplace.models.bid import Bid
from marketplace.models.user import User
from marketplace.models.wallet import LedgerTransaction, TransactionKind, Wallet

__all__ = [
    "TimestampMixin",
    "User",
    "Wallet",
    "LedgerTransaction",
    "TransactionKind",
    "Auction",
    "AuctionStatus",
    "Bid",
]
