"""Bid ledger: the ordered, immutable set of bids per auction."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.models.auction import Auction
from marketplace.models.base import utcnow
from marketplace.models.bid import Bid

# Bid precedence: higher amount first, then the earlier bid
BID_PRECEDENCE = (Bid.amount.desc(), Bid.created_at.asc(), Bid.sequence.asc())


def bid_precedence_key(bid: Bid) -> tuple:
    """Sort key matching BID_PRECEDENCE for bids already in memory."""
    return (-bid.amount, bid.created_at, bid.sequence)


class BidLedger:
    """Appends bids and answers ordering questions about them."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        auction: Auction,
        user_id: UUID,
        amount: Decimal,
        hold_amount: Decimal,
        bid_id: UUID | None = None,
    ) -> Bid:
        """Append a bid. Validation is the caller's job."""
        bid = Bid(
            auction_id=auction.auction_id,
            user_id=user_id,
            amount=amount,
            hold_amount=hold_amount,
            sequence=auction.bid_count + 1,
            created_at=utcnow(),
        )
        if bid_id is not None:
            bid.bid_id = bid_id
        self.db.add(bid)
        await self.db.flush()
        return bid

    async def highest_bid(self, auction_id: UUID) -> Bid | None:
        """Get the leading bid, or None if the auction has no bids."""
        result = await self.db.execute(
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(*BID_PRECEDENCE)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def all_except(self, auction_id: UUID, winner_id: UUID | None) -> list[Bid]:
        """Get every bid not placed by ``winner_id``, in insertion order."""
        query = select(Bid).where(Bid.auction_id == auction_id)
        if winner_id is not None:
            query = query.where(Bid.user_id != winner_id)
        result = await self.db.execute(query.order_by(Bid.sequence.asc()))
        return list(result.scalars().all())

    async def get_auction_bids(self, auction_id: UUID) -> list[Bid]:
        """Get an auction's bids, leading bid first."""
        result = await self.db.execute(
            select(Bid)
            .options(selectinload(Bid.user))
            .where(Bid.auction_id == auction_id)
            .order_by(*BID_PRECEDENCE)
        )
        return list(result.scalars().all())

    async def get_user_bids(
        self, user_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Bid], int]:
        """Get a user's bids with their auctions, newest first.

        Returns:
            Tuple of (bids list, total count)
        """
        count_result = await self.db.execute(
            select(func.count(Bid.bid_id)).where(Bid.user_id == user_id)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(Bid)
            .options(selectinload(Bid.auction))
            .where(Bid.user_id == user_id)
            .order_by(Bid.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total
