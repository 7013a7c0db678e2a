"""Settlement service for closing auctions.

An auction settles exactly once: either the seller closes it early or the
background sweep closes it after its end time. Settlement picks the leading
bidder as winner, moves the auction to ENDED and refunds the hold of every bid
placed by anyone else, all in one transaction. The winner's holds stay in
place as their payment.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.auction import Auction, AuctionStatus
from marketplace.models.base import utcnow
from marketplace.services.auction_service import AuctionService
from marketplace.services.bid_ledger import BidLedger
from marketplace.services.errors import (
    AlreadyEnded,
    Forbidden,
    InvalidInput,
    MarketplaceError,
    NotFound,
    StorageFailure,
    Unauthenticated,
)
from marketplace.services.ledger_service import LedgerService
from marketplace.services.redis_service import RedisService

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    """Outcome of one settlement."""

    auction_id: UUID
    winner_id: UUID | None
    final_price: Decimal
    refund_count: int
    refunded_total: Decimal


class SettlementService:
    """Service class for auction settlement operations."""

    def __init__(self, db: AsyncSession, redis_service: RedisService):
        self.db = db
        self.redis_service = redis_service
        self.auctions = AuctionService(db, redis_service)
        self.ledger = LedgerService(db)
        self.bid_ledger = BidLedger(db)

    async def settle(self, caller_id: UUID | None, auction_id: UUID) -> SettlementResult:
        """End an auction early on behalf of its seller.

        Raises:
            Unauthenticated: no caller
            NotFound: unknown auction
            Forbidden: caller is not the seller
            AlreadyEnded: auction already settled
        """
        if caller_id is None:
            raise Unauthenticated("You must be logged in to end an auction")

        def authorize(auction: Auction) -> None:
            if auction.seller_id != caller_id:
                raise Forbidden("You can only end your own auctions")

        return await self._settle(auction_id, authorize, trigger="seller")

    async def settle_expired(self, auction_id: UUID) -> SettlementResult:
        """End an auction whose end time has passed.

        Raises:
            NotFound: unknown auction
            AlreadyEnded: auction already settled
            InvalidInput: auction is still running
        """

        def authorize(auction: Auction) -> None:
            if auction.status == AuctionStatus.ACTIVE and utcnow() < auction.end_time:
                raise InvalidInput("Auction has not reached its end time")

        return await self._settle(auction_id, authorize, trigger="expired")

    async def _settle(self, auction_id: UUID, authorize, trigger: str) -> SettlementResult:
        async with self.redis_service.auction_lock(str(auction_id)):
            try:
                auction = await self.auctions.get_for_update(auction_id)
                if auction is None:
                    raise NotFound("Product not found")
                authorize(auction)
                if auction.status != AuctionStatus.ACTIVE:
                    raise AlreadyEnded()

                result = await self._close_and_refund(auction)
                await self.db.commit()
            except MarketplaceError:
                await self.db.rollback()
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Settlement storage failure for auction {auction_id}: {e}")
                raise StorageFailure() from e

            await self.auctions.publish_snapshot(auction)

        logger.info(
            f"Settled auction {auction_id} ({trigger}): winner={result.winner_id}, "
            f"final_price={result.final_price}, refunds={result.refund_count}, "
            f"refunded_total={result.refunded_total}"
        )
        return result

    async def _close_and_refund(self, auction: Auction) -> SettlementResult:
        leading = await self.bid_ledger.highest_bid(auction.auction_id)
        winner_id = leading.user_id if leading is not None else None

        await self.auctions.close(auction, winner_id)

        refunded_total = Decimal("0.00")
        losing_bids = await self.bid_ledger.all_except(auction.auction_id, winner_id)
        for bid in losing_bids:
            await self.ledger.refund(bid.user_id, bid.hold_amount, auction, bid)
            refunded_total += bid.hold_amount

        return SettlementResult(
            auction_id=auction.auction_id,
            winner_id=winner_id,
            final_price=auction.current_price,
            refund_count=len(losing_bids),
            refunded_total=refunded_total,
        )

    async def get_auctions_to_settle(self) -> list[Auction]:
        """Get ACTIVE auctions whose end time has passed."""
        now = utcnow()
        result = await self.db.execute(
            select(Auction)
            .where(
                and_(
                    Auction.status == AuctionStatus.ACTIVE,
                    Auction.end_time <= now,
                )
            )
            .order_by(Auction.end_time.asc())
        )
        return list(result.scalars().all())
