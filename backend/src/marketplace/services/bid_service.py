"""Bid service: validates a bid and applies it as one unit.

Order of work inside the per-auction lock:

1. load the auction row (row lock) and validate: seller, status, deadline, amount
2. reserve ``hold_for(amount)`` in the bidder's wallet
3. record the bid and commit the new current price

All three writes share one transaction; any failure rolls every one of them
back, so a reserve never outlives its bid.
"""

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import settings
from marketplace.models.auction import Auction
from marketplace.models.bid import Bid
from marketplace.services.auction_service import CENT, AuctionService, check_bid, is_cent_amount
from marketplace.services.bid_ledger import BidLedger
from marketplace.services.errors import (
    InvalidInput,
    MarketplaceError,
    NotFound,
    SelfBid,
    StorageFailure,
    Unauthenticated,
)
from marketplace.services.ledger_service import LedgerService
from marketplace.services.redis_service import RedisService

logger = logging.getLogger(__name__)


def hold_for(amount: Decimal) -> Decimal:
    """Funds locked for a bid of ``amount`` (BID_HOLD_RATIO of it, rounded half-up to cents)."""
    return (amount * settings.BID_HOLD_RATIO).quantize(CENT, rounding=ROUND_HALF_UP)


class BidService:
    """Service class for bid operations."""

    def __init__(self, db: AsyncSession, redis_service: RedisService):
        self.db = db
        self.redis_service = redis_service
        self.auctions = AuctionService(db, redis_service)
        self.ledger = LedgerService(db)
        self.bid_ledger = BidLedger(db)

    async def place_bid(self, caller_id: UUID | None, auction_id: UUID, amount: Decimal) -> Bid:
        """Place a bid of ``amount`` on an auction for ``caller_id``.

        Args:
            caller_id: Authenticated bidder, None if the request carried no identity
            auction_id: Auction UUID
            amount: Offered price

        Returns:
            The recorded bid

        Raises:
            Unauthenticated, InvalidInput, NotFound, SelfBid, AuctionNotActive,
            BidTooLow, InsufficientFunds, Conflict, StorageFailure
        """
        if caller_id is None:
            raise Unauthenticated("You must be logged in to place a bid")
        if amount <= 0 or not is_cent_amount(amount):
            raise InvalidInput("Invalid bid data")

        async with self.redis_service.auction_lock(str(auction_id)):
            try:
                bid, auction = await self._apply_bid(caller_id, auction_id, amount)
                await self.db.commit()
            except MarketplaceError as e:
                await self.db.rollback()
                logger.info(
                    f"Bid rejected: user={caller_id}, auction={auction_id}, "
                    f"amount={amount}, reason={e.code}"
                )
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    f"Bid storage failure: user={caller_id}, auction={auction_id}, "
                    f"amount={amount}: {e}"
                )
                raise StorageFailure() from e

            await self.auctions.publish_snapshot(auction)

        logger.info(
            f"Bid accepted: user={caller_id}, auction={auction_id}, "
            f"amount={bid.amount}, hold={bid.hold_amount}"
        )
        return bid

    async def _apply_bid(
        self, caller_id: UUID, auction_id: UUID, amount: Decimal
    ) -> tuple[Bid, Auction]:
        auction = await self.auctions.get_for_update(auction_id)
        if auction is None:
            raise NotFound("Product not found")
        if auction.seller_id == caller_id:
            raise SelfBid()

        check_bid(auction, amount)

        hold = hold_for(amount)
        bid_id = uuid.uuid4()
        await self.ledger.reserve(caller_id, hold, auction, bid_id=bid_id)

        bid = await self.bid_ledger.record(auction, caller_id, amount, hold, bid_id=bid_id)
        await self.auctions.accept_bid(auction, amount)
        return bid, auction
