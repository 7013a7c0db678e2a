"""Auction service: listing lifecycle, price commits and read views."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from cachetools import TTLCache
from redis.exceptions import RedisError
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.core.config import settings
from marketplace.models.auction import CATEGORIES, CONDITIONS, Auction, AuctionStatus
from marketplace.models.base import utcnow
from marketplace.models.bid import Bid
from marketplace.schemas.auction import AuctionCreate, AuctionSnapshot, DurationSpec
from marketplace.services.errors import (
    AlreadyEnded,
    AuctionNotActive,
    BidTooLow,
    Conflict,
    InvalidInput,
)
from marketplace.services.redis_service import RedisService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

DURATION_UNITS = {
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}

# Local snapshot cache in front of Redis for polling clients
_snapshot_local_cache: TTLCache = TTLCache(maxsize=1000, ttl=settings.SNAPSHOT_CACHE_TTL_SECONDS)


def compute_end_time(now: datetime, duration: DurationSpec) -> datetime:
    """Turn a duration spec into an absolute deadline.

    Unknown units count as days.

    Raises:
        InvalidInput: duration value is not strictly positive
    """
    if duration.value <= 0:
        raise InvalidInput("Duration must be greater than 0")
    step = DURATION_UNITS.get(duration.unit.lower(), DURATION_UNITS["days"])
    return now + step * duration.value


def check_bid(auction: Auction, amount: Decimal, now: datetime | None = None) -> None:
    """Check that ``auction`` can take a bid of ``amount``. Mutates nothing.

    Raises:
        AuctionNotActive: auction is ENDED or past its end time
        BidTooLow: amount does not exceed the current price
    """
    if now is None:
        now = utcnow()
    if auction.status != AuctionStatus.ACTIVE:
        raise AuctionNotActive()
    if now >= auction.end_time:
        raise AuctionNotActive()
    if amount <= auction.current_price:
        raise BidTooLow(
            f"Bid amount must be higher than current price (${auction.current_price:.2f})"
        )


def is_cent_amount(amount: Decimal) -> bool:
    """True if ``amount`` has at most two decimal places."""
    return amount == amount.quantize(CENT)


def snapshot_of(auction: Auction) -> AuctionSnapshot:
    return AuctionSnapshot(
        auction_id=auction.auction_id,
        current_price=auction.current_price,
        bid_count=auction.bid_count,
        status=auction.status,
        end_time=auction.end_time,
        winner_id=auction.winner_id,
        version=auction.version,
    )


def _remember(snapshot: AuctionSnapshot) -> AuctionSnapshot:
    """Store a snapshot in the local cache unless it already holds a newer one.

    Returns whichever snapshot the cache ends up holding.
    """
    key = str(snapshot.auction_id)
    held = _snapshot_local_cache.get(key)
    if held is not None and held.version >= snapshot.version:
        return held
    _snapshot_local_cache[key] = snapshot
    return snapshot


class AuctionService:
    """Service class for auction operations."""

    def __init__(self, db: AsyncSession, redis_service: RedisService | None = None):
        self.db = db
        self.redis_service = redis_service

    async def create(self, seller_id: UUID, data: AuctionCreate, verified: bool) -> Auction:
        """Create a new ACTIVE auction.

        Args:
            seller_id: Listing owner
            data: Listing fields
            verified: Outcome of the content verification of the listing media

        Returns:
            Created auction

        Raises:
            InvalidInput: bad price, duration, category or condition, or an
                unverified listing while verification is required
        """
        if data.starting_price <= 0:
            raise InvalidInput("Starting price must be greater than 0")
        if not is_cent_amount(data.starting_price):
            raise InvalidInput("Starting price must have at most two decimal places")
        category = data.category.lower()
        if category not in CATEGORIES:
            raise InvalidInput(f"Unknown category: {data.category}")
        condition = data.condition.lower()
        if condition not in CONDITIONS:
            raise InvalidInput(f"Unknown condition: {data.condition}")
        if settings.REQUIRE_VERIFIED_LISTINGS and not verified:
            raise InvalidInput("Listing media failed content verification")

        now = utcnow()
        end_time = compute_end_time(now, data.duration)

        media_kind = None
        media_refs: list[str] = []
        if data.media is not None:
            media_kind = data.media.kind
            media_refs = list(data.media.refs) if media_kind == "image" else [data.media.ref]

        auction = Auction(
            seller_id=seller_id,
            title=data.title,
            description=data.description,
            category=category,
            condition=condition,
            media_kind=media_kind,
            media_refs=media_refs,
            verified=verified,
            starting_price=data.starting_price,
            current_price=data.starting_price,
            end_time=end_time,
            status=AuctionStatus.ACTIVE,
            bid_count=0,
            version=0,
            created_at=now,
        )

        self.db.add(auction)
        await self.db.commit()
        await self.db.refresh(auction)

        logger.info(
            f"Auction created: auction={auction.auction_id}, seller={seller_id}, "
            f"starting_price={auction.starting_price}, end_time={auction.end_time.isoformat()}"
        )
        return auction

    async def get_by_id(self, auction_id: UUID) -> Auction | None:
        """Get auction by ID."""
        result = await self.db.execute(
            select(Auction).where(Auction.auction_id == auction_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, auction_id: UUID) -> Auction | None:
        """Get auction by ID with a row lock held until the transaction ends."""
        result = await self.db.execute(
            select(Auction)
            .where(Auction.auction_id == auction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_detail(self, auction_id: UUID) -> Auction | None:
        """Get auction with seller and bids (with bidders) loaded."""
        result = await self.db.execute(
            select(Auction)
            .options(
                selectinload(Auction.seller),
                selectinload(Auction.bids).selectinload(Bid.user),
            )
            .where(Auction.auction_id == auction_id)
        )
        return result.scalar_one_or_none()

    async def list_active(
        self,
        category: str | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[Auction], int]:
        """Get auctions still open for bidding, newest first.

        Args:
            category: Restrict to one category ("all" or None for every category)
            search: Case-insensitive match on title or description
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (auctions list, total count)
        """
        now = utcnow()
        conditions = [Auction.status == AuctionStatus.ACTIVE, Auction.end_time > now]
        if category and category.lower() != "all":
            conditions.append(Auction.category == category.lower())
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(Auction.title).like(pattern),
                    func.lower(Auction.description).like(pattern),
                )
            )

        count_result = await self.db.execute(
            select(func.count(Auction.auction_id)).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(Auction)
            .where(*conditions)
            .order_by(Auction.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_user_auctions(
        self, seller_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[Auction], int]:
        """Get every auction listed by a seller, newest first."""
        count_result = await self.db.execute(
            select(func.count(Auction.auction_id)).where(Auction.seller_id == seller_id)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(Auction)
            .where(Auction.seller_id == seller_id)
            .order_by(Auction.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def accept_bid(self, auction: Auction, amount: Decimal) -> None:
        """Commit a validated bid amount as the new current price.

        The update only applies to the version of the row that was validated;
        if anything moved in between, nothing is written.

        Raises:
            Conflict: the auction changed since it was loaded
        """
        result = await self.db.execute(
            update(Auction)
            .where(Auction.auction_id == auction.auction_id)
            .where(Auction.version == auction.version)
            .where(Auction.status == AuctionStatus.ACTIVE)
            .where(Auction.current_price < amount)
            .values(
                current_price=amount,
                bid_count=Auction.bid_count + 1,
                version=Auction.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise Conflict()
        await self.db.refresh(auction)

    async def close(self, auction: Auction, winner_id: UUID | None) -> None:
        """Move an auction to ENDED and record its winner (None if no bids).

        Raises:
            AlreadyEnded: auction is not ACTIVE
        """
        result = await self.db.execute(
            update(Auction)
            .where(Auction.auction_id == auction.auction_id)
            .where(Auction.status == AuctionStatus.ACTIVE)
            .values(
                status=AuctionStatus.ENDED,
                winner_id=winner_id,
                ended_at=utcnow(),
                version=Auction.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AlreadyEnded()
        await self.db.refresh(auction)

    # ==================== Polling Snapshot ====================

    async def get_snapshot(self, auction_id: UUID) -> AuctionSnapshot | None:
        """Get the polling view of an auction.

        Cache hierarchy:
        1. Local in-memory cache (short TTL)
        2. Redis hash
        3. Database
        """
        key = str(auction_id)

        cached = _snapshot_local_cache.get(key)
        if cached is not None:
            return cached

        if self.redis_service:
            try:
                data = await self.redis_service.get_cached_auction_snapshot(key)
            except RedisError as e:
                logger.warning(f"Snapshot cache read failed for auction {key}: {e}")
                data = None
            if data:
                snapshot = AuctionSnapshot(
                    auction_id=auction_id,
                    current_price=Decimal(data["current_price"]),
                    bid_count=int(data["bid_count"]),
                    status=data["status"],
                    end_time=datetime.fromisoformat(data["end_time"]),
                    winner_id=UUID(data["winner_id"]) if data.get("winner_id") else None,
                    version=int(data.get("version") or 0),
                )
                return _remember(snapshot)

        auction = await self.get_by_id(auction_id)
        if auction is None:
            return None

        snapshot = snapshot_of(auction)
        await self._write_through(snapshot)
        return _remember(snapshot)

    async def publish_snapshot(self, auction: Auction) -> AuctionSnapshot:
        """Push the committed state of an auction to both snapshot caches.

        Older versions never replace newer ones, so a reader that loaded the
        row before this commit cannot put a stale price back.
        """
        snapshot = snapshot_of(auction)
        await self._write_through(snapshot)
        return _remember(snapshot)

    async def _write_through(self, snapshot: AuctionSnapshot) -> None:
        if not self.redis_service:
            return
        key = str(snapshot.auction_id)
        try:
            written = await self.redis_service.cache_auction_snapshot(
                key,
                {
                    "current_price": snapshot.current_price,
                    "bid_count": snapshot.bid_count,
                    "status": snapshot.status,
                    "end_time": snapshot.end_time.isoformat(),
                    "winner_id": snapshot.winner_id,
                    "version": snapshot.version,
                },
            )
        except RedisError as e:
            logger.warning(f"Snapshot cache write failed for auction {key}: {e}")
            return
        if not written:
            logger.debug(
                f"Kept newer cached snapshot for auction {key}, v{snapshot.version} is older"
            )
