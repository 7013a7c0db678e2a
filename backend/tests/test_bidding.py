"""Tests for placing bids.

Each bid runs in its own session, the way concurrent requests would, with the
per-auction lock backed by the dict Redis from conftest.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from marketplace.core.config import settings
from marketplace.models.bid import Bid
from marketplace.models.wallet import LedgerTransaction, TransactionKind
from marketplace.services.auction_service import AuctionService
from marketplace.services.bid_ledger import BidLedger
from marketplace.services.bid_service import hold_for
from marketplace.services.errors import (
    AuctionNotActive,
    BidTooLow,
    Conflict,
    InsufficientFunds,
    InvalidInput,
    NotFound,
    SelfBid,
    StorageFailure,
    Unauthenticated,
)


async def all_bids(session_factory, auction_id):
    async with session_factory() as session:
        return await BidLedger(session).get_auction_bids(auction_id)


async def holds_for(session_factory, auction_id):
    async with session_factory() as session:
        result = await session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.auction_id == auction_id)
            .where(LedgerTransaction.kind == TransactionKind.BID_HOLD)
        )
        return list(result.scalars().all())


class TestHoldFor:
    """Test hold sizing."""

    @pytest.mark.parametrize(
        "amount,hold",
        [
            ("20.00", "10.00"),
            ("30.00", "15.00"),
            ("10.01", "5.01"),
            ("0.01", "0.01"),
            ("99.99", "50.00"),
        ],
    )
    def test_half_rounded_half_up(self, amount, hold):
        assert hold_for(Decimal(amount)) == Decimal(hold)


class TestPlaceBid:
    """Test the accepted path."""

    @pytest.mark.asyncio
    async def test_two_bidders(
        self, create_user, create_auction, place_bid, wallet_balance, load_auction, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice", balance="100.00")
        bob = await create_user("bob", balance="100.00")
        auction = await create_auction(seller, starting_price="10.00")

        first = await place_bid(alice.user_id, auction.auction_id, "20.00")
        second = await place_bid(bob.user_id, auction.auction_id, "30.00")

        assert first.hold_amount == Decimal("10.00")
        assert second.hold_amount == Decimal("15.00")
        assert (first.sequence, second.sequence) == (1, 2)
        assert await wallet_balance(alice.user_id) == Decimal("90.00")
        assert await wallet_balance(bob.user_id) == Decimal("85.00")

        stored = await load_auction(auction.auction_id)
        assert stored.current_price == Decimal("30.00")
        assert stored.bid_count == 2

        bids = await all_bids(session_factory, auction.auction_id)
        assert [b.user_id for b in bids] == [bob.user_id, alice.user_id]

    @pytest.mark.asyncio
    async def test_hold_entry_references_its_bid(
        self, create_user, create_auction, place_bid, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)

        bid = await place_bid(alice.user_id, auction.auction_id, "12.50")

        holds = await holds_for(session_factory, auction.auction_id)
        assert len(holds) == 1
        assert holds[0].bid_id == bid.bid_id
        assert holds[0].amount == Decimal("-6.25")

    @pytest.mark.asyncio
    async def test_outbid_bidder_keeps_hold_until_settlement(
        self, create_user, create_auction, place_bid, wallet_balance
    ):
        seller = await create_user("seller")
        alice = await create_user("alice", balance="100.00")
        bob = await create_user("bob", balance="100.00")
        auction = await create_auction(seller)

        await place_bid(alice.user_id, auction.auction_id, "20.00")
        await place_bid(bob.user_id, auction.auction_id, "30.00")

        assert await wallet_balance(alice.user_id) == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_price_is_monotonic(self, create_user, create_auction, place_bid, load_auction):
        seller = await create_user("seller")
        alice = await create_user("alice", balance="500.00")
        bob = await create_user("bob", balance="500.00")
        auction = await create_auction(seller)

        prices = []
        for user, amount in [(alice, "11.00"), (bob, "15.00"), (alice, "15.50"), (bob, "40.00")]:
            await place_bid(user.user_id, auction.auction_id, amount)
            prices.append((await load_auction(auction.auction_id)).current_price)

        assert prices == sorted(prices)
        assert prices[-1] == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_accepted_bid_publishes_snapshot(
        self, create_user, create_auction, place_bid, mock_redis
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)

        await place_bid(alice.user_id, auction.auction_id, "11.00")

        cached = mock_redis.hashes[f"auction:{auction.auction_id}"]
        assert cached["current_price"] == "11.00"
        assert cached["bid_count"] == "1"
        assert cached["version"] == "1"
        assert mock_redis.store == {}

    @pytest.mark.asyncio
    async def test_redis_down_rejects_bid_without_changes(
        self, create_user, create_auction, place_bid, wallet_balance, load_auction, mock_redis
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)
        mock_redis.set = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(StorageFailure):
            await place_bid(alice.user_id, auction.auction_id, "20.00")

        stored = await load_auction(auction.auction_id)
        assert stored.current_price == Decimal("10.00")
        assert stored.bid_count == 0
        assert await wallet_balance(alice.user_id) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_committed_bid_survives_failed_lock_release(
        self, create_user, create_auction, place_bid, wallet_balance, load_auction, mock_redis
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)
        mock_redis.register_script = MagicMock(
            return_value=AsyncMock(side_effect=RedisConnectionError("down"))
        )

        bid = await place_bid(alice.user_id, auction.auction_id, "20.00")

        assert bid.amount == Decimal("20.00")
        assert (await load_auction(auction.auction_id)).current_price == Decimal("20.00")
        assert await wallet_balance(alice.user_id) == Decimal("90.00")


class TestRejectedBids:
    """Test every rejection leaves the auction and wallets untouched."""

    @pytest.mark.asyncio
    async def test_bid_not_above_current_price(
        self, create_user, create_auction, place_bid, wallet_balance, load_auction
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        auction = await create_auction(seller)
        await place_bid(alice.user_id, auction.auction_id, "30.00")

        with pytest.raises(BidTooLow):
            await place_bid(bob.user_id, auction.auction_id, "30.00")

        stored = await load_auction(auction.auction_id)
        assert stored.current_price == Decimal("30.00")
        assert stored.bid_count == 1
        assert await wallet_balance(bob.user_id) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_bid_equal_to_starting_price(self, create_user, create_auction, place_bid):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller, starting_price="10.00")

        with pytest.raises(BidTooLow):
            await place_bid(alice.user_id, auction.auction_id, "10.00")

    @pytest.mark.asyncio
    async def test_seller_cannot_bid(self, create_user, create_auction, place_bid, wallet_balance):
        seller = await create_user("seller")
        auction = await create_auction(seller)

        with pytest.raises(SelfBid):
            await place_bid(seller.user_id, auction.auction_id, "50.00")

        assert await wallet_balance(seller.user_id) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_anonymous_caller(self, create_user, create_auction, place_bid):
        seller = await create_user("seller")
        auction = await create_auction(seller)

        with pytest.raises(Unauthenticated):
            await place_bid(None, auction.auction_id, "50.00")

    @pytest.mark.asyncio
    async def test_unknown_auction(self, create_user, place_bid, mock_redis):
        alice = await create_user("alice")

        with pytest.raises(NotFound):
            await place_bid(alice.user_id, uuid4(), "50.00")

        assert mock_redis.store == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1.00", "10.001"])
    async def test_invalid_amount(self, create_user, create_auction, place_bid, amount):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)

        with pytest.raises(InvalidInput):
            await place_bid(alice.user_id, auction.auction_id, amount)

    @pytest.mark.asyncio
    async def test_expired_auction(self, create_user, create_auction, place_bid, wallet_balance):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller, end_in=timedelta(seconds=-1))

        with pytest.raises(AuctionNotActive):
            await place_bid(alice.user_id, auction.auction_id, "50.00")

        assert await wallet_balance(alice.user_id) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_ended_auction(
        self, create_user, create_auction, place_bid, session_factory, redis_service
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)
        async with session_factory() as session:
            service = AuctionService(session, redis_service)
            await service.close(await service.get_for_update(auction.auction_id), None)
            await session.commit()

        with pytest.raises(AuctionNotActive):
            await place_bid(alice.user_id, auction.auction_id, "50.00")

    @pytest.mark.asyncio
    async def test_insufficient_funds(
        self, create_user, create_auction, place_bid, wallet_balance, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice", balance="5.00")
        auction = await create_auction(seller)

        with pytest.raises(InsufficientFunds):
            await place_bid(alice.user_id, auction.auction_id, "20.00")

        assert await wallet_balance(alice.user_id) == Decimal("5.00")
        assert await all_bids(session_factory, auction.auction_id) == []

    @pytest.mark.asyncio
    async def test_hold_equal_to_balance_is_enough(
        self, create_user, create_auction, place_bid, wallet_balance
    ):
        seller = await create_user("seller")
        alice = await create_user("alice", balance="10.00")
        auction = await create_auction(seller)

        await place_bid(alice.user_id, auction.auction_id, "20.00")

        assert await wallet_balance(alice.user_id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_busy_lock(self, create_user, create_auction, place_bid, mock_redis, load_auction):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)
        mock_redis.store[f"lock:auction:{auction.auction_id}"] = "someone-else"

        with patch.object(settings, "AUCTION_LOCK_WAIT_SECONDS", 0.05):
            with pytest.raises(Conflict) as exc_info:
                await place_bid(alice.user_id, auction.auction_id, "50.00")

        assert exc_info.value.retryable
        assert (await load_auction(auction.auction_id)).bid_count == 0
        assert mock_redis.store[f"lock:auction:{auction.auction_id}"] == "someone-else"


class TestAtomicity:
    """Test a failure late in the bid rolls back the hold written earlier."""

    @pytest.mark.asyncio
    async def test_storage_failure_rolls_back_hold(
        self, create_user, create_auction, place_bid, wallet_balance, session_factory, mock_redis
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)

        with patch.object(BidLedger, "record", AsyncMock(side_effect=SQLAlchemyError("disk full"))):
            with pytest.raises(StorageFailure):
                await place_bid(alice.user_id, auction.auction_id, "50.00")

        assert await wallet_balance(alice.user_id) == Decimal("100.00")
        assert await holds_for(session_factory, auction.auction_id) == []
        assert mock_redis.store == {}

    @pytest.mark.asyncio
    async def test_lost_price_race_rolls_back_hold(
        self, create_user, create_auction, place_bid, wallet_balance, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)

        with patch.object(AuctionService, "accept_bid", AsyncMock(side_effect=Conflict())):
            with pytest.raises(Conflict):
                await place_bid(alice.user_id, auction.auction_id, "50.00")

        assert await wallet_balance(alice.user_id) == Decimal("100.00")
        assert await all_bids(session_factory, auction.auction_id) == []


class TestConcurrentBids:
    """Test bids racing on the same auction."""

    @pytest.mark.asyncio
    async def test_higher_bid_wins_regardless_of_order(
        self, create_user, create_auction, place_bid, load_auction, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        auction = await create_auction(seller, starting_price="40.00")

        results = await asyncio.gather(
            place_bid(alice.user_id, auction.auction_id, "50.00"),
            place_bid(bob.user_id, auction.auction_id, "60.00"),
            return_exceptions=True,
        )

        stored = await load_auction(auction.auction_id)
        assert stored.current_price == Decimal("60.00")
        assert isinstance(results[1], Bid)
        assert isinstance(results[0], (Bid, BidTooLow))

        bids = await all_bids(session_factory, auction.auction_id)
        holds = await holds_for(session_factory, auction.auction_id)
        assert stored.bid_count == len(bids)
        assert sorted(h.bid_id for h in holds) == sorted(b.bid_id for b in bids)

    @pytest.mark.asyncio
    async def test_equal_bids_accept_exactly_one(
        self, create_user, create_auction, place_bid, wallet_balance, load_auction
    ):
        seller = await create_user("seller")
        bidders = [await create_user(f"bidder{i}") for i in range(3)]
        auction = await create_auction(seller)

        results = await asyncio.gather(
            *(place_bid(b.user_id, auction.auction_id, "50.00") for b in bidders),
            return_exceptions=True,
        )

        accepted = [r for r in results if isinstance(r, Bid)]
        rejected = [r for r in results if isinstance(r, BidTooLow)]
        assert len(accepted) == 1
        assert len(rejected) == 2

        balances = [await wallet_balance(b.user_id) for b in bidders]
        assert sorted(balances) == [Decimal("75.00"), Decimal("100.00"), Decimal("100.00")]
        assert (await load_auction(auction.auction_id)).bid_count == 1
