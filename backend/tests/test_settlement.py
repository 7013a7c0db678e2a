"""Tests for settling auctions: winner selection, refunds and exactly-once closing."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from marketplace.models.auction import Auction, AuctionStatus
from marketplace.models.base import utcnow
from marketplace.models.wallet import LedgerTransaction, TransactionKind, Wallet
from marketplace.services.errors import (
    AlreadyEnded,
    Forbidden,
    InvalidInput,
    NotFound,
    StorageFailure,
    Unauthenticated,
)
from marketplace.services.ledger_service import LedgerService
from marketplace.services.settlement_service import SettlementService


@pytest.fixture
def settle(session_factory, redis_service):
    """Settle on behalf of ``caller_id`` in a fresh session."""

    async def _settle(caller_id, auction_id):
        async with session_factory() as session:
            return await SettlementService(session, redis_service).settle(caller_id, auction_id)

    return _settle


@pytest.fixture
def settle_expired(session_factory, redis_service):
    async def _settle(auction_id):
        async with session_factory() as session:
            return await SettlementService(session, redis_service).settle_expired(auction_id)

    return _settle


async def expire(session_factory, auction_id):
    async with session_factory() as session:
        await session.execute(
            update(Auction)
            .where(Auction.auction_id == auction_id)
            .values(end_time=utcnow() - timedelta(seconds=1))
        )
        await session.commit()


async def refunds_for(session_factory, auction_id):
    async with session_factory() as session:
        result = await session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.auction_id == auction_id)
            .where(LedgerTransaction.kind == TransactionKind.REFUND)
        )
        return list(result.scalars().all())


class TestSellerSettlement:
    """Test a seller ending their auction."""

    @pytest.mark.asyncio
    async def test_winner_keeps_hold_and_losers_are_refunded(
        self, create_user, create_auction, place_bid, settle, wallet_balance, load_auction
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        auction = await create_auction(seller, starting_price="10.00")
        await place_bid(alice.user_id, auction.auction_id, "20.00")
        await place_bid(bob.user_id, auction.auction_id, "30.00")

        result = await settle(seller.user_id, auction.auction_id)

        assert result.winner_id == bob.user_id
        assert result.final_price == Decimal("30.00")
        assert result.refund_count == 1
        assert result.refunded_total == Decimal("10.00")
        assert await wallet_balance(alice.user_id) == Decimal("100.00")
        assert await wallet_balance(bob.user_id) == Decimal("85.00")

        stored = await load_auction(auction.auction_id)
        assert stored.status == AuctionStatus.ENDED
        assert stored.winner_id == bob.user_id
        assert stored.ended_at is not None

    @pytest.mark.asyncio
    async def test_every_losing_bid_is_refunded(
        self, create_user, create_auction, place_bid, settle, wallet_balance, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        auction = await create_auction(seller)
        await place_bid(alice.user_id, auction.auction_id, "20.00")
        await place_bid(bob.user_id, auction.auction_id, "30.00")
        await place_bid(alice.user_id, auction.auction_id, "40.00")
        await place_bid(bob.user_id, auction.auction_id, "50.00")

        result = await settle(seller.user_id, auction.auction_id)

        # Both of alice's holds come back; bob's earlier hold stays with the winning holds
        assert result.refund_count == 2
        assert result.refunded_total == Decimal("30.00")
        assert await wallet_balance(alice.user_id) == Decimal("100.00")
        assert await wallet_balance(bob.user_id) == Decimal("60.00")

        refunds = await refunds_for(session_factory, auction.auction_id)
        assert {r.user_id for r in refunds} == {alice.user_id}
        assert len({r.bid_id for r in refunds}) == 2

    @pytest.mark.asyncio
    async def test_no_bids(self, create_user, create_auction, settle, load_auction):
        seller = await create_user("seller")
        auction = await create_auction(seller, starting_price="25.00")

        result = await settle(seller.user_id, auction.auction_id)

        assert result.winner_id is None
        assert result.final_price == Decimal("25.00")
        assert result.refund_count == 0
        assert (await load_auction(auction.auction_id)).status == AuctionStatus.ENDED

    @pytest.mark.asyncio
    async def test_second_settlement_is_rejected(
        self, create_user, create_auction, place_bid, settle, wallet_balance, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        auction = await create_auction(seller)
        await place_bid(alice.user_id, auction.auction_id, "20.00")
        await place_bid(bob.user_id, auction.auction_id, "30.00")
        await settle(seller.user_id, auction.auction_id)

        with pytest.raises(AlreadyEnded):
            await settle(seller.user_id, auction.auction_id)

        assert len(await refunds_for(session_factory, auction.auction_id)) == 1
        assert await wallet_balance(alice.user_id) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_only_seller_can_end(
        self, create_user, create_auction, place_bid, settle, load_auction
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        auction = await create_auction(seller)
        await place_bid(alice.user_id, auction.auction_id, "20.00")

        with pytest.raises(Forbidden):
            await settle(alice.user_id, auction.auction_id)

        assert (await load_auction(auction.auction_id)).status == AuctionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_anonymous_caller(self, create_user, create_auction, settle):
        seller = await create_user("seller")
        auction = await create_auction(seller)

        with pytest.raises(Unauthenticated):
            await settle(None, auction.auction_id)

    @pytest.mark.asyncio
    async def test_unknown_auction(self, create_user, settle, mock_redis):
        seller = await create_user("seller")

        with pytest.raises(NotFound):
            await settle(seller.user_id, uuid4())

        assert mock_redis.store == {}

    @pytest.mark.asyncio
    async def test_seller_can_end_before_deadline(
        self, create_user, create_auction, settle, load_auction
    ):
        seller = await create_user("seller")
        auction = await create_auction(seller, end_in=timedelta(weeks=2))

        await settle(seller.user_id, auction.auction_id)

        assert (await load_auction(auction.auction_id)).status == AuctionStatus.ENDED

    @pytest.mark.asyncio
    async def test_failure_between_refunds_rolls_back_everything(
        self,
        create_user,
        create_auction,
        place_bid,
        settle,
        wallet_balance,
        load_auction,
        session_factory,
        mock_redis,
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        carol = await create_user("carol")
        auction = await create_auction(seller)
        await place_bid(alice.user_id, auction.auction_id, "20.00")
        await place_bid(bob.user_id, auction.auction_id, "30.00")
        await place_bid(carol.user_id, auction.auction_id, "40.00")

        real_refund = LedgerService.refund
        calls = []

        async def refund_once_then_fail(self, *args, **kwargs):
            calls.append(args)
            if len(calls) > 1:
                raise SQLAlchemyError("disk I/O error")
            return await real_refund(self, *args, **kwargs)

        with patch.object(LedgerService, "refund", refund_once_then_fail):
            with pytest.raises(StorageFailure):
                await settle(seller.user_id, auction.auction_id)

        assert len(calls) == 2
        stored = await load_auction(auction.auction_id)
        assert stored.status == AuctionStatus.ACTIVE
        assert stored.winner_id is None
        assert await refunds_for(session_factory, auction.auction_id) == []
        assert await wallet_balance(alice.user_id) == Decimal("90.00")
        assert await wallet_balance(bob.user_id) == Decimal("85.00")
        assert await wallet_balance(carol.user_id) == Decimal("80.00")
        assert mock_redis.hashes[f"auction:{auction.auction_id}"]["status"] == "ACTIVE"
        assert mock_redis.store == {}

        # Nothing was half-applied, so a retry settles normally
        result = await settle(seller.user_id, auction.auction_id)
        assert result.refund_count == 2
        assert await wallet_balance(alice.user_id) == Decimal("100.00")


class TestExpiredSettlement:
    """Test the background path for auctions past their end time."""

    @pytest.mark.asyncio
    async def test_settle_expired(
        self, create_user, create_auction, place_bid, settle_expired, wallet_balance, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        auction = await create_auction(seller)
        await place_bid(alice.user_id, auction.auction_id, "20.00")
        await place_bid(bob.user_id, auction.auction_id, "30.00")
        await expire(session_factory, auction.auction_id)

        result = await settle_expired(auction.auction_id)

        assert result.winner_id == bob.user_id
        assert await wallet_balance(alice.user_id) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_running_auction_is_not_settled(
        self, create_user, create_auction, settle_expired, load_auction
    ):
        seller = await create_user("seller")
        auction = await create_auction(seller)

        with pytest.raises(InvalidInput):
            await settle_expired(auction.auction_id)

        assert (await load_auction(auction.auction_id)).status == AuctionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_seller_and_sweep_race(
        self, create_user, create_auction, place_bid, settle, settle_expired, session_factory
    ):
        seller = await create_user("seller")
        alice = await create_user("alice")
        bob = await create_user("bob")
        auction = await create_auction(seller)
        await place_bid(alice.user_id, auction.auction_id, "20.00")
        await place_bid(bob.user_id, auction.auction_id, "30.00")
        await expire(session_factory, auction.auction_id)

        await settle(seller.user_id, auction.auction_id)
        with pytest.raises(AlreadyEnded):
            await settle_expired(auction.auction_id)

        assert len(await refunds_for(session_factory, auction.auction_id)) == 1

    @pytest.mark.asyncio
    async def test_get_auctions_to_settle(
        self, db, create_user, create_auction, redis_service, settle
    ):
        seller = await create_user("seller")
        running = await create_auction(seller)
        due = await create_auction(seller, end_in=timedelta(seconds=-10))
        overdue = await create_auction(seller, end_in=timedelta(hours=-1))
        ended = await create_auction(seller, end_in=timedelta(seconds=-5))
        await settle(seller.user_id, ended.auction_id)

        auctions = await SettlementService(db, redis_service).get_auctions_to_settle()

        assert [a.auction_id for a in auctions] == [overdue.auction_id, due.auction_id]
        assert running.auction_id not in {a.auction_id for a in auctions}


class TestConservation:
    """Test money is neither created nor lost across bids and settlement."""

    @pytest.mark.asyncio
    async def test_total_funds_preserved(
        self, create_user, create_auction, place_bid, settle, session_factory
    ):
        seller = await create_user("seller", balance="0")
        bidders = [await create_user(f"bidder{i}", balance="200.00") for i in range(3)]
        auction = await create_auction(seller)
        for amount, bidder in zip(["15.00", "22.50", "31.99", "48.00"], bidders + bidders[:1]):
            await place_bid(bidder.user_id, auction.auction_id, amount)

        result = await settle(seller.user_id, auction.auction_id)

        async with session_factory() as session:
            balances = (await session.execute(select(func.sum(Wallet.balance)))).scalar_one()
            held = (
                await session.execute(
                    select(func.sum(LedgerTransaction.amount))
                    .where(LedgerTransaction.user_id == result.winner_id)
                    .where(LedgerTransaction.kind == TransactionKind.BID_HOLD)
                )
            ).scalar_one()

        assert Decimal(str(balances)).quantize(Decimal("0.01")) - Decimal(str(held)).quantize(
            Decimal("0.01")
        ) == Decimal("600.00")
