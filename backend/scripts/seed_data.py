"""Seed data script for development and testing.

Creates:
- 1 seller and N bidders, each bidder with a funded wallet
- 1 active auction listed by the seller

Environment Variables:
    BIDDER_COUNT: Number of bidder accounts (default: 100)
    BIDDER_DEPOSIT: Amount deposited into each bidder wallet (default: 1000.00)
    AUCTION_DURATION_HOURS: Auction duration in hours (default: 2)

Usage:
    cd backend && python -m scripts.seed_data

Accounts:
    - Seller: seller@example.com / password123
    - Bidders: bidder0001@example.com ~ bidderNNNN@example.com (password: password123)
"""

import asyncio
import os
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.database import async_session_maker, engine
from marketplace.core.security import get_password_hash
from marketplace.models import Auction, User
from marketplace.schemas.auction import AuctionCreate, DurationSpec, ImageMedia
from marketplace.services.auction_service import AuctionService
from marketplace.services.ledger_service import LedgerService

# Configuration from environment variables
BIDDER_COUNT = int(os.getenv("BIDDER_COUNT", "100"))
BIDDER_DEPOSIT = Decimal(os.getenv("BIDDER_DEPOSIT", "1000.00"))
AUCTION_DURATION_HOURS = int(os.getenv("AUCTION_DURATION_HOURS", "2"))


async def seed_users(session: AsyncSession) -> tuple[User, list[User]]:
    """Create the seller and the bidders, each with a wallet.

    Bidder wallets get one BIDDER_DEPOSIT deposit so the ledger log
    matches the balance.
    """
    print("Seeding users...")

    result = await session.execute(select(User).where(User.email == "seller@example.com"))
    seller = result.scalar_one_or_none()
    if seller:
        print("  Users already exist, skipping...")
        result = await session.execute(select(User).where(User.user_id != seller.user_id))
        return seller, list(result.scalars().all())

    password_hash = get_password_hash("password123")
    ledger = LedgerService(session)

    seller = User(
        email="seller@example.com",
        password_hash=password_hash,
        username="seller",
        status="active",
    )
    session.add(seller)
    await session.flush()
    await ledger.open_wallet(seller.user_id)
    print("  Created seller: seller@example.com / password123")

    bidders = []
    for i in range(1, BIDDER_COUNT + 1):
        bidder = User(
            email=f"bidder{i:04d}@example.com",
            password_hash=password_hash,
            username=f"bidder{i:04d}",
            status="active",
        )
        session.add(bidder)
        await session.flush()
        await ledger.open_wallet(bidder.user_id)
        await ledger.deposit(bidder.user_id, BIDDER_DEPOSIT)
        bidders.append(bidder)

    await session.commit()

    print(f"  Created {len(bidders)} bidders with ${BIDDER_DEPOSIT} each")
    return seller, bidders


async def seed_auction(session: AsyncSession, seller: User) -> Auction:
    """List one auction for the seller."""
    print("Seeding auction...")

    auction = await AuctionService(session).create(
        seller.user_id,
        AuctionCreate(
            title="Noise-cancelling headphones",
            description="Flagship model, limited colourway, sealed box",
            starting_price=Decimal("80.00"),
            duration=DurationSpec(value=AUCTION_DURATION_HOURS, unit="hours"),
            category="electronics",
            condition="new",
            media=ImageMedia(refs=["https://example.com/images/headphones.jpg"]),
        ),
        verified=True,
    )

    print(f"  Created auction: {auction.auction_id}")
    print(f"    Starting price: {auction.starting_price}")
    print(f"    End: {auction.end_time}")
    return auction


async def main():
    """Main seed function."""
    print("=" * 60)
    print("Auction Marketplace - Seed Data Script")
    print("=" * 60)
    print(f"  BIDDER_COUNT: {BIDDER_COUNT}")
    print(f"  BIDDER_DEPOSIT: {BIDDER_DEPOSIT}")
    print(f"  AUCTION_DURATION_HOURS: {AUCTION_DURATION_HOURS}")
    print("=" * 60)

    async with async_session_maker() as session:
        seller, bidders = await seed_users(session)
        auction = await seed_auction(session, seller)

    print("=" * 60)
    print("Seed data complete!")
    print(f"  Bidders: {len(bidders)}")
    print(f"  Active Auction: {auction.auction_id}")
    print(f"  Auction End Time: {auction.end_time}")
    print("=" * 60)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
