"""Ledger service: wallet balances and their append-only transaction log.

Every balance change is paired with a ``LedgerTransaction`` in the same flush,
so a wallet's balance always equals the sum of its log. Methods here flush but
never commit; the caller's unit of work decides when the change becomes
durable, which lets a bid or a settlement commit its ledger movements together
with the auction changes.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.auction import Auction
from marketplace.models.bid import Bid
from marketplace.models.wallet import LedgerTransaction, TransactionKind, Wallet
from marketplace.services.errors import InsufficientFunds, InvalidInput, NotFound

logger = logging.getLogger(__name__)


class LedgerService:
    """Service class for wallet and ledger operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def open_wallet(self, user_id: UUID) -> Wallet:
        """Create an empty wallet for a new user."""
        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"))
        self.db.add(wallet)
        await self.db.flush()
        return wallet

    async def get_wallet(self, user_id: UUID) -> Wallet | None:
        """Get a user's wallet."""
        result = await self.db.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one_or_none()

    async def _get_wallet_for_update(self, user_id: UUID) -> Wallet | None:
        result = await self.db.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _append(
        self,
        wallet: Wallet,
        amount: Decimal,
        kind: str,
        description: str,
        auction_id: UUID | None = None,
        bid_id: UUID | None = None,
    ) -> LedgerTransaction:
        entry = LedgerTransaction(
            wallet_id=wallet.wallet_id,
            user_id=wallet.user_id,
            amount=amount,
            kind=kind,
            description=description,
            auction_id=auction_id,
            bid_id=bid_id,
        )
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(wallet, attribute_names=["balance"])
        return entry

    async def deposit(self, user_id: UUID, amount: Decimal) -> LedgerTransaction:
        """Add funds to a wallet.

        Raises:
            InvalidInput: amount is not positive
            NotFound: user has no wallet
        """
        if amount <= 0:
            raise InvalidInput("Deposit amount must be greater than 0")

        wallet = await self._get_wallet_for_update(user_id)
        if wallet is None:
            raise NotFound("Wallet not found")

        await self.db.execute(
            update(Wallet)
            .where(Wallet.wallet_id == wallet.wallet_id)
            .values(balance=Wallet.balance + amount)
            .execution_options(synchronize_session=False)
        )
        entry = await self._append(wallet, amount, TransactionKind.DEPOSIT, "Wallet deposit")
        logger.info(f"Deposit: user={user_id}, amount={amount}")
        return entry

    async def reserve(
        self,
        user_id: UUID,
        amount: Decimal,
        auction: Auction,
        bid_id: UUID | None = None,
    ) -> LedgerTransaction:
        """Hold funds against a bid.

        The balance is decremented with ``WHERE balance >= amount``, so a
        reserve that lost a race to another one never drives it negative.

        Raises:
            InsufficientFunds: no wallet, or balance below amount
        """
        wallet = await self._get_wallet_for_update(user_id)
        if wallet is None:
            raise InsufficientFunds("You don't have a wallet")

        if wallet.balance < amount:
            raise InsufficientFunds(
                f"You need at least ${amount:.2f} in your wallet to place this bid"
            )

        result = await self.db.execute(
            update(Wallet)
            .where(Wallet.wallet_id == wallet.wallet_id)
            .where(Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InsufficientFunds(
                f"You need at least ${amount:.2f} in your wallet to place this bid"
            )

        return await self._append(
            wallet,
            -amount,
            TransactionKind.BID_HOLD,
            f"Placed bid on {auction.title}",
            auction_id=auction.auction_id,
            bid_id=bid_id,
        )

    async def refund(
        self,
        user_id: UUID,
        amount: Decimal,
        auction: Auction,
        bid: Bid | None = None,
    ) -> LedgerTransaction:
        """Return held funds to a wallet.

        Tagged with the bid it releases; the ``(bid_id, kind)`` unique
        constraint rejects a second refund of the same bid.

        Raises:
            NotFound: user has no wallet
        """
        wallet = await self._get_wallet_for_update(user_id)
        if wallet is None:
            raise NotFound(f"Wallet for user {user_id} not found")

        await self.db.execute(
            update(Wallet)
            .where(Wallet.wallet_id == wallet.wallet_id)
            .values(balance=Wallet.balance + amount)
            .execution_options(synchronize_session=False)
        )
        return await self._append(
            wallet,
            amount,
            TransactionKind.REFUND,
            f"Refund for bid on {auction.title}",
            auction_id=auction.auction_id,
            bid_id=bid.bid_id if bid is not None else None,
        )

    async def get_transactions(
        self, user_id: UUID, skip: int = 0, limit: int = 100
    ) -> tuple[list[LedgerTransaction], int]:
        """Get a user's ledger entries, newest first.

        Returns:
            Tuple of (transactions list, total count)
        """
        count_result = await self.db.execute(
            select(func.count(LedgerTransaction.transaction_id)).where(
                LedgerTransaction.user_id == user_id
            )
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
            .order_by(LedgerTransaction.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_auction_transactions(
        self, auction_id: UUID, kind: str | None = None
    ) -> list[LedgerTransaction]:
        """Get every ledger entry tagged with an auction, oldest first."""
        query = select(LedgerTransaction).where(LedgerTransaction.auction_id == auction_id)
        if kind is not None:
            query = query.where(LedgerTransaction.kind == kind)
        result = await self.db.execute(query.order_by(LedgerTransaction.created_at.asc()))
        return list(result.scalars().all())

    async def balance_from_log(self, user_id: UUID) -> Decimal:
        """Recompute a balance by summing the user's transaction log."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
                LedgerTransaction.user_id == user_id
            )
        )
        return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))
