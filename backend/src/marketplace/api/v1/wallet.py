"""Wallet API endpoints."""

from fastapi import APIRouter, Query, status

from marketplace.api.deps import CurrentUser, DbSession, LedgerServiceDep
from marketplace.schemas.wallet import (
    DepositCreate,
    TransactionListResponse,
    TransactionResponse,
    WalletResponse,
)
from marketplace.services.errors import NotFound

router = APIRouter()


@router.get("", response_model=WalletResponse)
async def get_wallet(current_user: CurrentUser, ledger: LedgerServiceDep):
    """Get the caller's available balance."""
    wallet = await ledger.get_wallet(current_user.user_id)
    if wallet is None:
        raise NotFound("Wallet not found")
    return wallet


@router.post("/deposit", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def deposit(
    deposit_data: DepositCreate,
    current_user: CurrentUser,
    ledger: LedgerServiceDep,
    db: DbSession,
):
    """Add funds to the caller's wallet."""
    try:
        entry = await ledger.deposit(current_user.user_id, deposit_data.amount)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return entry


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    current_user: CurrentUser,
    ledger: LedgerServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get the caller's ledger history, newest first."""
    transactions, total = await ledger.get_transactions(
        current_user.user_id, skip=skip, limit=limit
    )
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
    )
