"""API dependencies for identity, database and service access."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.database import get_db
from marketplace.core.redis import get_redis
from marketplace.core.security import decode_access_token
from marketplace.models.user import User
from marketplace.services.auction_service import AuctionService
from marketplace.services.bid_service import BidService
from marketplace.services.errors import Forbidden, Unauthenticated
from marketplace.services.ledger_service import LedgerService
from marketplace.services.redis_service import RedisService
from marketplace.services.settlement_service import SettlementService
from marketplace.services.user_service import UserService
from marketplace.services.verification_service import ContentVerifier, get_content_verifier

# auto_error=False: a missing token resolves to "no caller" and the service
# answers with Unauthenticated
security = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


def caller_id_from_token(token: str | None) -> UUID | None:
    """Resolve a bearer token to a user id, None if absent or invalid."""
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        return None


async def get_caller_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> UUID | None:
    """Identity of the caller, or None for anonymous requests."""
    if credentials is None:
        return None
    return caller_id_from_token(credentials.credentials)


async def get_current_user(
    caller_id: Annotated[UUID | None, Depends(get_caller_id)],
    db: DbSession,
) -> User:
    """Load the authenticated user.

    Raises:
        Unauthenticated: token missing, invalid, or user gone
        Forbidden: user account disabled
    """
    if caller_id is None:
        raise Unauthenticated("Invalid authentication token")

    user = await UserService(db).get_by_id(caller_id)
    if user is None:
        raise Unauthenticated("User not found")
    if user.status != "active":
        raise Forbidden("User account is not active")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_redis_service() -> RedisService:
    """Get RedisService instance with shared Redis connection pool."""
    redis = await get_redis()
    return RedisService(redis)


RedisServiceDep = Annotated[RedisService, Depends(get_redis_service)]


async def get_bid_service(db: DbSession, redis_service: RedisServiceDep) -> BidService:
    return BidService(db, redis_service)


async def get_settlement_service(
    db: DbSession, redis_service: RedisServiceDep
) -> SettlementService:
    return SettlementService(db, redis_service)


async def get_auction_service(db: DbSession, redis_service: RedisServiceDep) -> AuctionService:
    return AuctionService(db, redis_service)


async def get_ledger_service(db: DbSession) -> LedgerService:
    return LedgerService(db)


BidServiceDep = Annotated[BidService, Depends(get_bid_service)]
SettlementServiceDep = Annotated[SettlementService, Depends(get_settlement_service)]
AuctionServiceDep = Annotated[AuctionService, Depends(get_auction_service)]
LedgerServiceDep = Annotated[LedgerService, Depends(get_ledger_service)]
VerifierDep = Annotated[ContentVerifier, Depends(get_content_verifier)]
