"""Auction listing, browsing and closing endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from marketplace.api.deps import (
    AuctionServiceDep,
    CurrentUser,
    SettlementServiceDep,
    VerifierDep,
)
from marketplace.middleware.metrics import record_settlement
from marketplace.schemas.auction import (
    AuctionBidEntry,
    AuctionCreate,
    AuctionDetailResponse,
    AuctionListResponse,
    AuctionResponse,
    AuctionSnapshot,
    SettlementResponse,
    VerificationRequest,
    VerificationResponse,
)
from marketplace.services.bid_ledger import bid_precedence_key
from marketplace.services.errors import AlreadyEnded, MarketplaceError, NotFound

router = APIRouter()


@router.post("/verify", response_model=VerificationResponse)
async def verify_media(
    request: VerificationRequest,
    current_user: CurrentUser,
    verifier: VerifierDep,
):
    """Run content verification on listing media before submitting the listing."""
    result = await verifier.verify(request.media, request.description)
    return VerificationResponse(
        approved=result.approved,
        message=result.message,
        details=result.details,
    )


@router.post("", response_model=AuctionResponse, status_code=status.HTTP_201_CREATED)
async def create_auction(
    auction_data: AuctionCreate,
    current_user: CurrentUser,
    auction_service: AuctionServiceDep,
    verifier: VerifierDep,
):
    """List a new item.

    The media is verified server-side and the outcome stored on the listing.
    """
    verification = await verifier.verify(auction_data.media, auction_data.description)
    return await auction_service.create(
        current_user.user_id, auction_data, verified=verification.approved
    )


@router.get("", response_model=AuctionListResponse)
async def list_auctions(
    auction_service: AuctionServiceDep,
    category: str | None = Query(None),
    search: str | None = Query(None, max_length=100),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get auctions still open for bidding."""
    auctions, total = await auction_service.list_active(
        category=category, search=search, skip=skip, limit=limit
    )
    return AuctionListResponse(auctions=auctions, total=total)


@router.get("/mine", response_model=AuctionListResponse)
async def list_my_auctions(
    current_user: CurrentUser,
    auction_service: AuctionServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get the caller's own listings, including ended ones."""
    auctions, total = await auction_service.get_user_auctions(
        current_user.user_id, skip=skip, limit=limit
    )
    return AuctionListResponse(auctions=auctions, total=total)


@router.get("/{auction_id}", response_model=AuctionDetailResponse)
async def get_auction(auction_id: UUID, auction_service: AuctionServiceDep):
    """Get auction by ID with seller and bids (highest first)."""
    auction = await auction_service.get_detail(auction_id)
    if auction is None:
        raise NotFound("Product not found")

    bids = sorted(auction.bids, key=bid_precedence_key)
    return AuctionDetailResponse(
        **AuctionResponse.model_validate(auction).model_dump(),
        seller_name=auction.seller.username if auction.seller else None,
        bids=[
            AuctionBidEntry(
                bid_id=bid.bid_id,
                user_id=bid.user_id,
                username=bid.user.username if bid.user else None,
                amount=bid.amount,
                created_at=bid.created_at,
            )
            for bid in bids
        ],
    )


@router.get("/{auction_id}/price", response_model=AuctionSnapshot)
async def poll_auction(auction_id: UUID, auction_service: AuctionServiceDep):
    """Current price and status, for clients polling for updates."""
    snapshot = await auction_service.get_snapshot(auction_id)
    if snapshot is None:
        raise NotFound("Product not found")
    return snapshot


@router.post("/{auction_id}/close", response_model=SettlementResponse)
async def close_auction(
    auction_id: UUID,
    current_user: CurrentUser,
    settlement_service: SettlementServiceDep,
):
    """End an auction early (seller only) and settle it."""
    try:
        result = await settlement_service.settle(current_user.user_id, auction_id)
    except AlreadyEnded:
        record_settlement("seller", "skipped")
        raise
    except MarketplaceError:
        record_settlement("seller", "error")
        raise
    record_settlement("seller", "settled", refunds=result.refund_count)
    return SettlementResponse(
        auction_id=result.auction_id,
        winner_id=result.winner_id,
        final_price=result.final_price,
        refund_count=result.refund_count,
        refunded_total=result.refunded_total,
    )
