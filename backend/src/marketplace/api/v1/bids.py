"""Bidding API endpoints."""

from fastapi import APIRouter, Query, status

from marketplace.api.deps import BidServiceDep, CurrentUser, DbSession
from marketplace.schemas.bid import BidCreate, BidResponse, UserBidListResponse, UserBidResponse
from marketplace.services.bid_ledger import BidLedger

router = APIRouter()


@router.post("", response_model=BidResponse, status_code=status.HTTP_201_CREATED)
async def place_bid(
    bid_data: BidCreate,
    current_user: CurrentUser,
    bid_service: BidServiceDep,
):
    """Place a bid. Half of the amount is held in the caller's wallet."""
    return await bid_service.place_bid(current_user.user_id, bid_data.auction_id, bid_data.amount)


@router.get("/me", response_model=UserBidListResponse)
async def get_my_bids(
    current_user: CurrentUser,
    db: DbSession,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    """Get the caller's bids with the state of each auction."""
    bids, total = await BidLedger(db).get_user_bids(current_user.user_id, skip=skip, limit=limit)

    return UserBidListResponse(
        bids=[
            UserBidResponse(
                bid_id=bid.bid_id,
                auction_id=bid.auction_id,
                user_id=bid.user_id,
                amount=bid.amount,
                hold_amount=bid.hold_amount,
                sequence=bid.sequence,
                created_at=bid.created_at,
                auction_title=bid.auction.title,
                auction_status=bid.auction.status,
                auction_current_price=bid.auction.current_price,
                is_leading=bid.amount == bid.auction.current_price,
            )
            for bid in bids
        ],
        total=total,
    )
