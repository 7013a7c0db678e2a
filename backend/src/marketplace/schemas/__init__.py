"""Pydantic schemas for request/response validation."""

from marketplace.schemas.auction import (
    AuctionCreate,
    AuctionDetailResponse,
    AuctionListResponse,
    AuctionResponse,
    AuctionSnapshot,
    DurationSpec,
    ImageMedia,
    Media,
    SettlementResponse,
    VerificationRequest,
    VerificationResponse,
    VideoMedia,
)
from marketplace.schemas.bid import BidCreate, BidResponse, UserBidListResponse, UserBidResponse
from marketplace.schemas.user import TokenResponse, UserLogin, UserRegister, UserResponse
from marketplace.schemas.wallet import (
    DepositCreate,
    TransactionListResponse,
    TransactionResponse,
    WalletResponse,
)

__all__ = [
    "UserRegister",
    "UserLogin",
    "UserResponse",
    "TokenResponse",
    "DepositCreate",
    "WalletResponse",
    "TransactionResponse",
    "TransactionListResponse",
    "ImageMedia",
    "VideoMedia",
    "Media",
    "DurationSpec",
    "AuctionCreate",
    "AuctionResponse",
    "AuctionDetailResponse",
    "AuctionListResponse",
    "AuctionSnapshot",
    "SettlementResponse",
    "VerificationRequest",
    "VerificationResponse",
    "BidCreate",
    "BidResponse",
    "UserBidResponse",
    "UserBidListResponse",
]
