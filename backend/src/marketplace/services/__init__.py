"""Business logic services."""

from marketplace.services.auction_service import AuctionService
from marketplace.services.bid_ledger import BidLedger
from marketplace.services.bid_service import BidService
from marketplace.services.ledger_service import LedgerService
from marketplace.services.redis_service import RedisService
from marketplace.services.settlement_service import SettlementResult, SettlementService

__all__ = [
    "AuctionService",
    "BidLedger",
    "BidService",
    "LedgerService",
    "RedisService",
    "SettlementResult",
    "SettlementService",
]
