"""API v1 routers."""

from marketplace.api.v1 import auctions, auth, bids, wallet

__all__ = ["auctions", "auth", "bids", "wallet"]
