"""Errors raised by the marketplace services.

Every error carries a stable ``code`` and the HTTP status the API answers
with; ``message`` is meant for the person who triggered it.
"""


class MarketplaceError(Exception):
    """Base class for rejected marketplace operations."""

    code = "MARKETPLACE_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return self.code.replace("_", " ").capitalize()

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class Unauthenticated(MarketplaceError):
    code = "UNAUTHENTICATED"
    status_code = 401

    def default_message(self) -> str:
        return "You must be logged in"


class NotFound(MarketplaceError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(MarketplaceError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidInput(MarketplaceError):
    code = "INVALID_INPUT"
    status_code = 400


class AuctionNotActive(MarketplaceError):
    code = "AUCTION_NOT_ACTIVE"
    status_code = 409

    def default_message(self) -> str:
        return "This auction has ended"


class AlreadyEnded(MarketplaceError):
    code = "ALREADY_ENDED"
    status_code = 409

    def default_message(self) -> str:
        return "This auction has already ended"


class BidTooLow(MarketplaceError):
    code = "BID_TOO_LOW"
    status_code = 400

    def default_message(self) -> str:
        return "Bid amount must be higher than current price"


class SelfBid(MarketplaceError):
    code = "SELF_BID"
    status_code = 403

    def default_message(self) -> str:
        return "You cannot bid on your own product"


class InsufficientFunds(MarketplaceError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 402


class Conflict(MarketplaceError):
    """Lost a race against a concurrent operation; safe to retry."""

    code = "CONFLICT"
    status_code = 409
    retryable = True

    def default_message(self) -> str:
        return "The auction changed while processing your request, please retry"


class StorageFailure(MarketplaceError):
    code = "STORAGE_FAILURE"
    status_code = 503
    retryable = True

    def default_message(self) -> str:
        return "A storage error occurred, nothing was changed"
