"""Error taxonomy of the bidding and closing engine.

Each error knows the HTTP status it maps to, so route handlers only need to
let them propagate; ``main.py`` renders them with one exception handler.
"""
from decimal import Decimal


class AuctionError(Exception):
    status_code = 400
    kind = "error"
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def extra(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        body = {"detail": self.detail, "error": self.kind}
        if self.retryable:
            body["retryable"] = True
        body.update(self.extra())
        return body


class ValidationError(AuctionError):
    kind = "validation_error"


class InvalidAmount(ValidationError):
    kind = "invalid_amount"


class NotFound(AuctionError):
    status_code = 404
    kind = "not_found"


class AuctionClosed(AuctionError):
    kind = "auction_closed"


class BidTooLow(AuctionError):
    kind = "bid_too_low"

    def __init__(self, current_bid: Decimal):
        super().__init__(f"Bid must be higher than the current bid of {current_bid}")
        self.current_bid = current_bid

    def extra(self) -> dict:
        return {"current_bid": str(self.current_bid)}


class SelfBid(AuctionError):
    status_code = 403
    kind = "self_bid"

    def __init__(self, detail: str = "You cannot bid on your own auction"):
        super().__init__(detail)


class Conflict(AuctionError):
    status_code = 409
    kind = "conflict"
    retryable = True

    def __init__(self, detail: str = "Auction was modified concurrently, please retry"):
        super().__init__(detail)


class StoreUnavailable(AuctionError):
    status_code = 503
    kind = "store_unavailable"
    retryable = True

    def __init__(self, detail: str = "Auction store is unavailable, please retry"):
        super().__init__(detail)
