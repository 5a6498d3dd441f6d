"""
Domain errors

Raised by the domain services; the API layer maps them to HTTP status codes.
"""


class PortfolioEngineError(Exception):
    """Base class for all engine errors"""


class ValidationError(PortfolioEngineError):
    """Bad input shape (e.g. negative amount). Nothing is persisted."""


class NotFoundError(PortfolioEngineError):
    """Referenced portfolio, holding, cash flow or execution does not exist"""


class InvalidStateError(PortfolioEngineError):
    """Operation not allowed in the entity's current state"""


class InsufficientUnitsError(PortfolioEngineError):
    """Redemption asks for more units than the holding has"""

    def __init__(self, requested, available):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot redeem {requested} units: holding only has {available}"
        )


class InsufficientDataError(PortfolioEngineError):
    """A required figure (usually NAV) is undefined"""


class SnapshotComputationError(PortfolioEngineError):
    """One asset could not be valued (missing price, timeout, bad position)"""

    def __init__(self, message: str, asset_id=None, symbol=None):
        self.asset_id = asset_id
        self.symbol = symbol
        super().__init__(message)


class AggregationIncompleteError(PortfolioEngineError):
    """Some expected assets have no snapshot for the date"""

    def __init__(self, portfolio_id, expected: int, produced: int, missing_asset_ids=None):
        self.portfolio_id = portfolio_id
        self.expected = expected
        self.produced = produced
        self.missing_asset_ids = list(missing_asset_ids or [])
        message = f"Portfolio {portfolio_id}: expected {expected} asset snapshots, found {produced}"
        if self.missing_asset_ids:
            message += f" (missing assets {self.missing_asset_ids})"
        super().__init__(message)


class PersistenceError(PortfolioEngineError):
    """Storage unavailable or a write failed"""
