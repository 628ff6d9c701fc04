"""Error types raised by the performance engine.

Every error derives from :class:`PerformanceEngineError`, which is a
``ValueError`` so that callers catching ``ValueError`` keep working.
"""

from dataclasses import dataclass
from datetime import date


class PerformanceEngineError(ValueError):
    """Base class for all engine errors."""

    kind = "error"


class InvalidTransactionError(PerformanceEngineError):
    """A transaction record is malformed and cannot be processed."""

    kind = "invalid_transaction"

    def __init__(self, transaction_id: str | None, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Invalid transaction {transaction_id or '<no id>'}: {reason}")


class FxRateUnavailableError(PerformanceEngineError):
    """No usable exchange rate exists within the tolerance window."""

    kind = "fx_rate_unavailable"

    def __init__(self, from_currency: str, to_currency: str, rate_date: date, tolerance_days: int):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.rate_date = rate_date
        self.tolerance_days = tolerance_days
        super().__init__(
            f"Exchange rate from {from_currency} to {to_currency} not available for date "
            f"{rate_date.isoformat()} or the previous {tolerance_days} days."
        )


class PriceUnavailableError(PerformanceEngineError):
    """No close price exists for a symbol within the staleness tolerance."""

    kind = "price_unavailable"

    def __init__(self, symbol: str, price_date: date, tolerance_days: int):
        self.symbol = symbol
        self.price_date = price_date
        self.tolerance_days = tolerance_days
        super().__init__(
            f"No price for {symbol} on {price_date.isoformat()} "
            f"or the previous {tolerance_days} days."
        )


class UndefinedReturnError(PerformanceEngineError):
    """A return is mathematically undefined (zero or negative denominator)."""

    kind = "undefined_return"

    def __init__(self, start: date, end: date, reason: str):
        self.start = start
        self.end = end
        self.reason = reason
        super().__init__(f"Return undefined for {start.isoformat()} to {end.isoformat()}: {reason}")


@dataclass(frozen=True)
class Issue:
    """A problem that left part of a result without a value.

    Aggregating components record one Issue per affected item or window
    instead of failing the whole request.
    """

    scope: str
    kind: str
    message: str
    issue_date: date | None = None
    symbol: str | None = None

    @classmethod
    def from_error(
        cls,
        scope: str,
        error: PerformanceEngineError,
        issue_date: date | None = None,
        symbol: str | None = None,
    ) -> "Issue":
        return cls(scope=scope, kind=error.kind, message=str(error), issue_date=issue_date, symbol=symbol)

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "date": self.issue_date.isoformat() if self.issue_date else None,
            "symbol": self.symbol,
            "kind": self.kind,
            "message": self.message,
        }
