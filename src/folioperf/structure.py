"""Portfolio allocation (structure) at a point in time."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from .currency import Currency
from .errors import FxRateUnavailableError, Issue, PriceUnavailableError
from .holdings import PortfolioValuer
from .portfolio import Portfolio


@dataclass
class StructureItem:
    """One held symbol with its value in the base currency."""
    symbol: str
    quantity: Decimal
    price: Decimal
    value: Decimal
    weight: float | None
    currency: Currency
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "quantity": float(self.quantity),
            "price": float(self.price),
            "value": float(self.value),
            "weight": self.weight,
            "currency": self.currency.value,
            "stale": self.stale,
        }


@dataclass
class StructureResult:
    """Allocation snapshot. ``total_value`` is the sum of the item values."""
    as_of: date
    base_currency: Currency
    total_value: Decimal
    items: list[StructureItem]
    issues: list[Issue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "asOf": self.as_of.isoformat(),
            "baseCurrency": self.base_currency.value,
            "totalValue": float(self.total_value),
            "items": [item.to_dict() for item in self.items],
            "issues": [issue.to_dict() for issue in self.issues],
        }


def calculate_portfolio_structure(
    portfolio: Portfolio,
    as_of: date,
    valuer: PortfolioValuer | None = None,
) -> StructureResult:
    """
    Calculate holdings, market values and weights as of a date.

    Each symbol with a nonzero quantity is priced as of ``as_of`` and
    converted to the base currency. A symbol that cannot be priced or
    converted is left out of the items and the total, and reported as an
    issue. Cash is not part of the structure.

    Weights are ``value / total_value`` and sum to 1 when the total is
    positive. A zero total gives no items; a negative total (net short)
    keeps the items with a weight of None.

    Args:
        portfolio: Portfolio to evaluate.
        as_of: Valuation date. Transactions on this date are included.
        valuer: Valuer to reuse. Built from ``portfolio`` when None.

    Returns:
        A StructureResult with items sorted by value, largest first.

    Raises:
        InvalidTransactionError: If a transaction is malformed.
    """
    valuer = valuer or PortfolioValuer(portfolio, split_horizon=as_of)
    state = valuer.state_on(as_of)

    items: list[StructureItem] = []
    issues: list[Issue] = []

    for holding in state.open_holdings():
        try:
            price_point = portfolio.pricing_manager.get_price_point(holding.symbol, as_of)
            value = valuer.holding_value(holding, as_of)
        except (PriceUnavailableError, FxRateUnavailableError) as e:
            issues.append(Issue.from_error("item", e, issue_date=as_of, symbol=holding.symbol))
            continue

        items.append(StructureItem(
            symbol=holding.symbol,
            quantity=holding.quantity,
            price=value / holding.quantity,
            value=value,
            weight=None,
            currency=holding.currency,
            stale=price_point.stale,
        ))

    total_value = sum((item.value for item in items), Decimal("0"))

    if total_value == 0:
        items = []
    elif total_value > 0:
        for item in items:
            item.weight = float(item.value / total_value)

    items.sort(key=lambda item: (-item.value, item.symbol))

    return StructureResult(
        as_of=as_of,
        base_currency=portfolio.base_currency,
        total_value=total_value,
        items=items,
        issues=issues,
    )
