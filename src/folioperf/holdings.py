from bisect import bisect_right
from collections import defaultdict
from datetime import date
from decimal import Decimal

from .currency import Currency
from .normalizer import normalize_transactions
from .portfolio import TRADE_TRANSACTION_TYPES, DividendTreatment, Portfolio, Transaction, TransactionType


class Holding():
    """Quantity and cost of one symbol at a point in time."""

    def __init__(self, symbol: str, quantity: Decimal, cost_basis: Decimal, currency: Currency):
        """Initialize a Holding.

        Args:
            symbol: Ticker symbol.
            quantity: Shares held. Negative for a short position.
            cost_basis: Average-cost book value in ``currency``. Negative for
                a short position (the proceeds received).
            currency: Trading currency, taken from the most recent trade.
        """
        self.symbol: str = symbol
        self.quantity: Decimal = quantity
        self.cost_basis: Decimal = cost_basis
        self.currency: Currency = currency

    @property
    def average_cost(self) -> Decimal | None:
        if self.quantity == 0:
            return None
        return self.cost_basis / self.quantity

    def __repr__(self):
        return f"Holding(symbol={self.symbol}, quantity={self.quantity}, cost_basis={self.cost_basis}, currency={self.currency.value})"


class PortfolioState():
    """Cash balances and holdings after all transactions dated on or before ``as_of``."""

    def __init__(self, as_of: date, cash: dict[Currency, Decimal], holdings: dict[str, Holding]):
        self.as_of: date = as_of
        self.cash: dict[Currency, Decimal] = cash
        self.holdings: dict[str, Holding] = holdings

    def open_holdings(self) -> list[Holding]:
        """Holdings with a nonzero quantity, in symbol order."""
        return [self.holdings[s] for s in sorted(self.holdings) if self.holdings[s].quantity != 0]

    def __repr__(self):
        return f"PortfolioState(as_of={self.as_of}, cash={self.cash}, holdings={self.open_holdings()})"


def _apply_trade(holding: Holding, delta: Decimal, price: Decimal, fees: Decimal) -> None:
    """Update quantity and average-cost basis for a signed share delta."""
    quantity = holding.quantity

    if delta > 0:
        if quantity < 0:
            # Covering a short: release short basis proportionally
            cover_quantity = min(delta, -quantity)
            holding.cost_basis += holding.cost_basis / quantity * cover_quantity
            long_quantity = delta - cover_quantity
            if long_quantity > 0:
                holding.cost_basis += long_quantity * price + fees
        else:
            holding.cost_basis += delta * price + fees
    else:
        sold = -delta
        if quantity > 0:
            sell_from_long = min(sold, quantity)
            holding.cost_basis -= holding.cost_basis / quantity * sell_from_long
            short_quantity = sold - sell_from_long
            if short_quantity > 0:
                holding.cost_basis -= short_quantity * price
        else:
            holding.cost_basis -= sold * price

    holding.quantity = quantity + delta
    if holding.quantity == 0:
        holding.cost_basis = Decimal("0")


def replay_transactions(
    transactions: list[Transaction],
    as_of: date,
    dividend_treatment: DividendTreatment = DividendTreatment.REINVESTED,
) -> PortfolioState:
    """
    Replay normalized transactions up to and including ``as_of``.

    Args:
        transactions: Output of :func:`folioperf.normalizer.normalize_transactions`.
        as_of: Last transaction date to include.
        dividend_treatment: REINVESTED credits dividends to cash; PAID_OUT
            leaves cash untouched (the dividend leaves the portfolio).

    Returns:
        The resulting PortfolioState. Cash balances may be negative (margin);
        zero balances are dropped.
    """
    cash: dict[Currency, Decimal] = defaultdict(Decimal)
    holdings: dict[str, Holding] = {}

    for txn in transactions:
        if txn.transaction_date > as_of:
            break

        currency = Currency.parse(txn.currency)
        quantity = Decimal(txn.quantity)
        price = Decimal(txn.price)
        fees = Decimal(txn.fees or 0)
        amount = abs(quantity) * price

        if txn.transaction_type in TRADE_TRANSACTION_TYPES:
            if txn.transaction_type == TransactionType.BUY:
                cash[currency] -= amount + fees
            else:
                cash[currency] += amount - fees
            holding = holdings.setdefault(txn.symbol, Holding(txn.symbol, Decimal("0"), Decimal("0"), currency))
            _apply_trade(holding, quantity, price, fees)
            holding.currency = currency

        elif txn.transaction_type == TransactionType.DEPOSIT:
            cash[currency] += amount - fees

        elif txn.transaction_type == TransactionType.WITHDRAWAL:
            cash[currency] -= amount + fees

        elif txn.transaction_type == TransactionType.FEE:
            cash[currency] -= amount + fees

        elif txn.transaction_type == TransactionType.DIVIDEND:
            if dividend_treatment == DividendTreatment.REINVESTED:
                cash[currency] += amount - fees

    return PortfolioState(
        as_of=as_of,
        cash={curr: bal for curr, bal in cash.items() if bal != 0},
        holdings=holdings,
    )


class PortfolioValuer():
    """Values a portfolio in its base currency on arbitrary dates.

    Transactions are normalized once when the valuer is built; states and
    values are memoised per date for the lifetime of the valuer.
    """

    def __init__(self, portfolio: Portfolio, transactions: list[Transaction] | None = None, split_horizon: date | None = None):
        """Initialize a PortfolioValuer.

        Args:
            portfolio: Portfolio holding the transactions and reference data.
            transactions: Already normalized transactions. When None, the
                portfolio's transactions are normalized here.
            split_horizon: Last split date reflected in the transaction
                quantities. Passed to the normalizer when normalizing here,
                and used to restate closes in the same share units. None
                means every known split.

        Raises:
            InvalidTransactionError: If normalization rejects a transaction.
        """
        self.portfolio = portfolio
        if transactions is None:
            transactions = normalize_transactions(
                portfolio.transactions,
                pricing_manager=portfolio.pricing_manager,
                split_horizon=split_horizon,
                allow_short_positions=portfolio.allow_short_positions,
            )
        self.transactions: list[Transaction] = transactions
        self.split_horizon: date | None = split_horizon
        self._dates: list[date] = [txn.transaction_date for txn in transactions]
        self._states: dict[date, PortfolioState] = {}
        self._values: dict[date, Decimal] = {}

    def state_on(self, as_of: date) -> PortfolioState:
        if as_of not in self._states:
            included = self.transactions[:bisect_right(self._dates, as_of)]
            self._states[as_of] = replay_transactions(included, as_of, self.portfolio.dividend_treatment)
        return self._states[as_of]

    def holding_value(self, holding: Holding, valuation_date: date) -> Decimal:
        """Market value of one holding in the base currency.

        Quantities are expressed in share units as of ``split_horizon``, so a
        close observed before a later split is divided by that split ratio.

        Raises:
            PriceUnavailableError: If the symbol has no usable close.
            FxRateUnavailableError: If the conversion rate is missing.
        """
        pricing_manager = self.portfolio.pricing_manager
        price_point = pricing_manager.get_price_point(holding.symbol, valuation_date)
        split_factor = pricing_manager.get_split_factor(
            holding.symbol, price_point.price_date, self.split_horizon or date.max
        )
        return self.portfolio.exchange_rate_manager.convert(
            holding.quantity * price_point.price / split_factor,
            holding.currency,
            self.portfolio.base_currency,
            valuation_date,
        )

    def value_on(self, valuation_date: date) -> Decimal:
        """
        Total value (cash + holdings) at the end of ``valuation_date``.

        Includes every transaction dated on or before the date, so external
        flows on that day are already in the value.

        Raises:
            PriceUnavailableError: If a held symbol has no usable close.
            FxRateUnavailableError: If a needed conversion rate is missing.
        """
        if valuation_date not in self._values:
            state = self.state_on(valuation_date)
            total = Decimal("0")
            for currency, balance in state.cash.items():
                total += self.portfolio.exchange_rate_manager.convert(
                    balance, currency, self.portfolio.base_currency, valuation_date
                )
            for holding in state.open_holdings():
                total += self.holding_value(holding, valuation_date)
            self._values[valuation_date] = total
        return self._values[valuation_date]
