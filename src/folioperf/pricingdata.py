from abc import ABC, abstractmethod
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from datetime import date, timedelta
from pathlib import Path
import warnings

import pandas as pd

from .errors import PriceUnavailableError

# Default number of calendar days a close price may be carried forward
DEFAULT_PRICE_STALENESS_DAYS = 10


class PriceBar:
    """One daily bar for a symbol: close plus optional corporate actions."""

    def __init__(
        self,
        symbol: str,
        bar_date: date,
        close: Decimal,
        dividend_amount: Decimal | None = None,
        split_ratio: Decimal | None = None,
    ):
        """Initialize a PriceBar.

        Args:
            symbol: Ticker symbol (e.g., "AAPL").
            bar_date: Trading day of the bar.
            close: Closing price, in the symbol's trading currency.
            dividend_amount: Per-share dividend going ex on this day, if any.
                Kept for reference only: dividend income is booked from
                DIVIDEND transactions, never from price bars.
            split_ratio: New shares per old share for a split effective this
                day (2 for a 2-for-1 split), if any.
        """
        self.symbol: str = symbol
        self.bar_date: date = bar_date
        self.close: Decimal = close
        self.dividend_amount: Decimal | None = dividend_amount
        self.split_ratio: Decimal | None = split_ratio

    def __repr__(self):
        return f"PriceBar(symbol={self.symbol}, date={self.bar_date}, close={self.close})"


class PricePoint:
    """A resolved price for a symbol as of a date."""

    def __init__(self, symbol: str, price_date: date, price: Decimal, stale: bool = False):
        """Initialize a PricePoint.

        Args:
            symbol: Ticker symbol.
            price_date: Date of the observation the price was taken from.
            price: The close price as a Decimal.
            stale: True when the observation predates the requested date.
        """
        self.symbol: str = symbol
        self.price_date: date = price_date
        self.price: Decimal = price
        self.stale: bool = stale

    def __repr__(self):
        return f"PricePoint(symbol={self.symbol}, date={self.price_date}, price={self.price}, stale={self.stale})"


class PricingDataManager(ABC):
    """Abstract base class for all pricing data providers."""

    @abstractmethod
    def get_price_point(self, symbol: str, price_date: date) -> PricePoint:
        raise NotImplementedError("This method should be overridden by subclasses.")

    def get_split_factor(self, symbol: str, after: date, through: date) -> Decimal:
        """Cumulative split ratio for splits dated in ``(after, through]``.

        Providers without corporate action data report no splits.
        """
        return Decimal("1")


class FixedPricingDataManager(PricingDataManager):
    """Pricing manager that returns a fixed price for any symbol/date."""

    def __init__(self, price_for_everything: Decimal = Decimal("1.0")):
        self.price = price_for_everything

    def get_price_point(self, symbol: str, price_date: date) -> PricePoint:
        return PricePoint(symbol=symbol, price_date=price_date, price=self.price)


class PriceHistoryManager(PricingDataManager):
    """Pricing manager backed by daily price bars.

    Returns the close on the requested date when there is one, otherwise the
    latest earlier close no older than ``staleness_days`` (flagged stale).
    Closes dated after the requested date are never used.

    Lookups are memoised per instance, so one instance should be built per
    computation and discarded with it.
    """

    def __init__(self, bars: list[PriceBar], staleness_days: int = DEFAULT_PRICE_STALENESS_DAYS):
        if staleness_days < 0:
            raise ValueError("staleness_days must be non-negative")

        self.staleness_days = staleness_days
        self._closes: dict[tuple[str, date], Decimal] = {}
        self._splits: dict[str, list[tuple[date, Decimal]]] = defaultdict(list)
        self._cache: dict[tuple[str, date], PricePoint | None] = {}

        for bar in bars:
            symbol = bar.symbol.strip().upper()
            self._closes[(symbol, bar.bar_date)] = bar.close
            if bar.split_ratio is not None and bar.split_ratio != 1:
                self._splits[symbol].append((bar.bar_date, bar.split_ratio))

        for symbol_splits in self._splits.values():
            symbol_splits.sort(key=lambda s: s[0])

    def get_price_point(self, symbol: str, price_date: date) -> PricePoint:
        """Resolve the close for ``symbol`` as of ``price_date``.

        Raises:
            PriceUnavailableError: If no close exists within the staleness window.
        """
        symbol = symbol.strip().upper()
        key = (symbol, price_date)
        if key not in self._cache:
            self._cache[key] = self._lookup(symbol, price_date)

        price_point = self._cache[key]
        if price_point is None:
            raise PriceUnavailableError(symbol, price_date, self.staleness_days)
        return price_point

    def _lookup(self, symbol: str, price_date: date) -> PricePoint | None:
        for days_back in range(self.staleness_days + 1):
            lookup_date = price_date - timedelta(days=days_back)
            close = self._closes.get((symbol, lookup_date))
            if close is not None:
                return PricePoint(symbol, lookup_date, close, stale=days_back > 0)
        return None

    def get_split_factor(self, symbol: str, after: date, through: date) -> Decimal:
        factor = Decimal("1")
        for split_date, ratio in self._splits.get(symbol.strip().upper(), []):
            if after < split_date <= through:
                factor *= ratio
        return factor


def _optional_decimal(value) -> Decimal | None:
    if pd.isna(value) or not str(value).strip():
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}") from None


def load_price_bars_from_csv(file_path: str | Path) -> list[PriceBar]:
    """
    Load daily price bars from a CSV file.

    Expected columns (case-insensitive): SYMBOL, DATE, CLOSE, and optionally
    DIVIDEND and SPLIT. Rows without a close are skipped with a single warning.

    Args:
        file_path: Path to the CSV file.

    Returns:
        A list of PriceBar objects in file order.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a required column is missing.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Price file not found: {path}")

    df = pd.read_csv(path, dtype=str)
    df.columns = [str(c).strip().upper() for c in df.columns]

    required_columns = {"SYMBOL", "DATE", "CLOSE"}
    missing_columns = required_columns - set(df.columns)
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

    bars: list[PriceBar] = []
    skipped = 0
    for _, row in df.iterrows():
        close = _optional_decimal(row["CLOSE"])
        if close is None:
            skipped += 1
            continue

        bars.append(PriceBar(
            symbol=str(row["SYMBOL"]).strip().upper(),
            bar_date=pd.to_datetime(row["DATE"]).date(),
            close=close,
            dividend_amount=_optional_decimal(row["DIVIDEND"]) if "DIVIDEND" in df.columns else None,
            split_ratio=_optional_decimal(row["SPLIT"]) if "SPLIT" in df.columns else None,
        ))

    if skipped:
        warnings.warn(f"Skipped {skipped} rows in '{path}' without a close price.", UserWarning)

    return bars
