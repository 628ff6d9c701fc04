from enum import Enum
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from datetime import date, timedelta
from pathlib import Path
import warnings

import pandas as pd

from .errors import FxRateUnavailableError

# Default number of calendar days to look back when a rate is missing
DEFAULT_FX_TOLERANCE_DAYS = 5


class Currency(Enum):
    """Supported currencies for exchange rate conversions."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    HKD = "HKD"
    CHF = "CHF"
    RUB = "RUB"
    CAD = "CAD"
    TWD = "TWD"
    SGD = "SGD"
    AUD = "AUD"
    JPY = "JPY"
    KRW = "KRW"
    BRL = "BRL"
    CNY = "CNY"
    MXN = "MXN"
    ZAR = "ZAR"
    THB = "THB"

    @classmethod
    def parse(cls, code: "str | Currency") -> "Currency":
        """Resolve a currency code (case-insensitive) to a Currency.

        Raises:
            ValueError: If the code is not a supported currency.
        """
        if isinstance(code, Currency):
            return code
        return cls(str(code).strip().upper())


class FxRate:
    """A single daily exchange rate observation: 1 base = rate quote."""

    def __init__(self, base_currency: Currency, quote_currency: Currency, rate_date: date, rate: Decimal):
        self.base_currency: Currency = base_currency
        self.quote_currency: Currency = quote_currency
        self.rate_date: date = rate_date
        self.rate: Decimal = rate

    def __repr__(self):
        return f"FxRate({self.base_currency.value}->{self.quote_currency.value}, date={self.rate_date}, rate={self.rate})"


class ExchangeRateManager(ABC):
    """Abstract base class for currency exchange rate providers."""

    @abstractmethod
    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency, rate_date: date) -> Decimal:
        """Get the exchange rate between two currencies on a date.

        Args:
            from_currency: The source currency.
            to_currency: The target currency.
            rate_date: The date for the rate lookup.

        Returns:
            The exchange rate as a Decimal.

        Raises:
            FxRateUnavailableError: If no rate can be found.
        """
        raise NotImplementedError("This method should be overridden by subclasses.")

    def convert(self, amount: Decimal, from_currency: Currency, to_currency: Currency, rate_date: date) -> Decimal:
        """Convert an amount between currencies using the rate on ``rate_date``.

        Amounts already in the target currency are returned unchanged
        without a rate lookup.
        """
        if from_currency == to_currency:
            return amount
        return amount * self.get_exchange_rate(from_currency, to_currency, rate_date)


class FixedExchangeRateManager(ExchangeRateManager):
    """Exchange rate manager using fixed rates that do not vary by date.

    Useful for tests and for single-currency portfolios. Only the direct
    pair is consulted.
    """

    def __init__(self, exchange_rates: dict[tuple[Currency, Currency], Decimal] | None = None):
        """Initialize with optional fixed exchange rates.

        Args:
            exchange_rates: Rates keyed by (from_currency, to_currency).
        """
        self.exchange_rates: dict[tuple[Currency, Currency], Decimal] = dict(exchange_rates or {})

    def set_exchange_rate(self, from_currency: Currency, to_currency: Currency, rate: Decimal):
        """Set or override the exchange rate for a currency pair."""
        self.exchange_rates[(from_currency, to_currency)] = rate

    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency, rate_date: date) -> Decimal:
        if from_currency == to_currency:
            return Decimal("1")

        if (from_currency, to_currency) in self.exchange_rates:
            return self.exchange_rates[(from_currency, to_currency)]

        raise FxRateUnavailableError(from_currency.value, to_currency.value, rate_date, 0)


class HistoricalExchangeRateManager(ExchangeRateManager):
    """Exchange rate manager backed by a table of daily rates.

    Rates are looked up for the direct pair only. When the requested date
    has no observation, the lookup walks backwards day by day up to
    ``tolerance_days`` calendar days (weekends, bank holidays). Rates dated
    after the requested date are never used.

    Lookups are memoised per instance, so one instance should be built per
    computation and discarded with it.
    """

    def __init__(self, rates: list[FxRate], tolerance_days: int = DEFAULT_FX_TOLERANCE_DAYS):
        """Initialize from a list of rate observations.

        Args:
            rates: Daily rate observations. A later duplicate for the same
                pair and date replaces an earlier one.
            tolerance_days: How many calendar days before the requested date
                may be used when the date itself has no rate.
        """
        if tolerance_days < 0:
            raise ValueError("tolerance_days must be non-negative")

        self.tolerance_days = tolerance_days

        # {(date, "EUR->USD"): Decimal}
        self.exchange_rates: dict[tuple[date, str], Decimal] = {}
        for fx_rate in rates:
            pair = f"{fx_rate.base_currency.value}->{fx_rate.quote_currency.value}"
            self.exchange_rates[(fx_rate.rate_date, pair)] = fx_rate.rate

        self._cache: dict[tuple[str, date], Decimal | None] = {}

    def _get_rate_for_pair(self, pair: str, rate_date: date) -> Decimal | None:
        """Find the most recent rate for a pair on or before ``rate_date``.

        Args:
            pair: Currency pair string in "XXX->YYY" format.
            rate_date: The date to start the lookback from.

        Returns:
            The rate, or None if nothing was found within the tolerance window.
        """
        key = (pair, rate_date)
        if key in self._cache:
            return self._cache[key]

        rate: Decimal | None = None
        for days_back in range(self.tolerance_days + 1):
            lookup_date = rate_date - timedelta(days=days_back)
            if (lookup_date, pair) in self.exchange_rates:
                rate = self.exchange_rates[(lookup_date, pair)]
                break

        self._cache[key] = rate
        return rate

    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency, rate_date: date) -> Decimal:
        if from_currency == to_currency:
            return Decimal("1")

        pair = f"{from_currency.value}->{to_currency.value}"
        rate = self._get_rate_for_pair(pair, rate_date)
        if rate is None:
            raise FxRateUnavailableError(from_currency.value, to_currency.value, rate_date, self.tolerance_days)
        return rate


def load_fx_rates_from_csv(file_path: str | Path) -> list[FxRate]:
    """
    Load daily exchange rates from a CSV file.

    Expected columns (case-insensitive): BASE, QUOTE, DATE, RATE.
    Rows with a blank or non-positive rate are skipped with a single warning.

    Args:
        file_path: Path to the CSV file.

    Returns:
        A list of FxRate observations in file order.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a required column is missing or a currency is unknown.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"FX rate file not found: {path}")

    df = pd.read_csv(path, dtype=str)
    df.columns = [str(c).strip().upper() for c in df.columns]

    required_columns = {"BASE", "QUOTE", "DATE", "RATE"}
    missing_columns = required_columns - set(df.columns)
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

    rates: list[FxRate] = []
    skipped = 0
    for _, row in df.iterrows():
        raw_rate = row["RATE"]
        if pd.isna(raw_rate) or not str(raw_rate).strip():
            skipped += 1
            continue
        try:
            rate = Decimal(str(raw_rate).strip())
        except InvalidOperation:
            raise ValueError(f"Not a number: {raw_rate!r}") from None
        if rate <= 0:
            skipped += 1
            continue

        rates.append(FxRate(
            base_currency=Currency.parse(row["BASE"]),
            quote_currency=Currency.parse(row["QUOTE"]),
            rate_date=pd.to_datetime(row["DATE"]).date(),
            rate=rate,
        ))

    if skipped:
        warnings.warn(
            f"Skipped {skipped} rows in '{path}' with a missing or non-positive rate.",
            UserWarning
        )

    return rates
