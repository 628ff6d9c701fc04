from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union
import json
import warnings

import pandas as pd
from openpyxl import Workbook

from .currency import Currency, ExchangeRateManager, FixedExchangeRateManager, FxRate, HistoricalExchangeRateManager
from .pricingdata import PriceBar, PriceHistoryManager, PricingDataManager

if TYPE_CHECKING:
    from .config import EngineSettings


class TransactionType(Enum):
    """Enumeration of supported portfolio transaction types."""

    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    FEE = "FEE"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"

    @classmethod
    def parse(cls, value: "str | TransactionType") -> "TransactionType":
        """Resolve a transaction type name, accepting CASH_IN/CASH_OUT aliases.

        Raises:
            ValueError: If the name is not a known transaction type.
        """
        if isinstance(value, TransactionType):
            return value
        name = str(value).strip().upper().replace(" ", "_")
        return cls(_TRANSACTION_TYPE_ALIASES.get(name, name))


_TRANSACTION_TYPE_ALIASES = {
    "CASH_IN": "DEPOSIT",
    "CASH_OUT": "WITHDRAWAL",
}


class CashFlowKind(Enum):
    """Whether a money movement changes the capital invested by the investor."""

    EXTERNAL = "external"
    INTERNAL = "internal"


class DividendTreatment(Enum):
    """How dividends enter the return calculation."""

    # Dividend stays in the portfolio as cash and counts as return.
    REINVESTED = "reinvested"
    # Dividend leaves the portfolio; recorded as a negative external flow.
    PAID_OUT = "paid_out"

    @classmethod
    def parse(cls, value: "str | DividendTreatment") -> "DividendTreatment":
        if isinstance(value, DividendTreatment):
            return value
        return cls(str(value).strip().lower().replace("-", "_"))


EXTERNAL_TRANSACTION_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.WITHDRAWAL})
TRADE_TRANSACTION_TYPES = frozenset({TransactionType.BUY, TransactionType.SELL})


class Transaction():
    """A single portfolio transaction (buy, sell, cash movement, etc.).

    Raw transactions may carry loosely typed fields (a currency code string,
    float quantities); :func:`folioperf.normalizer.normalize_transactions`
    validates them and returns clean copies.
    """

    def __init__(
        self,
        symbol: str,
        transaction_date: date,
        transaction_type: TransactionType,
        quantity: Union[float, int, Decimal],
        price: Union[float, int, Decimal],
        currency: Union[Currency, str] = Currency.USD,
        fees: Union[float, int, Decimal, None] = None,
        transaction_id: str | None = None,
    ):
        """Initialize a Transaction.

        Args:
            symbol: Ticker symbol. May be empty for deposits, withdrawals and
                account-level fees.
            transaction_date: Day the transaction occurred.
            transaction_type: The type of transaction.
            quantity: Number of shares/units. For deposits, withdrawals and
                fees, the number of units of ``price`` (usually 1 or the
                amount itself with a price of 1).
            price: Price per share/unit, in the transaction currency.
            currency: Currency of the transaction.
            fees: Optional commission charged on top, in the transaction currency.
            transaction_id: Identifier from the system of record.
        """
        self.symbol: str = symbol
        self.transaction_date: date = transaction_date
        self.transaction_type: TransactionType = transaction_type
        self.quantity: Union[float, int, Decimal] = quantity
        self.price: Union[float, int, Decimal] = price
        self.currency: Union[Currency, str] = currency
        self.fees: Union[float, int, Decimal, None] = fees
        self.transaction_id: str | None = transaction_id

    @property
    def amount(self) -> Decimal:
        """Monetary size of the transaction (``|quantity| × price``), before fees."""
        return abs(Decimal(str(self.quantity))) * Decimal(str(self.price))

    @property
    def is_external(self) -> bool:
        """True for deposits and withdrawals (investor capital movements)."""
        return self.transaction_type in EXTERNAL_TRANSACTION_TYPES

    @property
    def cash_flow_kind(self) -> CashFlowKind:
        return CashFlowKind.EXTERNAL if self.is_external else CashFlowKind.INTERNAL

    def __repr__(self):
        currency = self.currency.value if isinstance(self.currency, Currency) else self.currency
        return (
            f"Transaction(id={self.transaction_id}, ticker={self.symbol}, date={self.transaction_date}, "
            f"type={self.transaction_type}, quantity={self.quantity}, price={self.price}, currency={currency})"
        )


class Portfolio():
    """A collection of transactions plus the reference data needed to value them.

    A Portfolio is meant to live for a single computation: its pricing and
    exchange rate managers memoise lookups, so build a fresh one per request.
    """

    def __init__(
        self,
        transactions: list[Transaction],
        base_currency: Currency = Currency.USD,
        exchange_rate_manager: ExchangeRateManager | None = None,
        pricing_manager: PricingDataManager | None = None,
        dividend_treatment: DividendTreatment = DividendTreatment.REINVESTED,
        allow_short_positions: bool = False,
    ):
        """Initialize a Portfolio.

        Args:
            transactions: List of transactions, in any order.
            base_currency: The currency all results are reported in.
            exchange_rate_manager: Manager for currency conversions. Defaults
                to a FixedExchangeRateManager with no rates, which only
                supports single-currency portfolios.
            pricing_manager: Manager for close prices. Defaults to a
                PriceHistoryManager with no bars.
            dividend_treatment: Whether dividends are reinvested or paid out.
            allow_short_positions: If False, selling more than is held is
                rejected as an invalid transaction.
        """
        self.transactions: list[Transaction] = transactions
        self.base_currency = base_currency
        self.exchange_rate_manager = exchange_rate_manager or FixedExchangeRateManager()
        self.pricing_manager = pricing_manager or PriceHistoryManager([])
        self.dividend_treatment = dividend_treatment
        self.allow_short_positions = allow_short_positions

    @classmethod
    def from_snapshots(
        cls,
        transactions: list[Transaction],
        price_bars: list[PriceBar],
        fx_rates: list[FxRate],
        settings: "EngineSettings",
    ) -> "Portfolio":
        """Build a Portfolio with fresh request-scoped managers.

        Args:
            transactions: Transactions fetched for the account.
            price_bars: Daily bars for every symbol the transactions reference.
            fx_rates: Daily rates for every currency pair needed.
            settings: Tolerances and policies for the computation.
        """
        return cls(
            transactions=transactions,
            base_currency=settings.base_currency,
            exchange_rate_manager=HistoricalExchangeRateManager(fx_rates, settings.fx_tolerance_days),
            pricing_manager=PriceHistoryManager(price_bars, settings.price_staleness_days),
            dividend_treatment=settings.dividend_treatment,
            allow_short_positions=settings.allow_short_positions,
        )


TRANSACTION_COLUMNS = ["ID", "SYMBOL", "DATE", "TRANSACTION TYPE", "PRICE", "QUANTITY", "CURRENCY", "FEES"]


def _parse_date(value: Any) -> date:
    """Parse a date or datetime cell/field into a date (time of day is dropped)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.to_datetime(value).date()


def _parse_number(value: Any) -> Decimal:
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}") from None


def _optional_text(value: Any) -> str | None:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def _create_empty_transactions_excel(file_path: str) -> None:
    wb = Workbook()
    ws = wb.active
    assert ws is not None
    for col, header in enumerate(TRANSACTION_COLUMNS, start=1):
        ws.cell(row=1, column=col, value=header)
    wb.save(file_path)


def load_transactions_from_excel(file_path: str, create_if_missing: bool = False) -> list[Transaction]:
    """
    Load transactions from an Excel file.

    Args:
        file_path: Path to the Excel file containing transactions.
        create_if_missing: If True and the file doesn't exist, create an empty
            file with headers and return no transactions.

    Returns:
        Transactions in file order. Field values are passed through for the
        normalizer to validate.

    Expected Excel columns (order independent):
        - SYMBOL: Ticker symbol (may be blank for cash movements)
        - DATE: Transaction date ("DATE AND TIME" is accepted too)
        - TRANSACTION TYPE: BUY, SELL, DIVIDEND, FEE, DEPOSIT, WITHDRAWAL
        - PRICE: Price per unit
        - QUANTITY: Number of units
        - CURRENCY: Currency code. If empty for a row, the currency from the
          first row is used.
        - ID, FEES: optional
    """
    if not Path(file_path).exists():
        if create_if_missing:
            _create_empty_transactions_excel(file_path)
            return []
        raise FileNotFoundError(f"Transactions file not found: {file_path}")

    df = pd.read_excel(file_path)
    if "DATE" not in df.columns and "DATE AND TIME" in df.columns:
        df = df.rename(columns={"DATE AND TIME": "DATE"})

    if df.empty:
        return []

    required_columns = {"SYMBOL", "DATE", "TRANSACTION TYPE", "PRICE", "QUANTITY", "CURRENCY"}
    missing_columns = required_columns - set(df.columns)
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

    default_currency = _optional_text(df["CURRENCY"].iloc[0])

    transactions: list[Transaction] = []
    any_defaulted_currency = False

    for index, row in df.iterrows():
        currency = _optional_text(row["CURRENCY"])
        if currency is None:
            currency = default_currency
            any_defaulted_currency = True

        transaction_id = _optional_text(row["ID"]) if "ID" in df.columns else None
        fees = _optional_text(row["FEES"]) if "FEES" in df.columns else None

        transactions.append(Transaction(
            symbol=_optional_text(row["SYMBOL"]) or "",
            transaction_date=_parse_date(row["DATE"]),
            transaction_type=TransactionType.parse(row["TRANSACTION TYPE"]),
            quantity=_parse_number(row["QUANTITY"]),
            price=_parse_number(row["PRICE"]),
            currency=currency or "",
            fees=_parse_number(fees) if fees is not None else None,
            transaction_id=transaction_id or f"row-{int(index) + 2}",
        ))

    if any_defaulted_currency:
        warnings.warn(
            f"Some transactions in '{file_path}' had no currency. "
            f"Assuming {default_currency} (the first row's currency) for these transactions.",
            UserWarning
        )

    return transactions


def save_transactions_to_excel(transactions: list[Transaction], file_path: str) -> None:
    """
    Save transactions to an Excel file using the columns read by
    :func:`load_transactions_from_excel`.
    """
    wb = Workbook()
    ws = wb.active
    assert ws is not None

    for col, header in enumerate(TRANSACTION_COLUMNS, start=1):
        ws.cell(row=1, column=col, value=header)

    for row, txn in enumerate(transactions, start=2):
        currency = txn.currency.value if isinstance(txn.currency, Currency) else txn.currency
        ws.cell(row=row, column=1, value=txn.transaction_id)
        ws.cell(row=row, column=2, value=txn.symbol)
        ws.cell(row=row, column=3, value=txn.transaction_date.isoformat())
        ws.cell(row=row, column=4, value=txn.transaction_type.value)
        ws.cell(row=row, column=5, value=str(txn.price))
        ws.cell(row=row, column=6, value=str(txn.quantity))
        ws.cell(row=row, column=7, value=currency)
        ws.cell(row=row, column=8, value=str(txn.fees) if txn.fees is not None else None)

    wb.save(file_path)


def load_transactions_from_json(file_path: str) -> list[Transaction]:
    """
    Load transactions from a JSON file.

    Expected JSON structure:
        [
            {
                "id": "t-1",
                "symbol": "AAPL",
                "date": "2024-01-15",
                "transaction_type": "BUY",
                "price": "150.50",
                "quantity": 10,
                "currency": "USD",
                "fees": "1.00"
            },
            ...
        ]

    ``id`` and ``fees`` are optional. Numbers may be given as strings to
    keep their exact decimal value.
    """
    with open(file_path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON file must contain a list of transactions")

    transactions: list[Transaction] = []

    item: Any
    for position, item in enumerate(data):  # type: ignore[arg-type]
        fees = item.get("fees")
        transactions.append(Transaction(
            symbol=str(item.get("symbol") or ""),
            transaction_date=_parse_date(item["date"]),
            transaction_type=TransactionType.parse(item["transaction_type"]),
            quantity=_parse_number(item["quantity"]),
            price=_parse_number(item["price"]),
            currency=item.get("currency") or "",
            fees=_parse_number(fees) if fees is not None else None,
            transaction_id=str(item.get("id") or f"item-{position}"),
        ))

    return transactions


def save_transactions_to_json(transactions: list[Transaction], file_path: str) -> None:
    """
    Save transactions to a JSON file readable by :func:`load_transactions_from_json`.

    Numbers are written as strings so Decimal values survive the round trip.
    """
    data = []
    for txn in transactions:
        data.append({
            "id": txn.transaction_id,
            "symbol": txn.symbol,
            "date": txn.transaction_date.isoformat(),
            "transaction_type": txn.transaction_type.value,
            "price": str(txn.price),
            "quantity": str(txn.quantity),
            "currency": txn.currency.value if isinstance(txn.currency, Currency) else txn.currency,
            "fees": str(txn.fees) if txn.fees is not None else None,
        })

    with open(file_path, "w") as f:
        json.dump(data, f, indent=2)


def load_transactions(file_path: str) -> list[Transaction]:
    """Load transactions from an Excel (.xlsx/.xls) or JSON (.json) file."""
    suffix = Path(file_path).suffix.lower()
    if suffix == ".json":
        return load_transactions_from_json(file_path)
    if suffix in (".xlsx", ".xls"):
        return load_transactions_from_excel(file_path)
    raise ValueError(f"Unsupported transactions file type: '{suffix}' (expected .xlsx or .json)")
