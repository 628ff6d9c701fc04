from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from .currency import Currency
from .errors import InvalidTransactionError
from .portfolio import TRADE_TRANSACTION_TYPES, Transaction, TransactionType
from .pricingdata import PricingDataManager

# Same-day ordering: capital arrives first, dividends are booked last.
_SAME_DAY_RANK = {
    TransactionType.DEPOSIT: 0,
    TransactionType.WITHDRAWAL: 0,
    TransactionType.BUY: 1,
    TransactionType.SELL: 1,
    TransactionType.FEE: 2,
    TransactionType.DIVIDEND: 3,
}

_SYMBOL_REQUIRED = frozenset({TransactionType.BUY, TransactionType.SELL, TransactionType.DIVIDEND})


def _to_decimal(value, field: str, transaction_id: str | None) -> Decimal:
    if isinstance(value, bool):
        raise InvalidTransactionError(transaction_id, f"{field} must be a number, got {value!r}")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidTransactionError(transaction_id, f"{field} must be a number, got {value!r}") from None
    if not number.is_finite():
        raise InvalidTransactionError(transaction_id, f"{field} must be finite, got {value!r}")
    return number


def _validate(txn: Transaction) -> Transaction:
    """Return a clean copy of ``txn`` or raise InvalidTransactionError."""
    transaction_id = txn.transaction_id

    try:
        transaction_type = TransactionType.parse(txn.transaction_type)
    except ValueError:
        raise InvalidTransactionError(transaction_id, f"unknown transaction type {txn.transaction_type!r}") from None

    transaction_date = txn.transaction_date
    if isinstance(transaction_date, datetime):
        transaction_date = transaction_date.date()
    if not isinstance(transaction_date, date):
        raise InvalidTransactionError(transaction_id, f"invalid date {txn.transaction_date!r}")

    quantity = _to_decimal(txn.quantity, "quantity", transaction_id)
    if quantity == 0:
        raise InvalidTransactionError(transaction_id, "quantity is zero")

    price = _to_decimal(txn.price, "price", transaction_id)
    if price < 0:
        raise InvalidTransactionError(transaction_id, f"price is negative ({price})")

    fees = Decimal("0")
    if txn.fees is not None:
        fees = _to_decimal(txn.fees, "fees", transaction_id)
        if fees < 0:
            raise InvalidTransactionError(transaction_id, f"fees are negative ({fees})")

    try:
        currency = Currency.parse(txn.currency)
    except ValueError:
        raise InvalidTransactionError(transaction_id, f"unrecognized currency code {txn.currency!r}") from None

    symbol = (txn.symbol or "").strip().upper()
    if transaction_type in _SYMBOL_REQUIRED and not symbol:
        raise InvalidTransactionError(transaction_id, f"{transaction_type.value} requires a symbol")

    # Direction comes from the kind: trades become signed share deltas,
    # everything else carries an unsigned quantity.
    quantity = abs(quantity)
    if transaction_type == TransactionType.SELL:
        quantity = -quantity

    return Transaction(
        symbol=symbol,
        transaction_date=transaction_date,
        transaction_type=transaction_type,
        quantity=quantity,
        price=price,
        currency=currency,
        fees=fees,
        transaction_id=transaction_id,
    )


def normalize_transactions(
    transactions: list[Transaction],
    pricing_manager: PricingDataManager | None = None,
    split_horizon: date | None = None,
    allow_short_positions: bool = False,
) -> list[Transaction]:
    """
    Validate, sort and split-adjust raw transactions.

    The input list is not modified. The returned transactions are new objects
    with clean types: ``Currency`` enums, Decimal quantities/prices/fees,
    upper-cased symbols, and signed quantities for trades (positive for BUY,
    negative for SELL, whatever sign the raw record used).

    Quantities of buys, sells and dividends are multiplied by the cumulative
    split ratio of the splits dated after the transaction and up to
    ``split_horizon``, and prices divided by it, so that every quantity is in
    share-count terms as of the horizon. The monetary amount is unchanged.

    Ordering is by date; on the same date deposits and withdrawals come
    first, then trades, then fees, then dividends. Ties keep input order.

    Args:
        transactions: Raw transactions, in any order.
        pricing_manager: Source of split ratios. When None, no split
            adjustment is applied.
        split_horizon: Last split date to apply (normally the end of the
            requested range). None applies every known split.
        allow_short_positions: If False, a sell that takes a position below
            zero is rejected.

    Returns:
        The normalized transactions in processing order.

    Raises:
        InvalidTransactionError: If any record is malformed, or oversells a
            position while short positions are disabled.
    """
    indexed = [(index, _validate(txn)) for index, txn in enumerate(transactions)]
    indexed.sort(key=lambda item: (
        item[1].transaction_date,
        _SAME_DAY_RANK[item[1].transaction_type],
        item[0],
    ))
    normalized = [txn for _, txn in indexed]

    if pricing_manager is not None:
        horizon = split_horizon or date.max
        for txn in normalized:
            if txn.transaction_type not in _SYMBOL_REQUIRED:
                continue
            factor = pricing_manager.get_split_factor(txn.symbol, txn.transaction_date, horizon)
            if factor != 1:
                txn.quantity = txn.quantity * factor
                txn.price = txn.price / factor

    if not allow_short_positions:
        positions: dict[str, Decimal] = defaultdict(Decimal)
        for txn in normalized:
            if txn.transaction_type in TRADE_TRANSACTION_TYPES:
                positions[txn.symbol] += txn.quantity
                if positions[txn.symbol] < 0:
                    raise InvalidTransactionError(
                        txn.transaction_id,
                        f"sells more {txn.symbol} than held (position would be {positions[txn.symbol]}); "
                        f"short positions are not enabled"
                    )

    return normalized
