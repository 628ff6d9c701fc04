from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .currency import Currency, ExchangeRateManager
from .periods import Period
from .portfolio import CashFlowKind, DividendTreatment, Transaction, TransactionType


@dataclass(frozen=True)
class CashFlow:
    """A money movement in the base currency.

    Sign convention: positive amounts bring capital into the portfolio,
    negative amounts take it out.
    """

    flow_date: date
    amount: Decimal
    kind: CashFlowKind
    transaction_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "date": self.flow_date.isoformat(),
            "amount": float(self.amount),
            "kind": self.kind.value,
            "transactionId": self.transaction_id,
        }


def _signed_amount(txn: Transaction, dividend_treatment: DividendTreatment) -> tuple[Decimal, CashFlowKind] | None:
    """Signed flow amount (transaction currency) and kind, or None if the transaction moves no money."""
    fees = Decimal(txn.fees or 0)
    amount = txn.amount

    if txn.transaction_type == TransactionType.DEPOSIT:
        return amount, CashFlowKind.EXTERNAL
    if txn.transaction_type == TransactionType.WITHDRAWAL:
        return -amount, CashFlowKind.EXTERNAL
    if txn.transaction_type == TransactionType.DIVIDEND:
        if dividend_treatment == DividendTreatment.PAID_OUT:
            return -(amount - fees), CashFlowKind.EXTERNAL
        return amount - fees, CashFlowKind.INTERNAL
    if txn.transaction_type == TransactionType.BUY:
        return -(amount + fees), CashFlowKind.INTERNAL
    if txn.transaction_type == TransactionType.SELL:
        return amount - fees, CashFlowKind.INTERNAL
    if txn.transaction_type == TransactionType.FEE:
        return -(amount + fees), CashFlowKind.INTERNAL
    return None


def extract_cash_flows(
    transactions: list[Transaction],
    period: Period,
    base_currency: Currency,
    exchange_rate_manager: ExchangeRateManager,
    dividend_treatment: DividendTreatment = DividendTreatment.REINVESTED,
    include_internal: bool = False,
) -> list[CashFlow]:
    """
    Derive the cash flows of a period in the base currency.

    Deposits and withdrawals dated within ``[period.start, period.end]`` are
    external flows, converted at the transaction date. Under
    ``DividendTreatment.PAID_OUT``, dividends (net of fees) are external
    outflows as well. Two flows on the same date are kept separate.

    Args:
        transactions: Normalized transactions.
        period: The period to extract flows for.
        base_currency: Currency of the returned amounts.
        exchange_rate_manager: Rates used for the conversion.
        dividend_treatment: How dividends are treated.
        include_internal: Also return trade, fee and reinvested dividend
            cash movements, marked as ``CashFlowKind.INTERNAL``.

    Returns:
        Cash flows sorted by date, in transaction processing order within a date.

    Raises:
        FxRateUnavailableError: If a flow cannot be converted.
    """
    flows: list[CashFlow] = []
    for txn in transactions:
        if not period.contains(txn.transaction_date):
            continue
        signed = _signed_amount(txn, dividend_treatment)
        if signed is None:
            continue
        amount, kind = signed
        if kind == CashFlowKind.INTERNAL and not include_internal:
            continue

        flows.append(CashFlow(
            flow_date=txn.transaction_date,
            amount=exchange_rate_manager.convert(
                amount, Currency.parse(txn.currency), base_currency, txn.transaction_date
            ),
            kind=kind,
            transaction_id=txn.transaction_id,
        ))

    flows.sort(key=lambda flow: flow.flow_date)
    return flows


def net_flows_by_date(cash_flows: list[CashFlow]) -> dict[date, Decimal]:
    """Sum external flows per date. Internal flows are ignored."""
    totals: dict[date, Decimal] = defaultdict(Decimal)
    for flow in cash_flows:
        if flow.kind == CashFlowKind.EXTERNAL:
            totals[flow.flow_date] += flow.amount
    return dict(totals)
