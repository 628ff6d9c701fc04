"""Tests for external cash flow extraction."""

from datetime import date
from decimal import Decimal

import pytest

from folioperf.cashflows import extract_cash_flows, net_flows_by_date
from folioperf.currency import Currency, FixedExchangeRateManager
from folioperf.errors import FxRateUnavailableError
from folioperf.normalizer import normalize_transactions
from folioperf.periods import Period
from folioperf.portfolio import CashFlowKind, DividendTreatment, Transaction, TransactionType

PERIOD = Period(date(2024, 1, 1), date(2024, 1, 31))


def _transactions() -> list[Transaction]:
    return normalize_transactions([
        Transaction("", date(2023, 12, 29), TransactionType.DEPOSIT, 1, 999, Currency.USD, transaction_id="before"),
        Transaction("", date(2024, 1, 5), TransactionType.DEPOSIT, 1, 1000, Currency.USD, transaction_id="in-usd"),
        Transaction("", date(2024, 1, 5), TransactionType.WITHDRAWAL, 1, 300, Currency.USD, transaction_id="out-usd"),
        Transaction("", date(2024, 1, 10), TransactionType.DEPOSIT, 1, 500, Currency.EUR, transaction_id="in-eur"),
        Transaction("ACME", date(2024, 1, 11), TransactionType.BUY, 10, 100, Currency.USD, fees=2, transaction_id="buy"),
        Transaction("ACME", date(2024, 1, 20), TransactionType.DIVIDEND, 10, 0.25, Currency.USD, transaction_id="div"),
        Transaction("", date(2024, 2, 1), TransactionType.WITHDRAWAL, 1, 100, Currency.USD, transaction_id="after"),
    ])


def _fx() -> FixedExchangeRateManager:
    return FixedExchangeRateManager({(Currency.EUR, Currency.USD): Decimal("1.1")})


def test_only_external_flows_within_period():
    """Verify deposits/withdrawals in the period are returned, signed, in the base currency."""
    flows = extract_cash_flows(_transactions(), PERIOD, Currency.USD, _fx())

    assert [f.transaction_id for f in flows] == ["in-usd", "out-usd", "in-eur"]
    assert [f.amount for f in flows] == [Decimal("1000"), Decimal("-300"), Decimal("550.0")]
    assert all(f.kind == CashFlowKind.EXTERNAL for f in flows)


def test_same_date_flows_stay_separate():
    """Verify a deposit and a withdrawal on the same date are two flows."""
    flows = extract_cash_flows(_transactions(), PERIOD, Currency.USD, _fx())
    assert len([f for f in flows if f.flow_date == date(2024, 1, 5)]) == 2


def test_net_flows_by_date():
    """Verify flows are summed per date for sub-period construction."""
    flows = extract_cash_flows(_transactions(), PERIOD, Currency.USD, _fx())
    assert net_flows_by_date(flows) == {
        date(2024, 1, 5): Decimal("700"),
        date(2024, 1, 10): Decimal("550.0"),
    }


def test_paid_out_dividend_is_negative_external_flow():
    """Verify paid-out dividends leave the portfolio as negative external flows."""
    flows = extract_cash_flows(_transactions(), PERIOD, Currency.USD, _fx(), DividendTreatment.PAID_OUT)
    dividend = [f for f in flows if f.transaction_id == "div"]
    assert len(dividend) == 1
    assert dividend[0].amount == Decimal("-2.50")
    assert dividend[0].kind == CashFlowKind.EXTERNAL


def test_include_internal_flows():
    """Verify trades and reinvested dividends appear as internal flows on request."""
    flows = extract_cash_flows(_transactions(), PERIOD, Currency.USD, _fx(), include_internal=True)
    internal = {f.transaction_id: f.amount for f in flows if f.kind == CashFlowKind.INTERNAL}
    assert internal == {"buy": Decimal("-1002"), "div": Decimal("2.50")}
    assert net_flows_by_date(flows) == net_flows_by_date(
        extract_cash_flows(_transactions(), PERIOD, Currency.USD, _fx())
    )


def test_missing_rate_raises():
    """Verify a flow that cannot be converted raises FxRateUnavailableError."""
    with pytest.raises(FxRateUnavailableError):
        extract_cash_flows(_transactions(), PERIOD, Currency.USD, FixedExchangeRateManager())


def test_to_dict():
    """Verify the flow payload."""
    flow = extract_cash_flows(_transactions(), PERIOD, Currency.USD, _fx())[0]
    assert flow.to_dict() == {"date": "2024-01-05", "amount": 1000.0, "kind": "external", "transactionId": "in-usd"}
