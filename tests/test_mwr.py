"""Tests for the Modified Dietz money-weighted return."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from folioperf.cashflows import CashFlow
from folioperf.currency import Currency
from folioperf.errors import UndefinedReturnError
from folioperf.metrics.mwr import calculate_modified_dietz, calculate_mwr, flow_weight
from folioperf.periods import Period
from folioperf.portfolio import CashFlowKind, Portfolio, Transaction, TransactionType
from folioperf.pricingdata import PriceBar, PriceHistoryManager

PERIOD = Period(date(2024, 1, 1), date(2024, 4, 10))


def _flow(d: date, amount: str, kind: CashFlowKind = CashFlowKind.EXTERNAL) -> CashFlow:
    return CashFlow(d, Decimal(amount), kind)


def test_single_flow_fixture():
    """Verify BV=1000, EV=1300, CF=200 at day 50 of 100 gives 100/1100."""
    flow_date = PERIOD.start + timedelta(days=50)

    mwr = calculate_modified_dietz(Decimal("1000"), Decimal("1300"), [_flow(flow_date, "200")], PERIOD)

    assert mwr == pytest.approx(100 / 1100)
    assert mwr == pytest.approx(0.0909, abs=1e-4)


def test_no_flows_is_simple_return():
    """Verify the return without flows is (EV - BV) / BV."""
    assert calculate_modified_dietz(Decimal("1000"), Decimal("1050"), [], PERIOD) == pytest.approx(0.05)


def test_same_date_flows_are_weighted_individually():
    """Verify a deposit and a withdrawal on the same date both enter the sums."""
    flow_date = PERIOD.start + timedelta(days=50)
    flows = [_flow(flow_date, "300"), _flow(flow_date, "-100")]

    mwr = calculate_modified_dietz(Decimal("1000"), Decimal("1300"), flows, PERIOD)

    assert mwr == pytest.approx(100 / 1100)


def test_internal_flows_are_ignored():
    """Verify internal flows do not enter the calculation."""
    flows = [_flow(PERIOD.start + timedelta(days=10), "-5000", CashFlowKind.INTERNAL)]
    assert calculate_modified_dietz(Decimal("1000"), Decimal("1100"), flows, PERIOD) == pytest.approx(0.1)


class TestFlowWeight:
    """Day weights of flows."""

    def test_start_and_end(self):
        """Verify a flow on the start weighs 1 and one on the end weighs 0."""
        assert flow_weight(PERIOD.start, PERIOD) == Decimal("1")
        assert flow_weight(PERIOD.end, PERIOD) == Decimal("0")

    def test_midpoint(self):
        """Verify a flow halfway through weighs one half."""
        assert flow_weight(PERIOD.start + timedelta(days=50), PERIOD) == Decimal("0.5")

    def test_single_day_period(self):
        """Verify flows in a single-day period weigh 1."""
        day = Period(date(2024, 1, 1), date(2024, 1, 1))
        assert flow_weight(day.start, day) == Decimal("1")


class TestUndefined:
    """Zero and negative denominators."""

    def test_zero_denominator(self):
        """Verify an empty portfolio without flows is undefined."""
        with pytest.raises(UndefinedReturnError, match="zero"):
            calculate_modified_dietz(Decimal("0"), Decimal("0"), [], PERIOD)

    def test_negative_denominator(self):
        """Verify withdrawing more than the beginning value is undefined."""
        with pytest.raises(UndefinedReturnError, match="negative"):
            calculate_modified_dietz(Decimal("100"), Decimal("0"), [_flow(PERIOD.start, "-300")], PERIOD)


def test_calculate_mwr_from_portfolio():
    """Verify the portfolio-level MWR values both ends and weights the mid-period deposit."""
    transactions = [
        Transaction("", date(2023, 12, 29), TransactionType.DEPOSIT, Decimal("1"), Decimal("1000"), Currency.USD),
        Transaction("ACME", date(2023, 12, 29), TransactionType.BUY, Decimal("10"), Decimal("100"), Currency.USD),
        Transaction("", date(2024, 1, 15), TransactionType.DEPOSIT, Decimal("1"), Decimal("500"), Currency.USD),
    ]
    bars = [
        PriceBar("ACME", date(2023, 12, 29), Decimal("100")),
        PriceBar("ACME", date(2024, 1, 15), Decimal("120")),
        PriceBar("ACME", date(2024, 1, 31), Decimal("110")),
    ]
    portfolio = Portfolio(transactions, Currency.USD, pricing_manager=PriceHistoryManager(bars))

    mwr = calculate_mwr(portfolio, Period(date(2024, 1, 1), date(2024, 1, 31)))

    # BV 1000, EV 1600, CF 500 on day 14 of 30
    assert mwr == pytest.approx(100 / (1000 + 500 * 16 / 30))


def test_funding_on_start_date():
    """Verify a deposit funding an empty portfolio on the start date is fully weighted."""
    transactions = [
        Transaction("", date(2024, 1, 1), TransactionType.DEPOSIT, Decimal("1"), Decimal("1000"), Currency.USD),
        Transaction("ACME", date(2024, 1, 1), TransactionType.BUY, Decimal("10"), Decimal("100"), Currency.USD),
    ]
    bars = [PriceBar("ACME", date(2024, 1, 1), Decimal("101")), PriceBar("ACME", date(2024, 1, 31), Decimal("110"))]
    portfolio = Portfolio(transactions, Currency.USD, pricing_manager=PriceHistoryManager(bars))

    assert calculate_mwr(portfolio, Period(date(2024, 1, 1), date(2024, 1, 31))) == pytest.approx(0.1)
