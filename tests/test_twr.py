"""Tests for the time-weighted return calculator."""

from datetime import date
from decimal import Decimal

import pytest

from folioperf.currency import Currency
from folioperf.errors import UndefinedReturnError
from folioperf.metrics.twr import (
    SubPeriod,
    build_sub_periods,
    calculate_sub_period_return,
    calculate_twr,
    calculate_twr_from_sub_periods,
    link_returns,
)
from folioperf.periods import Period
from folioperf.portfolio import Portfolio, Transaction, TransactionType
from folioperf.pricingdata import PriceBar, PriceHistoryManager


def _portfolio(transactions: list[Transaction], closes: dict[date, str]) -> Portfolio:
    bars = [PriceBar("ACME", d, Decimal(close)) for d, close in closes.items()]
    return Portfolio(transactions=transactions, base_currency=Currency.USD, pricing_manager=PriceHistoryManager(bars))


def _deposit(d: date, amount: str) -> Transaction:
    return Transaction("", d, TransactionType.DEPOSIT, Decimal("1"), Decimal(amount), Currency.USD)


def _buy(d: date, quantity: str, price: str) -> Transaction:
    return Transaction("ACME", d, TransactionType.BUY, Decimal(quantity), Decimal(price), Currency.USD)


CLOSES = {
    date(2023, 12, 29): "100",
    date(2024, 1, 15): "120",
    date(2024, 1, 31): "110",
}


def test_zero_flows_is_simple_return():
    """Verify TWR equals (EV - BV) / BV without external flows in the period."""
    portfolio = _portfolio([_deposit(date(2023, 12, 29), "1000"), _buy(date(2023, 12, 29), "10", "100")], CLOSES)

    result = calculate_twr(portfolio, Period(date(2024, 1, 1), date(2024, 1, 31)))

    assert result.twr == pytest.approx((1100 - 1000) / 1000)
    assert len(result.sub_periods) == 1
    assert result.sub_periods[0].beginning_value == Decimal("1000")
    assert result.sub_periods[0].ending_value == Decimal("1100")


def test_chaining_across_a_flow_date():
    """Verify TWR over [t0, t2] with a flow at t1 equals the product of the two halves."""
    portfolio = _portfolio([
        _deposit(date(2023, 12, 29), "1000"),
        _buy(date(2023, 12, 29), "10", "100"),
        _deposit(date(2024, 1, 15), "500"),
    ], CLOSES)

    whole = calculate_twr(portfolio, Period(date(2024, 1, 1), date(2024, 1, 31))).twr
    first = calculate_twr(portfolio, Period(date(2024, 1, 1), date(2024, 1, 15))).twr
    second = calculate_twr(portfolio, Period(date(2024, 1, 15), date(2024, 1, 31))).twr

    assert first == pytest.approx(0.2)
    assert second == pytest.approx(1600 / 1700 - 1)
    assert whole == pytest.approx((1 + first) * (1 + second) - 1)


def test_deposit_funding_empty_portfolio_on_start_date():
    """Verify a deposit that funds an empty portfolio on the start date gives r_0 = 0."""
    portfolio = _portfolio([
        _deposit(date(2024, 1, 1), "1000"),
        _buy(date(2024, 1, 2), "10", "100"),
    ], CLOSES)

    result = calculate_twr(portfolio, Period(date(2024, 1, 1), date(2024, 1, 31)))

    assert result.sub_period_returns[0] == 0.0
    assert result.sub_periods[0].beginning_value == Decimal("0")
    assert result.twr == pytest.approx(0.1)


class TestSubPeriodReturn:
    """Single sub-period returns and their undefined cases."""

    def test_return_net_of_flow(self):
        """Verify r = (EV - BV - CF) / BV."""
        sub = SubPeriod(date(2024, 1, 1), date(2024, 1, 15), Decimal("1000"), Decimal("1700"), Decimal("500"))
        assert calculate_sub_period_return(sub) == pytest.approx(0.2)

    def test_zero_beginning_value_explained_by_flow(self):
        """Verify a zero BV with EV equal to the flow gives 0."""
        sub = SubPeriod(date(2024, 1, 1), date(2024, 1, 1), Decimal("0"), Decimal("1000"), Decimal("1000"))
        assert calculate_sub_period_return(sub) == 0.0

    def test_zero_beginning_value_unexplained_is_undefined(self):
        """Verify a zero BV with value not explained by flows is undefined, never inf or NaN."""
        sub = SubPeriod(date(2024, 1, 1), date(2024, 1, 1), Decimal("0"), Decimal("1010"), Decimal("1000"))
        with pytest.raises(UndefinedReturnError) as exc_info:
            calculate_sub_period_return(sub)
        assert exc_info.value.start == date(2024, 1, 1)

    def test_negative_beginning_value_is_undefined(self):
        """Verify a negative BV is undefined."""
        sub = SubPeriod(date(2024, 1, 1), date(2024, 1, 5), Decimal("-50"), Decimal("-40"))
        with pytest.raises(UndefinedReturnError, match="negative"):
            calculate_sub_period_return(sub)

    def test_unvalued_sub_period(self):
        """Verify a sub-period without values cannot produce a return."""
        sub = SubPeriod(date(2024, 1, 1), date(2024, 1, 5), None, Decimal("10"))
        assert not sub.is_valued
        with pytest.raises(ValueError):
            calculate_sub_period_return(sub)


def test_build_sub_periods_cuts_at_flows_and_extra_breaks():
    """Verify sub-periods end at flow dates and extra breaks, carrying values forward."""
    values = {
        date(2024, 1, 1): Decimal("1000"),
        date(2024, 1, 10): Decimal("1600"),
        date(2024, 1, 20): Decimal("1650"),
        date(2024, 1, 31): Decimal("1700"),
    }
    flows = {date(2024, 1, 10): Decimal("500"), date(2024, 2, 5): Decimal("1")}

    sub_periods = build_sub_periods(
        Period(date(2024, 1, 1), date(2024, 1, 31)), flows, values.get, extra_breaks=[date(2024, 1, 20)]
    )

    assert [(s.start, s.end) for s in sub_periods] == [
        (date(2024, 1, 1), date(2024, 1, 10)),
        (date(2024, 1, 10), date(2024, 1, 20)),
        (date(2024, 1, 20), date(2024, 1, 31)),
    ]
    assert [s.cash_flow for s in sub_periods] == [Decimal("500"), Decimal("0"), Decimal("0")]
    assert sub_periods[1].beginning_value == Decimal("1600")


def test_extra_breaks_do_not_change_linked_return():
    """Verify cutting at a date without a flow leaves the linked TWR unchanged."""
    values = {date(2024, 1, 1): Decimal("1000"), date(2024, 1, 15): Decimal("1234"), date(2024, 1, 31): Decimal("1100")}
    period = Period(date(2024, 1, 1), date(2024, 1, 31))

    plain = calculate_twr_from_sub_periods(build_sub_periods(period, {}, values.get))
    cut = calculate_twr_from_sub_periods(build_sub_periods(period, {}, values.get, extra_breaks=[date(2024, 1, 15)]))

    assert cut.twr == pytest.approx(plain.twr)
    assert plain.twr == pytest.approx(0.1)


def test_exclude_undefined_sub_periods():
    """Verify undefined sub-periods fail the chain unless explicitly excluded."""
    sub_periods = [
        SubPeriod(date(2024, 1, 1), date(2024, 1, 1), Decimal("0"), Decimal("1010"), Decimal("1000")),
        SubPeriod(date(2024, 1, 1), date(2024, 1, 31), Decimal("1010"), Decimal("1111")),
    ]

    with pytest.raises(UndefinedReturnError):
        calculate_twr_from_sub_periods(sub_periods)

    result = calculate_twr_from_sub_periods(sub_periods, exclude_undefined=True)
    assert result.twr == pytest.approx(0.1)
    assert result.sub_period_returns[0] is None
    assert result.excluded == [sub_periods[0]]


def test_all_sub_periods_excluded_has_no_twr():
    """Verify excluding every sub-period leaves no value rather than 0."""
    sub_periods = [SubPeriod(date(2024, 1, 1), date(2024, 1, 5), Decimal("0"), Decimal("5"))]
    assert calculate_twr_from_sub_periods(sub_periods, exclude_undefined=True).twr is None


def test_link_returns():
    """Verify geometric linking."""
    assert link_returns([0.1, -0.05]) == pytest.approx(1.1 * 0.95 - 1)
    assert link_returns([]) == 0.0
