from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable

import numpy as np

from ..cashflows import CashFlow, extract_cash_flows, net_flows_by_date
from ..errors import UndefinedReturnError
from ..holdings import PortfolioValuer
from ..periods import Period
from ..portfolio import Portfolio

# Values within this distance of zero are treated as zero.
ZERO_TOLERANCE = Decimal("1e-9")


@dataclass
class SubPeriod:
    """One link of the TWR chain.

    ``beginning_value`` excludes the flows of ``start`` when the sub-period
    opens the chain and includes them otherwise; ``ending_value`` includes
    ``cash_flow``, the net external flow dated ``end``. A value is None when
    it could not be computed.
    """
    start: date
    end: date
    beginning_value: Decimal | None
    ending_value: Decimal | None
    cash_flow: Decimal = Decimal("0")

    @property
    def is_valued(self) -> bool:
        return self.beginning_value is not None and self.ending_value is not None

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "beginningValue": float(self.beginning_value) if self.beginning_value is not None else None,
            "endingValue": float(self.ending_value) if self.ending_value is not None else None,
            "cashFlow": float(self.cash_flow),
        }


@dataclass
class TwrResult:
    """Result of a time-weighted return calculation.

    ``twr`` is None only when every sub-period was excluded as undefined.
    """
    twr: float | None
    sub_periods: list[SubPeriod]
    sub_period_returns: list[float | None]
    excluded: list[SubPeriod] = field(default_factory=list)


def build_sub_periods(
    period: Period,
    flows_by_date: dict[date, Decimal],
    value_on: Callable[[date], Decimal | None],
    extra_breaks: Iterable[date] = (),
) -> list[SubPeriod]:
    """
    Partition a period into sub-periods ending at each external flow date.

    Flows are assumed to happen at the end of their day: the day's market
    move belongs to the sub-period the flow closes. Flows dated on
    ``period.start`` open the chain with a zero-length sub-period from the
    value before the flows to the value after them.

    Args:
        period: The period to partition.
        flows_by_date: Net external flow per date (see
            :func:`folioperf.cashflows.net_flows_by_date`). Dates outside
            the period are ignored.
        value_on: Portfolio value at the end of a date, all transactions of
            that date included. May return None when the value is unknown.
        extra_breaks: Additional dates to cut at (e.g. series steps). A cut
            without a flow leaves the linked return unchanged.

    Returns:
        Consecutive sub-periods covering ``[period.start, period.end]``.
    """
    start_flow = flows_by_date.get(period.start, Decimal("0"))
    start_value = value_on(period.start)
    beginning_value = start_value - start_flow if start_value is not None else None

    sub_periods: list[SubPeriod] = []
    if period.start in flows_by_date:
        sub_periods.append(SubPeriod(period.start, period.start, beginning_value, start_value, start_flow))
        beginning_value = start_value

    breaks = {d for d in flows_by_date if period.start < d <= period.end}
    breaks.update(d for d in extra_breaks if period.start < d <= period.end)

    previous = period.start
    for break_date in sorted(breaks):
        ending_value = value_on(break_date)
        sub_periods.append(SubPeriod(
            previous, break_date, beginning_value, ending_value, flows_by_date.get(break_date, Decimal("0"))
        ))
        beginning_value = ending_value
        previous = break_date

    if previous < period.end or not sub_periods:
        sub_periods.append(SubPeriod(previous, period.end, beginning_value, value_on(period.end)))

    return sub_periods


def calculate_sub_period_return(sub_period: SubPeriod) -> float:
    """
    Return of one sub-period: ``(EV - BV - CF) / BV``.

    A zero beginning value gives a zero return when the flow accounts for
    the whole ending value (funding an empty portfolio).

    Raises:
        UndefinedReturnError: If the beginning value is zero with
            unexplained value, or negative.
        ValueError: If the sub-period has no values.
    """
    if not sub_period.is_valued:
        raise ValueError(f"Sub-period {sub_period.start} to {sub_period.end} has no values")
    assert sub_period.beginning_value is not None and sub_period.ending_value is not None

    bv = sub_period.beginning_value
    ev = sub_period.ending_value
    cf = sub_period.cash_flow

    if abs(bv) <= ZERO_TOLERANCE:
        if abs(ev - cf) <= ZERO_TOLERANCE:
            return 0.0
        raise UndefinedReturnError(
            sub_period.start, sub_period.end,
            f"beginning value is zero but ending value {ev} is not explained by flows of {cf}"
        )
    if bv < 0:
        raise UndefinedReturnError(sub_period.start, sub_period.end, f"beginning value {bv} is negative")

    return float((ev - bv - cf) / bv)


def link_returns(returns: list[float]) -> float:
    """Geometrically link returns: ``Π(1 + r_i) - 1``. No returns link to 0."""
    if not returns:
        return 0.0
    return float(np.prod(1.0 + np.array(returns, dtype=float)) - 1.0)


def calculate_twr_from_sub_periods(sub_periods: list[SubPeriod], exclude_undefined: bool = False) -> TwrResult:
    """
    Link the returns of consecutive sub-periods.

    Args:
        sub_periods: Output of :func:`build_sub_periods`.
        exclude_undefined: Drop sub-periods whose return is undefined
            from the chain instead of failing.

    Raises:
        UndefinedReturnError: If a sub-period return is undefined and
            ``exclude_undefined`` is False.
    """
    returns: list[float | None] = []
    excluded: list[SubPeriod] = []

    for sub_period in sub_periods:
        try:
            returns.append(calculate_sub_period_return(sub_period))
        except UndefinedReturnError:
            if not exclude_undefined:
                raise
            returns.append(None)
            excluded.append(sub_period)

    defined = [r for r in returns if r is not None]
    return TwrResult(
        twr=link_returns(defined) if defined or not returns else None,
        sub_periods=sub_periods,
        sub_period_returns=returns,
        excluded=excluded,
    )


def calculate_twr(
    portfolio: Portfolio,
    period: Period,
    exclude_undefined: bool = False,
    valuer: PortfolioValuer | None = None,
) -> TwrResult:
    """
    Calculate the time-weighted return of a portfolio over a period.

    Args:
        portfolio: Portfolio to evaluate.
        period: The period ``[start, end]``.
        exclude_undefined: Drop undefined sub-periods from the chain.
        valuer: Valuer to reuse. Built from ``portfolio`` when None.

    Returns:
        A TwrResult with the linked return and the chain it came from.

    Raises:
        InvalidTransactionError: If a transaction is malformed.
        PriceUnavailableError: If a holding cannot be priced on a break date.
        FxRateUnavailableError: If a conversion rate is missing.
        UndefinedReturnError: If a sub-period return is undefined and
            ``exclude_undefined`` is False.
    """
    valuer = valuer or PortfolioValuer(portfolio, split_horizon=period.end)
    flows: list[CashFlow] = extract_cash_flows(
        valuer.transactions,
        period,
        portfolio.base_currency,
        portfolio.exchange_rate_manager,
        portfolio.dividend_treatment,
    )
    sub_periods = build_sub_periods(period, net_flows_by_date(flows), valuer.value_on)
    return calculate_twr_from_sub_periods(sub_periods, exclude_undefined)
