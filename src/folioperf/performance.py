"""Period performance: TWR, MWR and a cumulative return series."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from .cashflows import CashFlow, extract_cash_flows, net_flows_by_date
from .currency import Currency
from .errors import FxRateUnavailableError, Issue, PriceUnavailableError, UndefinedReturnError
from .holdings import PortfolioValuer
from .metrics.mwr import calculate_modified_dietz
from .metrics.twr import build_sub_periods, calculate_sub_period_return
from .periods import Granularity, Period, period_boundaries
from .portfolio import Portfolio


@dataclass
class SeriesPoint:
    """Cumulative returns from the period start up to ``point_date``."""
    point_date: date
    cumulative_twr: float | None
    cumulative_mwr: float | None
    net_assets: Decimal | None

    def to_dict(self) -> dict:
        return {
            "date": self.point_date.isoformat(),
            "cumulativeTwr": self.cumulative_twr,
            "cumulativeMwr": self.cumulative_mwr,
            "netAssets": float(self.net_assets) if self.net_assets is not None else None,
        }


@dataclass
class PerformanceResult:
    """Performance of a portfolio over a period.

    ``twr`` and ``mwr`` are None when the return is undefined or could not
    be computed; ``issues`` says why.
    """
    period: Period
    base_currency: Currency
    twr: float | None
    mwr: float | None
    beginning_value: Decimal | None
    ending_value: Decimal | None
    external_cash_flows: list[CashFlow]
    series: list[SeriesPoint] | None = None
    issues: list[Issue] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "period": self.period.to_dict(),
            "baseCurrency": self.base_currency.value,
            "twr": self.twr,
            "mwr": self.mwr,
            "beginningValue": float(self.beginning_value) if self.beginning_value is not None else None,
            "endingValue": float(self.ending_value) if self.ending_value is not None else None,
            "externalCashFlows": [flow.to_dict() for flow in self.external_cash_flows],
            "issues": [issue.to_dict() for issue in self.issues],
        }
        if self.series is not None:
            data["series"] = [point.to_dict() for point in self.series]
        return data


class _SafeValuer():
    """Wraps a PortfolioValuer, turning missing reference data into None plus an Issue."""

    def __init__(self, valuer: PortfolioValuer, issues: list[Issue]):
        self.valuer = valuer
        self.issues = issues
        self._failed: set[date] = set()

    def value_on(self, valuation_date: date) -> Decimal | None:
        if valuation_date in self._failed:
            return None
        try:
            return self.valuer.value_on(valuation_date)
        except (PriceUnavailableError, FxRateUnavailableError) as e:
            self._failed.add(valuation_date)
            symbol = e.symbol if isinstance(e, PriceUnavailableError) else None
            self.issues.append(Issue.from_error("valuation", e, issue_date=valuation_date, symbol=symbol))
            return None


def _modified_dietz_or_none(
    beginning_value: Decimal | None,
    ending_value: Decimal | None,
    cash_flows: list[CashFlow],
    period: Period,
    issues: list[Issue],
    scope: str,
) -> float | None:
    if beginning_value is None or ending_value is None:
        return None
    try:
        return calculate_modified_dietz(beginning_value, ending_value, cash_flows, period)
    except UndefinedReturnError as e:
        issues.append(Issue.from_error(scope, e, issue_date=period.end))
        return None


def calculate_performance(
    portfolio: Portfolio,
    period: Period,
    granularity: Granularity | None = None,
    exclude_undefined: bool = False,
) -> PerformanceResult:
    """
    Calculate TWR and MWR over a period, optionally with a cumulative series.

    The TWR chain is cut at every external flow date and, when a
    granularity is given, at every series step. The cumulative TWR of a
    step is the chain linked up to that step. The cumulative MWR of a step
    is a Modified Dietz return recomputed from ``period.start`` to the step.
    The first series point is the period start.

    Missing prices or rates make the affected values None and add an issue;
    the rest of the result is still computed. Once the TWR chain has a gap
    (a value that could not be computed, or an undefined sub-period while
    ``exclude_undefined`` is False) every later cumulative TWR is None.

    Args:
        portfolio: Portfolio to evaluate.
        period: The period ``[start, end]``.
        granularity: Spacing of the series points. No series when None.
        exclude_undefined: Skip sub-periods with an undefined return
            when linking, instead of breaking the chain.

    Returns:
        A PerformanceResult.

    Raises:
        InvalidTransactionError: If a transaction is malformed.
    """
    issues: list[Issue] = []
    valuer = PortfolioValuer(portfolio, split_horizon=period.end)
    values = _SafeValuer(valuer, issues)

    try:
        flows = extract_cash_flows(
            valuer.transactions,
            period,
            portfolio.base_currency,
            portfolio.exchange_rate_manager,
            portfolio.dividend_treatment,
        )
    except FxRateUnavailableError as e:
        issues.append(Issue.from_error("period", e, issue_date=e.rate_date))
        return PerformanceResult(
            period=period,
            base_currency=portfolio.base_currency,
            twr=None,
            mwr=None,
            beginning_value=None,
            ending_value=values.value_on(period.end),
            external_cash_flows=[],
            series=[] if granularity is not None else None,
            issues=issues,
        )

    flows_by_date = net_flows_by_date(flows)
    steps = period_boundaries(period, granularity) if granularity is not None else []
    sub_periods = build_sub_periods(period, flows_by_date, values.value_on, extra_breaks=steps)

    beginning_value = sub_periods[0].beginning_value

    # Cumulative TWR after each sub-period, keyed by its end date.
    cumulative_twr: dict[date, float | None] = {period.start: 0.0 if beginning_value is not None else None}
    growth: float | None = 1.0
    linked = 0
    for sub_period in sub_periods:
        if growth is not None:
            if not sub_period.is_valued:
                growth = None
            else:
                try:
                    growth *= 1.0 + calculate_sub_period_return(sub_period)
                    linked += 1
                except UndefinedReturnError as e:
                    issues.append(Issue.from_error("window", e, issue_date=sub_period.end))
                    if not exclude_undefined:
                        growth = None
        elif exclude_undefined and sub_period.is_valued:
            # Chain already broken by missing data; still report undefined windows.
            try:
                calculate_sub_period_return(sub_period)
            except UndefinedReturnError as e:
                issues.append(Issue.from_error("window", e, issue_date=sub_period.end))
        # Excluded windows alone do not make a return
        cumulative_twr[sub_period.end] = growth - 1.0 if growth is not None and linked else None

    ending_value = values.value_on(period.end)
    twr = cumulative_twr[period.end]
    mwr = _modified_dietz_or_none(beginning_value, ending_value, flows, period, issues, "period")

    series: list[SeriesPoint] | None = None
    if granularity is not None:
        series = []
        for point_date in [period.start] + steps:
            point_period = Period(period.start, point_date)
            if point_date == period.end:
                point_mwr = mwr
            else:
                point_flows = [flow for flow in flows if flow.flow_date <= point_date]
                point_mwr = _modified_dietz_or_none(
                    beginning_value, values.value_on(point_date), point_flows, point_period, issues, "point"
                )
            series.append(SeriesPoint(
                point_date=point_date,
                cumulative_twr=cumulative_twr.get(point_date),
                cumulative_mwr=point_mwr,
                net_assets=values.value_on(point_date),
            ))

    return PerformanceResult(
        period=period,
        base_currency=portfolio.base_currency,
        twr=twr,
        mwr=mwr,
        beginning_value=beginning_value,
        ending_value=ending_value,
        external_cash_flows=flows,
        series=series,
        issues=issues,
    )
