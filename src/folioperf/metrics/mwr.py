from datetime import date
from decimal import Decimal

from ..cashflows import CashFlow, extract_cash_flows
from ..errors import UndefinedReturnError
from ..holdings import PortfolioValuer
from ..periods import Period
from ..portfolio import CashFlowKind, Portfolio
from .twr import ZERO_TOLERANCE


def flow_weight(flow_date: date, period: Period) -> Decimal:
    """
    Day weight of a flow: ``(T - t) / T``.

    ``T`` is the period length in days and ``t`` the days from the period
    start to the flow. A flow on the start date weighs 1, one on the end
    date weighs 0. In a single-day period every flow weighs 1.
    """
    total_days = period.days
    if total_days == 0:
        return Decimal("1")
    elapsed = (flow_date - period.start).days
    return Decimal(total_days - elapsed) / Decimal(total_days)


def calculate_modified_dietz(
    beginning_value: Decimal,
    ending_value: Decimal,
    cash_flows: list[CashFlow],
    period: Period,
) -> float:
    """
    Money-weighted return by the Modified Dietz method.

    ``MWR = (EV - BV - ΣCF_i) / (BV + Σ(CF_i × W_i))``

    Only external flows are used; flows on the same date are weighted
    individually.

    Args:
        beginning_value: Value at the start of the period, before the
            flows dated on the start date.
        ending_value: Value at the end of the period, all flows included.
        cash_flows: Flows of the period (positive = capital in).
        period: The period ``[start, end]``.

    Returns:
        The return as a float.

    Raises:
        UndefinedReturnError: If the denominator is zero or negative.
    """
    external = [flow for flow in cash_flows if flow.kind == CashFlowKind.EXTERNAL]

    total_flows = sum((flow.amount for flow in external), Decimal("0"))
    weighted_flows = sum((flow.amount * flow_weight(flow.flow_date, period) for flow in external), Decimal("0"))

    denominator = beginning_value + weighted_flows
    if denominator <= ZERO_TOLERANCE:
        raise UndefinedReturnError(
            period.start, period.end,
            f"Modified Dietz denominator is {'zero' if abs(denominator) <= ZERO_TOLERANCE else 'negative'} ({denominator})"
        )

    return float((ending_value - beginning_value - total_flows) / denominator)


def calculate_mwr(portfolio: Portfolio, period: Period, valuer: PortfolioValuer | None = None) -> float:
    """
    Calculate the Modified Dietz return of a portfolio over a period.

    Args:
        portfolio: Portfolio to evaluate.
        period: The period ``[start, end]``.
        valuer: Valuer to reuse. Built from ``portfolio`` when None.

    Raises:
        InvalidTransactionError: If a transaction is malformed.
        PriceUnavailableError: If a holding cannot be priced at either end.
        FxRateUnavailableError: If a conversion rate is missing.
        UndefinedReturnError: If the denominator is zero or negative.
    """
    valuer = valuer or PortfolioValuer(portfolio, split_horizon=period.end)
    flows = extract_cash_flows(
        valuer.transactions,
        period,
        portfolio.base_currency,
        portfolio.exchange_rate_manager,
        portfolio.dividend_treatment,
    )
    start_flows = sum((flow.amount for flow in flows if flow.flow_date == period.start), Decimal("0"))
    beginning_value = valuer.value_on(period.start) - start_flows
    ending_value = valuer.value_on(period.end)
    return calculate_modified_dietz(beginning_value, ending_value, flows, period)
