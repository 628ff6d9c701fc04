"""Return metrics.

Time-weighted return (geometric linking of sub-period returns between
external cash flows) and money-weighted return by the Modified Dietz
method.
"""

from .mwr import (
    calculate_modified_dietz,
    calculate_mwr,
    flow_weight,
)
from .twr import (
    ZERO_TOLERANCE,
    SubPeriod,
    TwrResult,
    build_sub_periods,
    calculate_sub_period_return,
    calculate_twr,
    calculate_twr_from_sub_periods,
    link_returns,
)

__all__ = [
    # Money-weighted return
    "calculate_modified_dietz",
    "calculate_mwr",
    "flow_weight",
    # Time-weighted return
    "ZERO_TOLERANCE",
    "SubPeriod",
    "TwrResult",
    "build_sub_periods",
    "calculate_sub_period_return",
    "calculate_twr",
    "calculate_twr_from_sub_periods",
    "link_returns",
]
