"""Engine settings with environment-variable overrides."""

import os
from dataclasses import dataclass, replace

from .portfolio import DividendTreatment
from .currency import DEFAULT_FX_TOLERANCE_DAYS, Currency
from .pricingdata import DEFAULT_PRICE_STALENESS_DAYS

ENV_PREFIX = "FOLIOPERF_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class EngineSettings:
    """Parameters shared by every computation of a request."""

    base_currency: Currency = Currency.USD
    fx_tolerance_days: int = DEFAULT_FX_TOLERANCE_DAYS
    price_staleness_days: int = DEFAULT_PRICE_STALENESS_DAYS
    dividend_treatment: DividendTreatment = DividendTreatment.REINVESTED
    allow_short_positions: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "EngineSettings":
        """
        Build settings from ``FOLIOPERF_*`` environment variables.

        Unset variables keep their defaults. Callers that want ``.env`` support
        should call ``dotenv.load_dotenv()`` first.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            The resulting settings.

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        settings = cls()

        value = env.get(ENV_PREFIX + "BASE_CURRENCY")
        if value:
            try:
                settings = replace(settings, base_currency=Currency.parse(value))
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}BASE_CURRENCY: unknown currency '{value}'") from None

        for field_name in ("fx_tolerance_days", "price_staleness_days"):
            name = ENV_PREFIX + field_name.upper()
            value = env.get(name)
            if value:
                try:
                    days = int(value)
                except ValueError:
                    raise ValueError(f"{name}: expected an integer, got '{value}'") from None
                if days < 0:
                    raise ValueError(f"{name}: must be non-negative, got {days}")
                settings = replace(settings, **{field_name: days})

        value = env.get(ENV_PREFIX + "DIVIDEND_TREATMENT")
        if value:
            try:
                settings = replace(settings, dividend_treatment=DividendTreatment.parse(value))
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}DIVIDEND_TREATMENT: unknown treatment '{value}'") from None

        value = env.get(ENV_PREFIX + "ALLOW_SHORT_POSITIONS")
        if value is not None:
            flag = value.strip().lower()
            if flag in _TRUE_VALUES:
                settings = replace(settings, allow_short_positions=True)
            elif flag not in _FALSE_VALUES:
                raise ValueError(f"{ENV_PREFIX}ALLOW_SHORT_POSITIONS: expected a boolean, got '{value}'")

        return settings
