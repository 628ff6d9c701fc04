"""Argument and input handling shared by the structure and performance subcommands."""

import warnings
from dataclasses import replace
from datetime import date
from decimal import Decimal

from rich.console import Console
from rich.table import Table

from ..config import EngineSettings
from ..currency import Currency, load_fx_rates_from_csv
from ..errors import Issue
from ..portfolio import Portfolio, load_transactions
from ..pricingdata import load_price_bars_from_csv


def add_data_arguments(parser):
    """Add the input file and currency options used by every engine command.

    Args:
        parser: The subcommand parser.
    """
    parser.add_argument("filename", help="Path to the transactions file (.xlsx or .json)")
    parser.add_argument(
        "--prices",
        required=True,
        help="CSV of daily closes with columns SYMBOL, DATE, CLOSE and optional DIVIDEND, SPLIT",
    )
    parser.add_argument(
        "--fx",
        default=None,
        help="CSV of daily exchange rates with columns BASE, QUOTE, DATE, RATE",
    )
    parser.add_argument(
        "--currency",
        "-c",
        default=None,
        help="Base currency for results (default: FOLIOPERF_BASE_CURRENCY or USD)",
    )
    parser.add_argument(
        "--allow-shorts",
        action="store_true",
        help="Accept sells that take a position below zero",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result payload as JSON instead of tables",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Silence warnings about defaulted or skipped input rows",
    )


def parse_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    return date.fromisoformat(value)


def settings_from_args(args) -> EngineSettings:
    """Read settings from the environment and apply command line overrides.

    Raises:
        ValueError: If an environment variable or option is invalid.
    """
    settings = EngineSettings.from_env()
    if args.currency:
        settings = replace(settings, base_currency=Currency.parse(args.currency))
    if args.allow_shorts:
        settings = replace(settings, allow_short_positions=True)
    return settings


def load_portfolio(args, settings: EngineSettings) -> Portfolio:
    """Load transactions, prices and rates named on the command line.

    Raises:
        FileNotFoundError: If an input file does not exist.
        ValueError: If an input file is malformed.
    """
    if args.quiet:
        warnings.filterwarnings("ignore", category=UserWarning)

    transactions = load_transactions(args.filename)
    price_bars = load_price_bars_from_csv(args.prices)
    fx_rates = load_fx_rates_from_csv(args.fx) if args.fx else []

    return Portfolio.from_snapshots(transactions, price_bars, fx_rates, settings)


def format_percentage(value: float | None, precision: int = 2) -> str:
    """Format a decimal value as a percentage string.

    Args:
        value: Decimal value to format (e.g. 0.05 becomes "5.00%").
        precision: Number of decimal places in the output.

    Returns:
        Formatted percentage string, or "N/A" if value is None.
    """
    if value is None:
        return "N/A"
    return f"{value * 100:.{precision}f}%"


def format_money(value: Decimal | None, currency: Currency) -> str:
    if value is None:
        return "N/A"
    return f"{value:,.2f} {currency.value}"


def print_issues(console: Console, issues: list[Issue]) -> None:
    """Print a table of issues, if there are any."""
    if not issues:
        return

    table = Table(title="Issues")
    table.add_column("Scope", style="cyan")
    table.add_column("Date")
    table.add_column("Symbol")
    table.add_column("Kind", style="yellow")
    table.add_column("Message", style="red")

    for issue in issues:
        table.add_row(
            issue.scope,
            issue.issue_date.isoformat() if issue.issue_date else "",
            issue.symbol or "",
            issue.kind,
            issue.message,
        )

    console.print(table)
