#!/usr/bin/env python3
"""Performance subcommand - Display TWR and MWR over a period."""

import json
from dataclasses import replace
from datetime import date

from dotenv import load_dotenv

load_dotenv()

from ..errors import InvalidTransactionError
from ..performance import calculate_performance
from ..periods import Granularity, Period
from ..portfolio import DividendTreatment
from .common import (
    add_data_arguments,
    format_money,
    format_percentage,
    load_portfolio,
    parse_date,
    print_issues,
    settings_from_args,
)
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

PRESETS = {
    "month": Period.month_to_date,
    "ytd": Period.year_to_date,
    "year": Period.trailing_year,
}


def register_subcommand(subparsers):
    """Register the performance subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "performance",
        help="Display time- and money-weighted returns",
        description="Display TWR and Modified Dietz MWR over a period, optionally as a cumulative series.",
    )
    add_data_arguments(parser)
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default=None,
        help="Period ending on --as-of: month (to date), ytd, or year (trailing)",
    )
    parser.add_argument(
        "--as-of",
        type=parse_date,
        default=None,
        help="End date for --preset as YYYY-MM-DD (default: today)",
    )
    parser.add_argument("--start", type=parse_date, default=None, help="Custom period start (YYYY-MM-DD)")
    parser.add_argument("--end", type=parse_date, default=None, help="Custom period end (YYYY-MM-DD)")
    parser.add_argument(
        "--granularity",
        choices=[g.value for g in Granularity],
        default=None,
        help="Add a cumulative return series with this spacing",
    )
    parser.add_argument(
        "--dividends",
        choices=["reinvested", "paid-out"],
        default=None,
        help="Dividend treatment (default: FOLIOPERF_DIVIDEND_TREATMENT or reinvested)",
    )
    parser.add_argument(
        "--exclude-undefined",
        action="store_true",
        help="Skip sub-periods with an undefined return when linking the TWR",
    )
    parser.set_defaults(func=run)


def resolve_period(args) -> Period:
    """Build the reporting period from --preset/--as-of or --start/--end.

    Raises:
        ValueError: If the options are inconsistent.
    """
    if args.preset and (args.start or args.end):
        raise ValueError("Use either --preset or --start/--end, not both")

    if args.start or args.end:
        if not args.start:
            raise ValueError("--end requires --start")
        return Period.custom(args.start, args.end or date.today())

    as_of = args.as_of or date.today()
    return PRESETS[args.preset or "ytd"](as_of)


def run(args):
    """Display performance for the requested period.

    Args:
        args: Parsed argparse namespace.

    Returns:
        int: Exit code (0 for success, 1 for invalid input).
    """
    console = Console()

    try:
        settings = settings_from_args(args)
        if args.dividends:
            settings = replace(settings, dividend_treatment=DividendTreatment.parse(args.dividends))
        period = resolve_period(args)
        granularity = Granularity(args.granularity) if args.granularity else None
        portfolio = load_portfolio(args, settings)
        result = calculate_performance(portfolio, period, granularity, exclude_undefined=args.exclude_undefined)
    except InvalidTransactionError as e:
        console.print(f"[red]Invalid input:[/red] {e}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    base = result.base_currency
    console.print(
        f"\n[bold]Performance[/bold] - {period.start.isoformat()} to {period.end.isoformat()} "
        f"({settings.dividend_treatment.value.replace('_', ' ')} dividends)"
    )

    summary_table = Table(title="Returns")
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", justify="right")
    summary_table.add_row("Time-Weighted Return", format_percentage(result.twr))
    summary_table.add_row("Money-Weighted Return (Modified Dietz)", format_percentage(result.mwr))
    summary_table.add_row("Beginning Value", format_money(result.beginning_value, base))
    summary_table.add_row("Ending Value", format_money(result.ending_value, base))
    console.print(summary_table)

    if result.external_cash_flows:
        flows_table = Table(title="External Cash Flows")
        flows_table.add_column("Date", style="cyan")
        flows_table.add_column(f"Amount ({base.value})", justify="right")
        for flow in result.external_cash_flows:
            colour = "green" if flow.amount >= 0 else "red"
            flows_table.add_row(flow.flow_date.isoformat(), f"[{colour}]{flow.amount:,.2f}[/{colour}]")
        console.print(flows_table)

    if result.series is not None:
        series_table = Table(title=f"Cumulative Returns ({granularity.value if granularity else ''})")
        series_table.add_column("Date", style="cyan")
        series_table.add_column("TWR", justify="right")
        series_table.add_column("MWR", justify="right")
        series_table.add_column(f"Net Assets ({base.value})", style="green", justify="right")
        for point in result.series:
            series_table.add_row(
                point.point_date.isoformat(),
                format_percentage(point.cumulative_twr),
                format_percentage(point.cumulative_mwr),
                f"{point.net_assets:,.2f}" if point.net_assets is not None else "N/A",
            )
        console.print(series_table)

    print_issues(console, result.issues)

    twr_str = format_percentage(result.twr)
    console.print(Panel(f"[bold green]TWR {twr_str}  |  MWR {format_percentage(result.mwr)}[/bold green]", title="Summary"))

    return 0
