#!/usr/bin/env python3
"""Structure subcommand - Display portfolio allocation as of a date."""

import json
from datetime import date

from dotenv import load_dotenv

load_dotenv()

from ..errors import InvalidTransactionError
from ..structure import calculate_portfolio_structure
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


def register_subcommand(subparsers):
    """Register the structure subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "structure",
        help="Display portfolio allocation",
        description="Display holdings, market values and weights as of a date.",
    )
    add_data_arguments(parser)
    parser.add_argument(
        "--as-of",
        type=parse_date,
        default=None,
        help="Valuation date as YYYY-MM-DD (default: today)",
    )
    parser.set_defaults(func=run)


def run(args):
    """Display the allocation table.

    Args:
        args: Parsed argparse namespace.

    Returns:
        int: Exit code (0 for success, 1 for invalid input).
    """
    console = Console()

    try:
        settings = settings_from_args(args)
        portfolio = load_portfolio(args, settings)
        as_of = args.as_of or date.today()
        result = calculate_portfolio_structure(portfolio, as_of)
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
    table = Table(title=f"Portfolio Structure on {result.as_of.isoformat()}")
    table.add_column("Symbol", style="cyan", justify="left")
    table.add_column("Quantity", style="magenta", justify="right")
    table.add_column(f"Price ({base.value})", justify="right")
    table.add_column(f"Value ({base.value})", style="green", justify="right")
    table.add_column("Weight", style="yellow", justify="right")
    table.add_column("Trading Currency", justify="left")

    for item in result.items:
        price_str = f"{item.price:,.2f}"
        if item.stale:
            price_str = f"[dim]{price_str} (stale)[/dim]"
        table.add_row(
            item.symbol,
            f"{item.quantity:,.4f}".rstrip("0").rstrip("."),
            price_str,
            f"{item.value:,.2f}",
            format_percentage(item.weight),
            item.currency.value,
        )

    console.print(table)
    print_issues(console, result.issues)
    console.print(
        Panel(
            f"[bold green]Total Value: {format_money(result.total_value, base)}[/bold green]",
            title="Summary",
        )
    )

    return 0
