#!/usr/bin/env python3
"""Main entry point for the folioperf CLI."""

import argparse
import sys


def main():
    """Parse CLI arguments and dispatch to the appropriate subcommand.

    Returns:
        int: Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="folioperf",
        description="folioperf - portfolio structure and performance (TWR / Modified Dietz MWR)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  folioperf structure trades.xlsx --prices prices.csv --fx fx.csv
  folioperf structure trades.json --prices prices.csv --as-of 2024-06-30 -c EUR
  folioperf performance trades.xlsx --prices prices.csv --preset ytd --as-of 2024-06-30
  folioperf performance trades.xlsx --prices prices.csv --start 2024-01-01 --end 2024-06-30 --granularity monthly --json
        """,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        help="Available commands",
    )

    # Import subcommand modules and register them
    from .structure import register_subcommand as register_structure
    from .performance import register_subcommand as register_performance
    from .version import register_subcommand as register_version

    register_structure(subparsers)
    register_performance(subparsers)
    register_version(subparsers)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
