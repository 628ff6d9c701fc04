"""Tests for transaction replay, cost basis and portfolio valuation."""

from datetime import date
from decimal import Decimal

import pytest

from folioperf.currency import Currency, FixedExchangeRateManager
from folioperf.errors import PriceUnavailableError
from folioperf.holdings import PortfolioValuer, replay_transactions
from folioperf.normalizer import normalize_transactions
from folioperf.portfolio import DividendTreatment, Portfolio, Transaction, TransactionType
from folioperf.pricingdata import PriceBar, PriceHistoryManager


def _txn(kind, day, quantity, price, symbol="ACME", currency=Currency.USD, fees=None):
    return Transaction(symbol, date(2024, 1, day), kind, Decimal(quantity), Decimal(price), currency,
                       fees=Decimal(fees) if fees is not None else None)


def test_cash_and_holdings_after_trades():
    """Verify cash and quantities after deposits, buys with fees, sells and a fee."""
    transactions = normalize_transactions([
        _txn(TransactionType.DEPOSIT, 1, "1", "10000", symbol=""),
        _txn(TransactionType.BUY, 2, "50", "100", fees="5"),
        _txn(TransactionType.SELL, 3, "20", "110", fees="5"),
        _txn(TransactionType.FEE, 4, "1", "12", symbol=""),
    ])

    state = replay_transactions(transactions, date(2024, 1, 4))

    assert state.cash == {Currency.USD: Decimal("10000") - Decimal("5005") + Decimal("2195") - Decimal("12")}
    holding = state.holdings["ACME"]
    assert holding.quantity == Decimal("30")
    # Average cost: (5000 + 5) / 50 per share, 30 shares left
    assert holding.cost_basis == Decimal("5005") / Decimal("50") * Decimal("30")
    assert holding.average_cost == Decimal("100.1")


def test_replay_stops_at_as_of():
    """Verify transactions after the cutoff date are not applied."""
    transactions = normalize_transactions([
        _txn(TransactionType.DEPOSIT, 1, "1", "1000", symbol=""),
        _txn(TransactionType.BUY, 5, "5", "100"),
    ])

    state = replay_transactions(transactions, date(2024, 1, 4))

    assert state.cash == {Currency.USD: Decimal("1000")}
    assert state.open_holdings() == []


def test_closed_position_has_zero_cost():
    """Verify a fully sold position keeps no residual cost basis."""
    transactions = normalize_transactions([
        _txn(TransactionType.BUY, 1, "3", "10"),
        _txn(TransactionType.BUY, 2, "3", "11"),
        _txn(TransactionType.SELL, 3, "6", "12"),
    ])

    state = replay_transactions(transactions, date(2024, 1, 3))

    assert state.holdings["ACME"].quantity == 0
    assert state.holdings["ACME"].cost_basis == 0
    assert state.open_holdings() == []


def test_short_then_cover():
    """Verify short cost basis is negative and released on cover."""
    transactions = normalize_transactions([
        _txn(TransactionType.SELL, 1, "10", "50"),
        _txn(TransactionType.BUY, 2, "4", "45"),
    ], allow_short_positions=True)

    state = replay_transactions(transactions, date(2024, 1, 2))
    holding = state.holdings["ACME"]

    assert holding.quantity == Decimal("-6")
    assert holding.cost_basis == Decimal("-300")


def test_dividend_treatment():
    """Verify reinvested dividends are credited to cash and paid-out ones are not."""
    transactions = normalize_transactions([
        _txn(TransactionType.BUY, 1, "10", "100"),
        _txn(TransactionType.DIVIDEND, 2, "10", "0.5"),
    ])

    reinvested = replay_transactions(transactions, date(2024, 1, 2), DividendTreatment.REINVESTED)
    paid_out = replay_transactions(transactions, date(2024, 1, 2), DividendTreatment.PAID_OUT)

    assert reinvested.cash[Currency.USD] == Decimal("-995")
    assert paid_out.cash[Currency.USD] == Decimal("-1000")


def test_holding_currency_follows_latest_trade():
    """Verify a holding is valued in the currency of its most recent trade."""
    transactions = normalize_transactions([
        _txn(TransactionType.BUY, 1, "10", "100", currency=Currency.USD),
        _txn(TransactionType.BUY, 2, "10", "90", currency=Currency.EUR),
    ])
    state = replay_transactions(transactions, date(2024, 1, 2))
    assert state.holdings["ACME"].currency == Currency.EUR


class TestPortfolioValuer:
    """Market valuation in the base currency."""

    def _portfolio(self) -> Portfolio:
        return Portfolio(
            transactions=[
                _txn(TransactionType.DEPOSIT, 1, "1", "2000", symbol="", currency=Currency.EUR),
                _txn(TransactionType.BUY, 2, "10", "150", symbol="sap.de", currency=Currency.EUR),
            ],
            base_currency=Currency.USD,
            exchange_rate_manager=FixedExchangeRateManager({(Currency.EUR, Currency.USD): Decimal("1.10")}),
            pricing_manager=PriceHistoryManager([
                PriceBar("SAP.DE", date(2024, 1, 2), Decimal("150")),
                PriceBar("SAP.DE", date(2024, 1, 3), Decimal("160")),
            ]),
        )

    def test_value_includes_cash_and_holdings(self):
        """Verify value = converted cash + converted market value of holdings."""
        valuer = PortfolioValuer(self._portfolio())
        # Cash 500 EUR + 10 × 160 EUR = 2100 EUR at 1.10
        assert valuer.value_on(date(2024, 1, 3)) == Decimal("2310.00")
        assert valuer.value_on(date(2024, 1, 1)) == Decimal("2200.00")

    def test_missing_price_raises(self):
        """Verify a holding without a usable price raises PriceUnavailableError."""
        valuer = PortfolioValuer(self._portfolio())
        with pytest.raises(PriceUnavailableError):
            valuer.value_on(date(2024, 2, 1))

    def test_value_is_memoised(self):
        """Verify repeated valuation of a date returns the cached value."""
        valuer = PortfolioValuer(self._portfolio())
        first = valuer.value_on(date(2024, 1, 3))
        assert valuer.value_on(date(2024, 1, 3)) is first

    def test_close_before_split_is_restated(self):
        """Verify a close observed before a split is valued in post-split share units."""
        portfolio = Portfolio(
            transactions=[
                _txn(TransactionType.DEPOSIT, 1, "1", "1000", symbol=""),
                _txn(TransactionType.BUY, 2, "10", "100"),
            ],
            base_currency=Currency.USD,
            pricing_manager=PriceHistoryManager([
                PriceBar("ACME", date(2024, 1, 2), Decimal("100")),
                PriceBar("ACME", date(2024, 1, 10), Decimal("50"), split_ratio=Decimal("2")),
            ]),
        )
        valuer = PortfolioValuer(portfolio, split_horizon=date(2024, 1, 31))

        assert valuer.state_on(date(2024, 1, 5)).holdings["ACME"].quantity == Decimal("20")
        assert valuer.value_on(date(2024, 1, 5)) == Decimal("1000")
        assert valuer.value_on(date(2024, 1, 10)) == Decimal("1000")
