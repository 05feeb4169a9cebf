"""
FIFO Tax-Lot Ledger
===================

Cost-basis tracking per ticker with short- and long-term capital gains
tax on sales.

RULES
-----
    - Every buy appends a new lot (shares, cost basis = trade price,
      purchase date).
    - A sale consumes the ticker's lots in purchase-date order (first in,
      first out) until the requested shares are filled or lots run out.
    - Per consumed slice: gain = (sale price - cost basis) * shares.
      A positive gain is taxed at the long-term rate when the lot was held
      365 days or more, otherwise at the short-term rate.
    - Losses are realized and reported but never offset other gains.
    - Lot share counts only decrease; exhausted lots stay in the ledger
      with zero shares and are skipped.

A ledger belongs to exactly one backtest run.

Version: 1.0.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd

from portfolio_engine.config import DEFAULT_TAX_RATES, TaxRates

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime, pd.Timestamp]

LONG_TERM_HOLDING_DAYS: int = 365


def _to_date(value: DateLike) -> date:
    return pd.Timestamp(value).date()


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class TaxLot:
    """Shares bought together at one price on one date."""
    ticker: str
    shares: float
    cost_basis: float             # Per share
    purchase_date: date
    lot_id: int = 0

    @property
    def is_open(self) -> bool:
        return self.shares > 0

    def holding_days(self, as_of: DateLike) -> int:
        return (_to_date(as_of) - self.purchase_date).days

    def is_long_term(self, as_of: DateLike) -> bool:
        return self.holding_days(as_of) >= LONG_TERM_HOLDING_DAYS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lot_id": self.lot_id,
            "ticker": self.ticker,
            "shares": self.shares,
            "cost_basis": self.cost_basis,
            "purchase_date": self.purchase_date.isoformat(),
        }


@dataclass(frozen=True)
class LotDisposal:
    """The slice of one lot consumed by a sale."""
    lot_id: int
    shares: float
    cost_basis: float
    sale_price: float
    holding_days: int
    long_term: bool
    gain: float
    tax: float


@dataclass
class SaleResult:
    """Outcome of a FIFO sale."""
    ticker: str
    shares_requested: float
    shares_sold: float
    sale_price: float
    sale_date: date
    proceeds: float = 0.0
    realized_gain: float = 0.0            # Net of losses
    short_term_gain: float = 0.0
    long_term_gain: float = 0.0
    tax: float = 0.0
    disposals: List[LotDisposal] = field(default_factory=list)

    @property
    def shares_unfilled(self) -> float:
        return self.shares_requested - self.shares_sold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "shares_requested": self.shares_requested,
            "shares_sold": self.shares_sold,
            "shares_unfilled": self.shares_unfilled,
            "sale_price": self.sale_price,
            "sale_date": self.sale_date.isoformat(),
            "proceeds": self.proceeds,
            "realized_gain": self.realized_gain,
            "short_term_gain": self.short_term_gain,
            "long_term_gain": self.long_term_gain,
            "tax": self.tax,
        }


# =============================================================================
# LEDGER
# =============================================================================

class TaxLotLedger:
    """
    FIFO lot ledger for one portfolio.

    Usage:
        ledger = TaxLotLedger(TaxRates(short_term=0.35, long_term=0.15))
        ledger.buy("SPY", 100, 400.0, "2021-01-04")
        sale = ledger.sell("SPY", 40, 450.0, "2022-03-01")
        print(sale.tax)
    """

    def __init__(self, rates: TaxRates = DEFAULT_TAX_RATES):
        self.rates = rates
        self._lots: List[TaxLot] = []
        self._next_id = 1
        self.total_tax = 0.0
        self.total_realized_gain = 0.0

    def __len__(self) -> int:
        return len(self._lots)

    @property
    def lots(self) -> List[TaxLot]:
        return list(self._lots)

    def buy(self, ticker: str, shares: float, price: float, purchase_date: DateLike) -> TaxLot:
        """Record a purchase as a new lot."""
        if shares <= 0:
            raise ValueError(f"Cannot buy {shares} shares of {ticker}")
        if price <= 0:
            raise ValueError(f"Cannot buy {ticker} at non-positive price {price}")
        lot = TaxLot(
            ticker=ticker,
            shares=shares,
            cost_basis=price,
            purchase_date=_to_date(purchase_date),
            lot_id=self._next_id,
        )
        self._next_id += 1
        self._lots.append(lot)
        logger.debug(f"Lot {lot.lot_id}: bought {shares} {ticker} @ {price:.2f}")
        return lot

    def open_lots(self, ticker: Optional[str] = None) -> List[TaxLot]:
        """Open lots, optionally for one ticker, in FIFO order."""
        lots = [
            lot for lot in self._lots
            if lot.is_open and (ticker is None or lot.ticker == ticker)
        ]
        return sorted(lots, key=lambda lot: (lot.purchase_date, lot.lot_id))

    def shares_held(self, ticker: str) -> float:
        return sum(lot.shares for lot in self.open_lots(ticker))

    def _tax_on(self, gain: float, long_term: bool) -> float:
        if gain <= 0:
            return 0.0
        return gain * (self.rates.long_term if long_term else self.rates.short_term)

    def _dispose(
        self,
        ticker: str,
        shares: float,
        price: float,
        sale_date: DateLike,
        mutate: bool
    ) -> SaleResult:
        if shares < 0:
            raise ValueError(f"Cannot sell {shares} shares of {ticker}")
        sold_on = _to_date(sale_date)
        result = SaleResult(
            ticker=ticker,
            shares_requested=shares,
            shares_sold=0.0,
            sale_price=price,
            sale_date=sold_on,
        )

        remaining = shares
        for lot in self.open_lots(ticker):
            if remaining <= 0:
                break
            take = min(remaining, lot.shares)
            gain = (price - lot.cost_basis) * take
            long_term = lot.is_long_term(sold_on)
            tax = self._tax_on(gain, long_term)

            result.disposals.append(LotDisposal(
                lot_id=lot.lot_id,
                shares=take,
                cost_basis=lot.cost_basis,
                sale_price=price,
                holding_days=lot.holding_days(sold_on),
                long_term=long_term,
                gain=gain,
                tax=tax,
            ))
            result.shares_sold += take
            result.realized_gain += gain
            if long_term:
                result.long_term_gain += gain
            else:
                result.short_term_gain += gain
            result.tax += tax

            if mutate:
                lot.shares -= take
            remaining -= take

        result.proceeds = result.shares_sold * price
        if result.shares_unfilled > 0:
            logger.warning(
                f"Sale of {shares} {ticker} only filled {result.shares_sold} from open lots"
            )
        return result

    def sell(self, ticker: str, shares: float, price: float, sale_date: DateLike) -> SaleResult:
        """
        Sell shares FIFO, decrementing lots and accumulating tax.

        Args:
            ticker: Symbol to sell
            shares: Number of shares requested
            price: Sale price per share
            sale_date: Trade date, used for holding periods

        Returns:
            SaleResult with per-lot disposals; ``shares_unfilled`` is
            positive when the open lots could not cover the request
        """
        result = self._dispose(ticker, shares, price, sale_date, mutate=True)
        self.total_tax += result.tax
        self.total_realized_gain += result.realized_gain
        logger.debug(
            f"Sold {result.shares_sold} {ticker} @ {price:.2f}: "
            f"gain={result.realized_gain:,.2f}, tax={result.tax:,.2f}"
        )
        return result

    def estimate_tax(self, ticker: str, shares: float, price: float, sale_date: DateLike) -> SaleResult:
        """What-if sale: same computation as ``sell`` without touching any lot."""
        return self._dispose(ticker, shares, price, sale_date, mutate=False)

    def unrealized_gains(self, prices: Mapping[str, float], as_of: DateLike) -> Dict[str, Dict[str, float]]:
        """Open-lot gains per ticker split by holding period, with tax if sold at ``prices``."""
        summary: Dict[str, Dict[str, float]] = {}
        for lot in self.open_lots():
            price = prices.get(lot.ticker)
            if price is None:
                continue
            gain = (price - lot.cost_basis) * lot.shares
            long_term = lot.is_long_term(as_of)
            entry = summary.setdefault(
                lot.ticker, {"short_term_gain": 0.0, "long_term_gain": 0.0, "estimated_tax": 0.0}
            )
            entry["long_term_gain" if long_term else "short_term_gain"] += gain
            entry["estimated_tax"] += self._tax_on(gain, long_term)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rates": self.rates.to_dict(),
            "total_tax": self.total_tax,
            "total_realized_gain": self.total_realized_gain,
            "lots": [lot.to_dict() for lot in self._lots],
        }


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'LONG_TERM_HOLDING_DAYS',
    'TaxLot',
    'LotDisposal',
    'SaleResult',
    'TaxLotLedger',
]
