#!/usr/bin/env python3
"""
Regime-Aware Portfolio Engine - Backtest Runner

Runs a tax-aware, regime-aware HRP backtest over a ticker universe and
optionally builds the Monte-Carlo efficient frontier for the same universe.

EXECUTION
    python run_backtest.py
    python run_backtest.py --tickers SPY TLT GLD QQQ --start 2019-01-01
    python run_backtest.py --rebalance weekly --frontier --seed 7

OUTPUT ARTIFACTS
    outputs/
        backtest_{timestamp}.json   Full result: config, snapshots, metrics,
                                    regime breakdown, stress tests, frontier

Version: 1.0.0
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


# =============================================================================
# CONSTANTS
# =============================================================================

VERSION: str = "1.0.0"
DEFAULT_TICKERS: List[str] = ["SPY", "QQQ", "TLT", "GLD", "VNQ"]
DEFAULT_START: str = "2019-01-01"
DEFAULT_CAPITAL: float = 100_000.0

OUTPUT_DIR = Path("outputs")

BANNER = r'''
╔═══════════════════════════════════════════════════════════════════════════════╗
║                                                                               ║
║              REGIME-AWARE PORTFOLIO ENGINE                                    ║
║              Hierarchical Risk Parity | FIFO Tax Lots | Stress Tests          ║
║                                                                               ║
╚═══════════════════════════════════════════════════════════════════════════════╝
'''


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


def make_progress_printer(logger: logging.Logger):
    """Progress sink that logs each milestone."""
    def on_progress(message: str, percent: float) -> None:
        logger.info(f"[{percent:5.1f}%] {message}")
    return on_progress


# =============================================================================
# PIPELINE STEPS
# =============================================================================

def run_frontier(
    tickers: List[str],
    start: str,
    end: str,
    seed: Optional[int],
    logger: logging.Logger
) -> Optional[Dict[str, Any]]:
    """Build the efficient frontier for the universe over the backtest window."""
    print_section_header("EFFICIENT FRONTIER")

    from portfolio_engine.config import PortfolioEngineError
    from portfolio_engine.correlation import compute_universe_statistics, correlation_from_prices
    from portfolio_engine.data_collector import YahooFinanceProvider
    from portfolio_engine.efficient_frontier import (
        find_max_sharpe_portfolio,
        find_min_vol_portfolio,
        generate_efficient_frontier,
    )

    import pandas as pd

    try:
        fetched = YahooFinanceProvider().fetch(tickers, start, end)
    except PortfolioEngineError as e:
        logger.error(f"Frontier data fetch failed: {e}")
        return None
    if not fetched.asset_data:
        logger.warning("No data available for the frontier")
        return None

    closes = pd.concat({t: s.close for t, s in fetched.asset_data.items()}, axis=1).dropna()
    volumes = pd.concat({t: s.volume for t, s in fetched.asset_data.items()}, axis=1).reindex(closes.index)
    correlation = correlation_from_prices(closes)
    stats = compute_universe_statistics(closes, volumes)

    frontier = generate_efficient_frontier(correlation, stats, seed=seed)
    max_sharpe = find_max_sharpe_portfolio(frontier)
    min_vol = find_min_vol_portfolio(frontier)

    print(f"  Frontier points:   {len(frontier)}")
    for label, point in (("Max Sharpe", max_sharpe), ("Min Volatility", min_vol)):
        if point is None:
            continue
        weights = ", ".join(f"{t} {w:.0%}" for t, w in point.weights.items())
        print(f"  {label:<18} return {point.expected_return:6.2f}% | risk {point.risk:6.2f}% | "
              f"Sharpe {point.sharpe:5.2f}")
        print(f"  {'':<18} {weights}")

    return {
        "points": [p.to_dict() for p in frontier],
        "max_sharpe": max_sharpe.to_dict() if max_sharpe else None,
        "min_volatility": min_vol.to_dict() if min_vol else None,
    }


def save_results(payload: Dict[str, Any], output_dir: Path, logger: logging.Logger) -> Path:
    """Write the JSON artifact and return its path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"backtest_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=str)
    logger.info(f"Generated: {path}")
    return path


# =============================================================================
# MAIN
# =============================================================================

def main() -> int:
    """
    Main entry point for the backtest runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    start_time = time.time()

    parser = argparse.ArgumentParser(
        description="Regime-Aware Portfolio Engine - Backtest Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_backtest.py                                  # Default universe, monthly
  python run_backtest.py --tickers SPY TLT GLD            # Custom universe
  python run_backtest.py --rebalance none                 # Buy and hold
  python run_backtest.py --frontier --seed 42             # Add efficient frontier
        """
    )

    parser.add_argument(
        "--tickers",
        nargs="+",
        default=DEFAULT_TICKERS,
        help=f"Ticker universe (default: {' '.join(DEFAULT_TICKERS)})"
    )
    parser.add_argument(
        "--start",
        type=str,
        default=DEFAULT_START,
        help=f"Start date YYYY-MM-DD (default: {DEFAULT_START})"
    )
    parser.add_argument(
        "--end",
        type=str,
        default=datetime.now().strftime("%Y-%m-%d"),
        help="End date YYYY-MM-DD (default: today)"
    )
    parser.add_argument(
        "--capital",
        type=float,
        default=DEFAULT_CAPITAL,
        help=f"Initial capital (default: {DEFAULT_CAPITAL:,.0f})"
    )
    parser.add_argument(
        "--rebalance",
        choices=["daily", "weekly", "monthly", "none"],
        default="monthly",
        help="Rebalance cadence (default: monthly)"
    )
    parser.add_argument(
        "--short-term-rate",
        type=float,
        default=0.35,
        help="Short-term capital gains rate (default: 0.35)"
    )
    parser.add_argument(
        "--long-term-rate",
        type=float,
        default=0.15,
        help="Long-term capital gains rate (default: 0.15)"
    )
    parser.add_argument(
        "--frontier",
        action="store_true",
        help="Also generate the efficient frontier"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for the efficient frontier"
    )
    parser.add_argument(
        "--output",
        type=str,
        default=str(OUTPUT_DIR),
        help=f"Directory for the JSON result (default: {OUTPUT_DIR})"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}"
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    from portfolio_engine.backtest_engine import format_backtest_report, run_backtest
    from portfolio_engine.config import PortfolioEngineError, TaxRates

    print(BANNER)
    print(f"  Execution Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Universe:          {', '.join(args.tickers)}")
    print(f"  Period:            {args.start} to {args.end}")
    print(f"  Rebalancing:       {args.rebalance}")
    print(f"  Version:           {VERSION}")

    print_section_header("BACKTEST")
    try:
        tax_rates = TaxRates(short_term=args.short_term_rate, long_term=args.long_term_rate)
        result = run_backtest(
            tickers=args.tickers,
            start_date=args.start,
            end_date=args.end,
            initial_capital=args.capital,
            rebalance_frequency=args.rebalance,
            tax_rates=tax_rates,
            on_progress=make_progress_printer(logger),
        )
    except (PortfolioEngineError, ValueError) as e:
        logger.error(f"Backtest failed: {e}")
        return 1

    print(format_backtest_report(result))

    payload: Dict[str, Any] = {"backtest": result.to_dict()}
    if args.frontier:
        payload["efficient_frontier"] = run_frontier(
            result.active_tickers, args.start, args.end, args.seed, logger
        )

    save_results(payload, Path(args.output), logger)

    logger.info(f"Total execution time: {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
