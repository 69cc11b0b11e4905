"""
Performance report for the real-time pipeline.

Replays synthetic price frames from the mock provider through the feed,
runs the P&L engine and monitoring tick synchronously, then writes the
read-only metrics snapshot as JSON and prints it as a table.

Usage:
    python performance_report.py --ticks 50 --seed 7
"""
import argparse
import json
import logging
import time
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd

from config import REPORTS_DIR, configure_logging
from market_data.providers import MockProvider
from pipeline import RealTimePipeline, build_pipeline, sample_positions

logger = logging.getLogger(__name__)


def mock_frames(provider: MockProvider, symbols: List[str], now: float) -> List[str]:
    """One price_update frame per symbol, as the streaming server sends them"""
    frames = []
    for symbol in symbols:
        quote = provider.get_quote(symbol)
        frames.append(json.dumps({
            "type": "price_update",
            "symbol": symbol,
            "price": quote.price,
            "timestamp": int(now * 1000),
            "volume": quote.volume,
            "change": quote.change,
            "changePercent": quote.change_percent,
        }))
    return frames


def run_simulation(
    ticks: int = 20,
    seed: Optional[int] = 42,
    monitor_every: int = 5,
    pipeline: Optional[RealTimePipeline] = None,
) -> dict:
    """
    Drive the pipeline for a number of ticks without background threads

    Args:
        ticks: Engine ticks to run
        seed: Mock provider seed (None for a random run)
        monitor_every: Run the adaptive monitoring tick every N engine ticks
        pipeline: Pre-built pipeline (defaults to the mock-backed sample book)

    Returns:
        Report dict (JSON serializable)
    """
    provider = MockProvider(seed=seed)
    if pipeline is None:
        pipeline = build_pipeline(providers=[MockProvider(seed=seed)], positions=sample_positions())
    symbols = sorted({p.symbol for p in pipeline.state.positions_snapshot()})

    decisions = []
    summary = None
    started = time.perf_counter()
    try:
        for tick in range(1, ticks + 1):
            for frame in mock_frames(provider, symbols, time.time()):
                pipeline.feed.handle_raw_message("simulation", frame)
            pipeline.feed.process_batch()

            summary = pipeline.engine.update_portfolio_pl() or summary
            pipeline.engine.flush()

            if monitor_every and tick % monitor_every == 0:
                decision = pipeline.tick_monitor()
                decisions.append({"tick": tick, **asdict(decision)})
    finally:
        pipeline.feed.destroy()
    elapsed = time.perf_counter() - started

    risk = pipeline.risk_snapshot()
    report = {
        "generated_at": datetime.now().isoformat(timespec="seconds"),
        "ticks": ticks,
        "seed": seed,
        "elapsed_seconds": round(elapsed, 4),
        "metrics": pipeline.metrics().as_dict(),
        "feed": asdict(pipeline.feed.get_metrics()),
        "adaptive_decisions": decisions,
        "portfolio": {
            "cash_balance": pipeline.state.cash_balance,
            "unrealized_pl": pipeline.state.unrealized_pl,
            "total_value": pipeline.state.total_value,
            "day_change": summary.day_change if summary else 0.0,
            "positions": summary.to_dataframe().to_dict(orient="records") if summary else [],
        },
        "risk": {
            "total_delta": risk.total_delta,
            "total_margin": risk.total_margin,
            "margin_utilization": asdict(risk.margin_utilization),
            "alerts": [asdict(a) for a in risk.alerts],
        },
    }
    return report


def write_report(report: dict, output_dir: Path = REPORTS_DIR) -> Path:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"performance-report-{datetime.now():%Y%m%d-%H%M%S}.json"
    with open(path, "w") as f:
        json.dump(report, f, indent=2, default=str)
    logger.info(f"Performance report written to {path}")
    return path


def metrics_table(report: dict) -> pd.DataFrame:
    """Metrics snapshot as a two-column table"""
    return pd.DataFrame(list(report["metrics"].items()), columns=["metric", "value"])


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the P&L pipeline against mock data and report performance")
    parser.add_argument("--ticks", type=int, default=20, help="Engine ticks to simulate (default 20)")
    parser.add_argument("--seed", type=int, default=42, help="Mock provider seed (default 42)")
    parser.add_argument("--monitor-every", type=int, default=5, help="Adaptive tick every N engine ticks")
    parser.add_argument("--output-dir", type=Path, default=REPORTS_DIR, help="Directory for the JSON report")
    parser.add_argument("--log-level", default=None, help="Logging level (default from OPTIONS_PULSE_LOG_LEVEL)")
    args = parser.parse_args(argv)

    if args.ticks <= 0:
        parser.error("--ticks must be positive")

    configure_logging(args.log_level, log_file=False)
    report = run_simulation(args.ticks, args.seed, args.monitor_every)
    path = write_report(report, args.output_dir)

    print(f"\n{'=' * 60}")
    print(f"  Pipeline performance: {args.ticks} ticks in {report['elapsed_seconds']:.3f}s")
    print(f"{'=' * 60}")
    print(metrics_table(report).to_string(index=False))
    if report["portfolio"]["positions"]:
        print()
        print(pd.DataFrame(report["portfolio"]["positions"]).to_string(index=False))
    print(f"\nReport: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
