"""
Weekly Smoothing Service

Turns the harvested daily samples into a smoothed weekly top-K ranking:

1. Flatten daily samples into one row per (day, coin); missing days add no rows
2. Bucket days into 7-day weeks anchored at the run start:
   week_start = run_start + 7 * floor((day - run_start) / 7)
3. Average each coin's price and market cap over the days it was observed in
   the week, keep the top K by market cap
4. For every week with two predecessors, combine it with the previous two
   weeks using weights (0.5, 0.3, 0.2), most recent first. A coin absent from
   a week counts as price 0 / market cap 0 there; a coin whose weighted price
   and market cap are both exactly 0 is dropped. Re-rank, keep the top K.

Running this module directly rebuilds the output from an existing harvest
checkpoint without fetching anything.
"""

import os
import sys
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pandas as pd

from libs.schemas import daily_coin_schema, weekly_bucket_schema, smoothed_week_schema
from libs.storage import Storage
from services.harvest.checkpoint import CheckpointStore, DEFAULT_CHECKPOINT_PATH

# Configuration
TOP_K = int(os.getenv("TOP_K", "50"))
SMOOTHING_WEIGHTS = tuple(float(w) for w in os.getenv("SMOOTHING_WEIGHTS", "0.5,0.3,0.2").split(","))
RUN_START = os.getenv("RUN_START", "2016-01-01")
RUN_END = os.getenv("RUN_END", "2025-05-20")
CHECKPOINT_PATH = os.getenv("CHECKPOINT_PATH", DEFAULT_CHECKPOINT_PATH)
OUTPUT_PATH = os.getenv("OUTPUT_PATH", "data/weekly_crypto_data.json")

COIN_COLUMNS = ["name", "price", "market_cap"]


def to_date(value) -> date:
    """Accepts date, datetime, Timestamp or an ISO string"""
    return pd.Timestamp(value).date()


def week_start_for(day, run_start) -> date:
    """First day of the 7-day bucket containing `day`"""
    day, run_start = to_date(day), to_date(run_start)
    offset = (day - run_start).days
    if offset < 0:
        raise ValueError(f"{day} is before run start {run_start}")
    return run_start + timedelta(days=(offset // 7) * 7)


def empty_coins() -> pd.DataFrame:
    return pd.DataFrame({
        "name": pd.Series(dtype=str),
        "price": pd.Series(dtype=float),
        "market_cap": pd.Series(dtype=float),
    })


def rank_coins(coins: pd.DataFrame, top_k: int) -> pd.DataFrame:
    """Sort descending by market cap (ties by name) and keep the first top_k"""
    if top_k < 1:
        raise ValueError(f"top_k must be >= 1, got {top_k}")
    ranked = coins.sort_values(["market_cap", "name"], ascending=[False, True], kind="mergesort")
    return ranked.head(top_k).reset_index(drop=True)[COIN_COLUMNS]


def samples_to_frame(samples: List[dict]) -> pd.DataFrame:
    """
    Flatten daily samples into a long DataFrame:
    date, name, market_cap, price
    """
    rows = [
        {
            "date": sample["date"],
            "name": coin["name"],
            "market_cap": coin["market_cap"],
            "price": coin["price"],
        }
        for sample in samples
        if not sample.get("missing")
        for coin in sample.get("coins", [])
    ]

    df = pd.DataFrame(rows, columns=["date", "name", "market_cap", "price"])
    df["date"] = pd.to_datetime(df["date"])
    df["name"] = df["name"].astype(str)
    df["market_cap"] = df["market_cap"].astype(float)
    df["price"] = df["price"].astype(float)

    daily_coin_schema.validate(df)
    return df


def aggregate_weekly(samples: List[dict], run_start, top_k: int = TOP_K) -> List[dict]:
    """
    Bucket daily samples into weeks and average each coin within its week.

    Args:
        samples: Daily samples (any order; re-sorted by date here)
        run_start: Anchor of the week grid
        top_k: Coins kept per week

    Returns:
        List of {"week_start": date, "coins": DataFrame[name, price, market_cap]}
        ascending by week_start. A week of only missing days has no coins.
    """
    run_start = to_date(run_start)
    ordered = sorted(samples, key=lambda s: to_date(s["date"]))

    days = [to_date(s["date"]) for s in ordered]
    duplicates = sorted(d for d, n in Counter(days).items() if n > 1)
    if duplicates:
        raise ValueError(f"duplicate daily samples for {[d.isoformat() for d in duplicates]}")

    week_starts = sorted({week_start_for(d, run_start) for d in days})

    df = samples_to_frame(ordered)
    offsets = (df["date"] - pd.Timestamp(run_start)).dt.days
    df["week_start"] = (pd.Timestamp(run_start) + pd.to_timedelta((offsets // 7) * 7, unit="D")).dt.date

    means = df.groupby(["week_start", "name"], as_index=False)[["price", "market_cap"]].mean()
    by_week = {ws: g for ws, g in means.groupby("week_start")}

    buckets = []
    for ws in week_starts:
        coins = rank_coins(by_week[ws], top_k) if ws in by_week else empty_coins()
        weekly_bucket_schema.validate(coins)
        buckets.append({"week_start": ws, "coins": coins})

    return buckets


def smooth_window(window: Sequence[dict], weights: Sequence[float], top_k: int) -> pd.DataFrame:
    """Weighted combination of (current, previous, previous-but-one) buckets"""
    frames = [b["coins"].set_index("name")[["price", "market_cap"]].astype(float) for b in window]

    names = frames[0].index
    for frame in frames[1:]:
        names = names.union(frame.index)

    weighted = pd.DataFrame(0.0, index=names, columns=["price", "market_cap"])
    for weight, frame in zip(weights, frames):
        weighted += weight * frame.reindex(names, fill_value=0.0)

    weighted.index.name = "name"
    weighted = weighted.reset_index()
    weighted["name"] = weighted["name"].astype(str)

    present = (weighted["price"] != 0) | (weighted["market_cap"] != 0)
    return rank_coins(weighted[present], top_k)


def smooth_weekly(buckets: List[dict], weights: Sequence[float] = SMOOTHING_WEIGHTS,
                  top_k: int = TOP_K) -> List[dict]:
    """
    Trailing 3-week weighted average over weekly buckets.

    Args:
        buckets: Output of aggregate_weekly()
        weights: (current, previous, previous-but-one)
        top_k: Coins kept per smoothed week

    Returns:
        One {"week_start", "coins"} per bucket index >= 2, carrying the
        current bucket's week_start. Empty if there are fewer than 3 buckets.
    """
    weights = tuple(float(w) for w in weights)
    if len(weights) != 3:
        raise ValueError(f"expected 3 smoothing weights, got {len(weights)}")

    if len(buckets) < 3:
        return []

    ordered = sorted(buckets, key=lambda b: b["week_start"])

    smoothed = []
    for i in range(2, len(ordered)):
        window = (ordered[i], ordered[i - 1], ordered[i - 2])
        coins = smooth_window(window, weights, top_k)
        smoothed_week_schema.validate(coins)
        smoothed.append({"week_start": ordered[i]["week_start"], "coins": coins})

    return smoothed


def build_output(smoothed: List[dict], run_start, run_end, total_days: int) -> dict:
    """Final artifact: run metadata + smoothed weeks as plain JSON types"""
    return {
        "metadata": {
            "run_start": to_date(run_start).isoformat(),
            "run_end": to_date(run_end).isoformat(),
            "total_days": total_days,
            "total_weeks": len(smoothed),
            "generated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        },
        "data": [
            {
                "week_start": week["week_start"].isoformat(),
                "coins": [
                    {"name": str(c.name), "price": float(c.price), "market_cap": float(c.market_cap)}
                    for c in week["coins"].itertuples(index=False)
                ],
            }
            for week in smoothed
        ],
    }


def write_output(output: dict, path: str = OUTPUT_PATH, storage: Optional[Storage] = None) -> None:
    storage = storage or Storage()
    storage.write_json(output, path)
    print(f"Final weekly data saved to {path} ({output['metadata']['total_weeks']} weeks)")


def main():
    print("=" * 60)
    print("Weekly Smoothing Service")
    print("=" * 60)

    checkpoint = CheckpointStore(CHECKPOINT_PATH).load()
    if checkpoint is None:
        print(f"No checkpoint found at {CHECKPOINT_PATH}, nothing to rebuild")
        return 1

    samples = checkpoint["samples"]
    # legacy progress files carry no run range
    run_start = checkpoint.get("run_start") or RUN_START
    run_end = checkpoint.get("run_end") or RUN_END
    print(f"Loaded {len(samples)} daily samples from checkpoint")

    print("Processing daily data into weekly format...")
    buckets = aggregate_weekly(samples, run_start)

    print("Applying rolling weighted average...")
    smoothed = smooth_weekly(buckets)

    output = build_output(smoothed, run_start, run_end, len(samples))
    write_output(output, OUTPUT_PATH)

    print("\nWeekly smoothing complete.")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
