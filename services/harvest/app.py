"""
Harvest Service

Walks every calendar day from the resume point to RUN_END, fetches the
CoinMarketCap historical snapshot for each one and reduces the result to a
smoothed weekly ranking.

Workflow:
1. Load the checkpoint; if it belongs to this run, resume the day after its
   last committed day, otherwise start at RUN_START with no samples
2. For each day: fetch (waiting and retrying while rate limited), append the
   day's sample
3. A day that cannot be fetched is appended as a missing sample so the day
   range never shrinks; the checkpoint is saved and the run aborts
   (ABORT_ON_FETCH_ERROR=0 keeps going instead)
4. Save the checkpoint every FLUSH_EVERY_DAYS days
5. Pause between batches of days (politeness policy)
6. Aggregate weekly, smooth, write the output, delete the checkpoint

A failed checkpoint save is only a warning: the samples in memory are
authoritative for the running process.
"""

import os
import sys
import time
from datetime import date, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from libs.storage import Storage
from services.harvest.checkpoint import (
    CheckpointError,
    CheckpointStore,
    DEFAULT_CHECKPOINT_PATH,
    SampleAccumulator,
    daily_sample,
    missing_sample,
)
from services.harvest.fetcher import CoinMarketCapFetcher, FetchError, fetch_with_retry
from services.harvest.images import ImageDownloader
from services.harvest.policy import RandomPolicy
from services.weekly.app import (
    aggregate_weekly,
    build_output,
    smooth_weekly,
    to_date,
    write_output,
)

# Configuration (override via environment variables)
RUN_START = os.getenv("RUN_START", "2016-01-01")
RUN_END = os.getenv("RUN_END", "2025-05-20")
CHECKPOINT_PATH = os.getenv("CHECKPOINT_PATH", DEFAULT_CHECKPOINT_PATH)
OUTPUT_PATH = os.getenv("OUTPUT_PATH", "data/weekly_crypto_data.json")
FLUSH_EVERY_DAYS = int(os.getenv("FLUSH_EVERY_DAYS", "100"))
TOP_K = int(os.getenv("TOP_K", "50"))
FETCH_TOP_N = int(os.getenv("FETCH_TOP_N", "50"))
SMOOTHING_WEIGHTS = tuple(float(w) for w in os.getenv("SMOOTHING_WEIGHTS", "0.5,0.3,0.2").split(","))
RATE_LIMIT_WAIT_SECONDS = float(os.getenv("RATE_LIMIT_WAIT_SECONDS", "60"))
MAX_DELAY_MS = int(os.getenv("MAX_DELAY_MS", "250"))
ABORT_ON_FETCH_ERROR = os.getenv("ABORT_ON_FETCH_ERROR", "1") == "1"
DOWNLOAD_IMAGES = os.getenv("DOWNLOAD_IMAGES", "0") == "1"
IMAGE_DIR = os.getenv("IMAGE_DIR", "race-images")


def resume_state(store: CheckpointStore, run_start: date, run_end: date) -> Tuple[SampleAccumulator, date]:
    """
    Decide where the harvest starts.

    Returns:
        (accumulator, first day to fetch)
    """
    checkpoint = store.load()
    if checkpoint is None:
        print(f"No existing progress file found, starting from {run_start.isoformat()}")
        return SampleAccumulator(), run_start

    checkpoint_start = checkpoint.get("run_start")
    if checkpoint_start and to_date(checkpoint_start) != run_start:
        print(f"warning: checkpoint is for a run starting {checkpoint_start}, ignoring it")
        return SampleAccumulator(), run_start

    acc = SampleAccumulator.from_checkpoint(checkpoint)
    if acc.last_committed_date is None:
        return acc, run_start

    last = to_date(acc.last_committed_date)
    if not run_start <= last <= run_end:
        print(f"warning: checkpoint ends {last.isoformat()}, outside "
              f"{run_start.isoformat()}..{run_end.isoformat()}, ignoring it")
        return SampleAccumulator(), run_start

    print(f"Resuming after {last.isoformat()} ({acc.day_count} days already harvested, "
          f"{acc.missing_days} missing)")
    return acc, last + timedelta(days=1)


def flush(store: CheckpointStore, acc: SampleAccumulator, run_start: date, run_end: date) -> bool:
    """Save the checkpoint, reporting failures instead of raising"""
    try:
        store.save(acc.to_checkpoint(run_start, run_end))
        return True
    except CheckpointError as e:
        print(f"warning: {e}")
        return False


def download_images(downloader: ImageDownloader, day: date, coins: List[dict]) -> None:
    """Logos are optional, a failure never fails the day"""
    try:
        downloader.download_all(coins)
    except Exception as e:
        print(f"  warning: image download failed for {day.isoformat()}: {e}")


def run_harvest(
    run_start,
    run_end,
    fetch: Callable[[date], List[dict]],
    store: CheckpointStore,
    flush_every: int = FLUSH_EVERY_DAYS,
    policy=None,
    sleep: Callable[[float], None] = time.sleep,
    rate_limit_wait: float = RATE_LIMIT_WAIT_SECONDS,
    max_rate_limit_retries: Optional[int] = None,
    abort_on_error: bool = True,
    image_downloader: Optional[ImageDownloader] = None,
) -> SampleAccumulator:
    """
    Fetch one sample per day from the resume point through run_end.

    Args:
        run_start, run_end: Inclusive day range
        fetch: Day fetcher, raises RateLimitedError / FetchError
        store: Checkpoint store
        flush_every: Save the checkpoint every N harvested days
        policy: Politeness policy (default RandomPolicy)
        sleep: Sleep function for rate-limit waits and politeness delays
        rate_limit_wait: Seconds to wait after a rate-limit response
        max_rate_limit_retries: Attempt cap per day (None = retry forever)
        abort_on_error: Abort after a failed day (else record it and go on)
        image_downloader: Optional coin logo downloader

    Returns:
        The accumulator holding every sample of the range

    Raises:
        FetchError: a day failed and abort_on_error is set; the checkpoint
            (including the missing sample) was saved first
    """
    run_start, run_end = to_date(run_start), to_date(run_end)
    if run_end < run_start:
        raise ValueError(f"run end {run_end} is before run start {run_start}")
    if flush_every < 1:
        raise ValueError(f"flush_every must be >= 1, got {flush_every}")
    policy = policy or RandomPolicy(MAX_DELAY_MS)

    acc, day = resume_state(store, run_start, run_end)
    if day <= run_end:
        print(f"Starting scraping from {day.isoformat()} to {run_end.isoformat()}")

    try:
        batch_left = policy.next_concurrency()
        while day <= run_end:
            print(f"Scraping data for {day.isoformat()} ({acc.day_count + 1} days processed)")
            acc.mark_attempted(day)

            try:
                coins = fetch_with_retry(
                    fetch, day,
                    wait_seconds=rate_limit_wait,
                    max_attempts=max_rate_limit_retries,
                    sleep=sleep,
                )
            except FetchError as e:
                print(f"Error scraping data for {day.isoformat()}: {e}")
                acc.append(missing_sample(day))
                if abort_on_error:
                    raise
                coins = None

            if coins is not None:
                acc.append(daily_sample(day, coins))
                if image_downloader is not None:
                    download_images(image_downloader, day, coins)

            if acc.day_count % flush_every == 0:
                flush(store, acc, run_start, run_end)

            day += timedelta(days=1)
            batch_left -= 1
            if batch_left == 0 and day <= run_end:
                delay = policy.next_delay()
                print(f"Waiting {delay}ms before next request...")
                sleep(delay / 1000)
                batch_left = policy.next_concurrency()
    except FetchError:
        # the failed day is already committed as missing
        print("Aborting: saving progress first")
        flush(store, acc, run_start, run_end)
        raise
    except (Exception, KeyboardInterrupt):
        # an in-flight day is not committed, the next run fetches it again
        print(f"Aborting on unexpected error at {day.isoformat()}: saving progress first")
        flush(store, acc, run_start, run_end)
        raise

    print(f"Completed scraping {acc.day_count} days of data ({acc.missing_days} missing)")
    return acc


def run_pipeline(
    run_start,
    run_end,
    fetch: Callable[[date], List[dict]],
    store: CheckpointStore,
    output_path: str = OUTPUT_PATH,
    storage: Optional[Storage] = None,
    top_k: int = TOP_K,
    weights: Sequence[float] = SMOOTHING_WEIGHTS,
    **harvest_kwargs,
) -> List[dict]:
    """
    Harvest, aggregate, smooth and write the output.

    The checkpoint is deleted only once the output is written; if writing the
    output fails, the checkpoint is brought up to date and kept so the next run
    goes straight to aggregation.
    """
    run_start, run_end = to_date(run_start), to_date(run_end)
    acc = run_harvest(run_start, run_end, fetch, store, **harvest_kwargs)

    print("Processing daily data into weekly format...")
    buckets = aggregate_weekly(acc.samples, run_start, top_k)

    print("Applying rolling weighted average...")
    smoothed = smooth_weekly(buckets, weights, top_k)

    output = build_output(smoothed, run_start, run_end, acc.day_count)
    try:
        write_output(output, output_path, storage)
    except Exception:
        print("Could not write output, keeping progress file")
        flush(store, acc, run_start, run_end)
        raise

    print("Cleaning up progress file")
    store.delete()
    return smoothed


def main():
    print("=" * 60)
    print("Crypto Weekly Harvest Service")
    print("=" * 60)

    storage = Storage()
    store = CheckpointStore(CHECKPOINT_PATH, storage)
    fetcher = CoinMarketCapFetcher(top_n=FETCH_TOP_N)
    downloader = ImageDownloader(IMAGE_DIR, storage) if DOWNLOAD_IMAGES else None

    try:
        smoothed = run_pipeline(
            RUN_START, RUN_END, fetcher.fetch_day, store,
            output_path=OUTPUT_PATH,
            storage=storage,
            abort_on_error=ABORT_ON_FETCH_ERROR,
            image_downloader=downloader,
        )
    except Exception as e:
        print(f"Scraping failed: {e}")
        return 1

    print(f"\nScraping completed successfully! Final dataset contains {len(smoothed)} weeks")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
