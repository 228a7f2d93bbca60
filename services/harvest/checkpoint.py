"""
Checkpoint Tracking Module

Keeps a JSON checkpoint (scraping_progress.json) of an in-progress harvest so a
multi-year run can survive crashes and restarts without redoing or skipping
days.

The in-memory SampleAccumulator is the source of truth while a process runs.
The checkpoint is a best-effort copy of it: a failed save is reported to the
caller and the previous checkpoint stays intact.

Checkpoint layout:
    - run_start / run_end: Harvest range (YYYY-MM-DD)
    - samples: Daily samples, strictly increasing by date
        - date: YYYY-MM-DD
        - missing: True for a day that could not be fetched
        - coins: [{name, market_cap, price}, ...] (empty when missing)
    - last_committed_date: Date of the last sample appended (fetched or missing)
    - last_attempted_date: Last date the fetcher was called for
    - day_count: Number of samples
    - missing_days: Number of missing samples
    - updated_at: ISO timestamp of the save

Progress files from the old Node scraper (scrapedData, lastProcessedDate) are
converted on load.

A resumed run starts the day after last_committed_date. A day that aborted the
previous run has already been committed as a missing sample, so it is neither
fetched twice nor silently dropped.
"""

from datetime import date, datetime, timezone
from typing import List, Optional

from libs.storage import Storage


DEFAULT_CHECKPOINT_PATH = "data/scraping_progress.json"


class CheckpointError(Exception):
    """Raised when the checkpoint cannot be written"""
    pass


def missing_sample(day: date) -> dict:
    """Sentinel sample for a day that could not be fetched"""
    return {"date": day.isoformat(), "missing": True, "coins": []}


def daily_sample(day: date, coins: List[dict]) -> dict:
    """Keep only the fields the weekly stages use"""
    return {
        "date": day.isoformat(),
        "missing": False,
        "coins": [
            {
                "name": coin["name"],
                "market_cap": float(coin.get("market_cap") or 0),
                "price": float(coin.get("price") or 0),
            }
            for coin in coins
        ],
    }


class SampleAccumulator:
    """Append-only, date-ordered list of daily samples"""

    def __init__(self, samples: Optional[List[dict]] = None, last_attempted_date: Optional[str] = None):
        self.samples = []
        self.last_attempted_date = last_attempted_date
        for sample in samples or []:
            self.append(sample)

    def append(self, sample: dict) -> None:
        last = self.last_committed_date
        if last is not None and sample["date"] <= last:
            raise ValueError(
                f"sample for {sample['date']} is not after last committed day {last}"
            )
        self.samples.append(sample)

    def mark_attempted(self, day: date) -> None:
        self.last_attempted_date = day.isoformat()

    @property
    def day_count(self) -> int:
        return len(self.samples)

    @property
    def missing_days(self) -> int:
        return sum(1 for s in self.samples if s.get("missing"))

    @property
    def last_committed_date(self) -> Optional[str]:
        return self.samples[-1]["date"] if self.samples else None

    def to_checkpoint(self, run_start: date, run_end: date) -> dict:
        return {
            "run_start": run_start.isoformat(),
            "run_end": run_end.isoformat(),
            "samples": self.samples,
            "last_committed_date": self.last_committed_date,
            "last_attempted_date": self.last_attempted_date,
            "day_count": self.day_count,
            "missing_days": self.missing_days,
            "updated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    @classmethod
    def from_checkpoint(cls, checkpoint: dict) -> "SampleAccumulator":
        """
        Rebuild an accumulator from a loaded checkpoint.

        The samples are authoritative: if last_committed_date disagrees with
        the last stored sample, the sample date wins.
        """
        acc = cls(checkpoint.get("samples", []), checkpoint.get("last_attempted_date"))

        # older checkpoints stored a single last_processed_date
        recorded = checkpoint.get("last_committed_date") or checkpoint.get("last_processed_date")
        if recorded and acc.last_committed_date and recorded[:10] != acc.last_committed_date:
            print(f"warning: checkpoint says last committed day is {recorded[:10]} "
                  f"but samples end at {acc.last_committed_date}; trusting samples")
        return acc


def check_samples(samples: List[dict]) -> None:
    """
    Raise if samples cannot be resumed from: every sample needs an ISO date
    and a coin list, dates strictly increasing.
    """
    if not isinstance(samples, list):
        raise TypeError(f"samples must be a list, got {type(samples).__name__}")
    acc = SampleAccumulator()
    for sample in samples:
        date.fromisoformat(sample["date"])
        if not isinstance(sample.get("coins", []), list):
            raise TypeError(f"coins for {sample['date']} must be a list")
        acc.append(sample)


def from_legacy(progress: dict) -> dict:
    """
    Convert a progress file written by the old Node scraper:
    {scrapedData: [{timestamp, date, coins: [{name, marketCap, price}]}], lastProcessedDate, dayCount}

    The legacy file has no run range, so it is accepted for whichever run loads it.
    """
    samples = [
        {
            "date": entry["date"],
            "missing": False,
            "coins": [
                {
                    "name": coin["name"],
                    "market_cap": float(coin.get("marketCap") or 0),
                    "price": float(coin.get("price") or 0),
                }
                for coin in entry.get("coins", [])
            ],
        }
        for entry in progress.get("scrapedData") or []
    ]
    return {"samples": samples, "last_processed_date": progress.get("lastProcessedDate")}


class CheckpointStore:
    """Load/save/delete the harvest checkpoint through Storage"""

    def __init__(self, path: str = DEFAULT_CHECKPOINT_PATH, storage: Optional[Storage] = None):
        self.path = path
        self.storage = storage or Storage()

    def load(self) -> Optional[dict]:
        """
        Read the checkpoint.

        Returns None if there is no checkpoint, it cannot be read, or its
        samples are out of order or malformed. A progress file from the old
        Node scraper (scrapedData / lastProcessedDate) is converted.
        """
        if not self.storage.exists(self.path):
            return None

        try:
            checkpoint = self.storage.read_json(self.path)
        except Exception as e:
            print(f"warning: could not read checkpoint {self.path}: {e}")
            return None

        is_legacy = isinstance(checkpoint, dict) and "samples" not in checkpoint and "scrapedData" in checkpoint
        if not is_legacy and (not isinstance(checkpoint, dict) or "samples" not in checkpoint):
            print(f"warning: checkpoint {self.path} has no samples, ignoring it")
            return None

        try:
            if is_legacy:
                print(f"Converting legacy progress file {self.path}")
                checkpoint = from_legacy(checkpoint)
            check_samples(checkpoint["samples"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            print(f"warning: checkpoint {self.path} has unusable samples ({e}), ignoring it")
            return None
        return checkpoint

    def save(self, checkpoint: dict) -> None:
        """
        Replace the checkpoint atomically.

        Raises:
            CheckpointError: if the write fails (previous checkpoint untouched)
        """
        try:
            self.storage.write_json(checkpoint, self.path)
        except Exception as e:
            raise CheckpointError(f"could not save checkpoint {self.path}: {e}") from e
        print(f"Progress saved to {self.path} ({checkpoint['day_count']} days)")

    def delete(self) -> None:
        self.storage.delete(self.path)
