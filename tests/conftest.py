"""
shared test fixtures for reusable test data

fixtures let you define data once and reuse it in tests
just add fixture name to test function params and pytest passes it in automatically

example: def test_something(daily_samples):
"""

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from libs.storage import Storage
from services.harvest.checkpoint import CheckpointStore
from services.harvest.fetcher import FetchError, RateLimitedError


class FakeSource:
    """
    stand in for CoinMarketCap

    every day returns the same three coins with values that grow by day
    so weekly averages are easy to compute by hand

    fail_on: days that raise FetchError
    rate_limit: {day: n} days that answer 429 n times before succeeding
    calls: every day fetch_day was called with, in order
    """

    def __init__(self, run_start, fail_on=(), rate_limit=None):
        self.run_start = run_start
        self.fail_on = set(fail_on)
        self.rate_limit = dict(rate_limit or {})
        self.calls = []

    def coins_for(self, day):
        n = (day - self.run_start).days
        return [
            {"rank": 1, "name": "Bitcoin", "symbol": "BTC", "image_url": "",
             "market_cap": 1000.0 + n, "price": 100.0 + n},
            {"rank": 2, "name": "Ethereum", "symbol": "ETH", "image_url": "",
             "market_cap": 500.0 + n, "price": 10.0 + n},
            {"rank": 3, "name": "Dogecoin", "symbol": "DOGE", "image_url": "",
             "market_cap": 50.0, "price": 0.5},
        ]

    def fetch_day(self, day):
        self.calls.append(day)
        if self.rate_limit.get(day, 0) > 0:
            self.rate_limit[day] -= 1
            raise RateLimitedError(f"rate limited on {day}")
        if day in self.fail_on:
            raise FetchError(f"boom on {day}")
        return self.coins_for(day)


@pytest.fixture
def run_start():
    """monday 4 jan 2016, first day of the week grid in most tests"""
    return date(2016, 1, 4)


@pytest.fixture
def fake_source(run_start):
    return FakeSource(run_start)


@pytest.fixture
def no_sleep():
    """
    records sleeps instead of sleeping

    rate limit waits are 60 seconds in production
    tests should never actually wait
    """
    calls = []

    def _sleep(seconds):
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep


@pytest.fixture
def storage(tmp_path):
    """
    local storage rooted at a temp directory

    tmp_path is pytest builtin that gives you temp directory
    auto cleans up after test
    """
    return Storage(root=str(tmp_path))


@pytest.fixture
def checkpoint_store(storage):
    return CheckpointStore("data/scraping_progress.json", storage)


def make_sample(day, coins, missing=False):
    return {
        "date": day.isoformat(),
        "missing": missing,
        "coins": [] if missing else [
            {"name": name, "market_cap": float(cap), "price": float(price)}
            for name, cap, price in coins
        ],
    }


@pytest.fixture
def sample_factory():
    """make_sample(day, [(name, market_cap, price), ...], missing=False)"""
    return make_sample


@pytest.fixture
def daily_samples(run_start):
    """
    21 days = 3 full weeks of samples

    week 1: A and B every day
    week 2: A every day, B only on 2 days, C appears on day 10
    week 3: A and C every day, one missing day

    use when testing aggregate_weekly or the full weekly pipeline
    """
    samples = []
    for i in range(21):
        day = run_start + timedelta(days=i)
        if i < 7:
            coins = [("A", 100, 10), ("B", 50, 5)]
        elif i < 14:
            coins = [("A", 200, 20)]
            if i in (8, 9):
                coins.append(("B", 80, 8))
            if i == 10:
                coins.append(("C", 10, 1))
        else:
            coins = [("A", 300, 30), ("C", 40, 4)]

        samples.append(make_sample(day, coins, missing=(i == 16)))
    return samples


SNAPSHOT_ROW = """
<tr class="cmc-table-row">
  <td><div>{rank}</div></td>
  <td class="cmc-table__column-name">
    <img src="https://s2.coinmarketcap.com/static/img/coins/32x32/{rank}.png"/>
    <a class="cmc-table__column-name--name">{name}</a>
    <div class="cmc-table__column-name--symbol">{symbol}</div>
  </td>
  <td><div>{symbol}</div></td>
  <td><div>{market_cap}</div></td>
  <td><div>{price}</div></td>
  <td><div>1,000 {symbol}</div></td>
</tr>
"""


@pytest.fixture
def snapshot_html():
    """
    trimmed down historical snapshot page

    row 3 has a broken market cap and should be dropped by the parser
    everything else on the page is still usable
    """
    rows = [
        SNAPSHOT_ROW.format(rank=1, name="Bitcoin", symbol="BTC",
                            market_cap="$6,529,299,728", price="$433.44"),
        SNAPSHOT_ROW.format(rank=2, name="XRP", symbol="XRP",
                            market_cap="$207,847,813", price="$0.006019"),
        SNAPSHOT_ROW.format(rank=3, name="Broken", symbol="BRK",
                            market_cap="n/a", price="$1.00"),
        SNAPSHOT_ROW.format(rank=4, name="Litecoin", symbol="LTC",
                            market_cap="$152,670,632", price="$3.49"),
    ]
    return f"<html><body><table><tbody>{''.join(rows)}</tbody></table></body></html>"
