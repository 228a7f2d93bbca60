"""
CoinMarketCap historical snapshot fetcher.

One request per calendar day: https://coinmarketcap.com/historical/YYYYMMDD/
The ranked table on that page is parsed into coin dicts. Rows that fail to
parse are dropped one by one, the day survives.

Rate limiting (HTTP 429) is retried by fetch_with_retry() with a fixed wait.
By default there is no attempt cap: a multi-year run always makes progress
eventually, latency is unbounded.
"""

import time
from datetime import date
from typing import Callable, List, Optional

import requests
from bs4 import BeautifulSoup

BASE_URL = "https://coinmarketcap.com/historical/{day}/"

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


class FetchError(Exception):
    """Raised when a day cannot be fetched (network, HTTP or page errors)"""
    pass


class RateLimitedError(FetchError):
    """Raised when the upstream answers 429 Too Many Requests"""
    pass


class MalformedRecordError(ValueError):
    """Raised when a single table row cannot be turned into a coin"""
    pass


def snapshot_url(day: date) -> str:
    """Historical snapshot URL for a calendar day"""
    return BASE_URL.format(day=day.strftime("%Y%m%d"))


def parse_money(text: str) -> float:
    """'$1,234.56' -> 1234.56"""
    cleaned = text.replace("$", "").replace(",", "").strip()
    if not cleaned:
        raise MalformedRecordError(f"empty numeric field: {text!r}")
    try:
        value = float(cleaned)
    except ValueError:
        raise MalformedRecordError(f"not a number: {text!r}")
    if value < 0:
        raise MalformedRecordError(f"negative value: {text!r}")
    return value


def parse_row(row, position: int) -> dict:
    """
    Parse one `tr.cmc-table-row` into a coin dict.

    Columns: rank | name (name, symbol, logo) | ... | market cap (4th) | price (5th)
    """
    cells = row.find_all("td")
    if len(cells) < 5:
        raise MalformedRecordError(f"row has {len(cells)} cells")

    name_cell = row.select_one(".cmc-table__column-name")
    if name_cell is None:
        raise MalformedRecordError("row has no name column")

    name_el = name_cell.select_one(".cmc-table__column-name--name")
    symbol_el = name_cell.select_one(".cmc-table__column-name--symbol")
    name = name_el.get_text(strip=True) if name_el else ""
    symbol = symbol_el.get_text(strip=True) if symbol_el else ""
    if not name or not symbol:
        raise MalformedRecordError("row has no name or symbol")

    rank_text = cells[0].get_text(strip=True)
    rank = int(rank_text) if rank_text.isdigit() else position

    img = name_cell.find("img")

    return {
        "rank": rank,
        "name": name,
        "symbol": symbol,
        "image_url": img.get("src", "") if img else "",
        "market_cap": parse_money(cells[3].get_text(strip=True)),
        "price": parse_money(cells[4].get_text(strip=True)),
    }


def parse_snapshot(html: str, top_n: int = 50) -> List[dict]:
    """
    Parse the ranked table of a historical snapshot page.

    Args:
        html: Page body
        top_n: Number of table rows to consider

    Returns:
        List of coin dicts (rank, name, symbol, image_url, market_cap, price)
        in page order. Malformed rows are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    rows = soup.select("tbody tr.cmc-table-row")[:top_n]

    coins = []
    for position, row in enumerate(rows, start=1):
        try:
            coins.append(parse_row(row, position))
        except MalformedRecordError as e:
            print(f"  warning: skipping row {position}: {e}")
    return coins


class CoinMarketCapFetcher:
    """Fetches and parses one historical snapshot per call"""

    def __init__(self, session: Optional[requests.Session] = None, top_n: int = 50, timeout: float = 10):
        self.session = session or requests.Session()
        self.session.headers.update(HEADERS)
        self.top_n = top_n
        self.timeout = timeout

    def fetch_day(self, day: date) -> List[dict]:
        """
        Fetch the ranked coin list for a day.

        Raises:
            RateLimitedError: upstream returned 429
            FetchError: any other network or HTTP failure
        """
        url = snapshot_url(day)
        print(f"  Fetching {url}")

        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"request for {day.isoformat()} failed: {e}") from e

        if resp.status_code == 429:
            raise RateLimitedError(f"rate limited on {day.isoformat()}")

        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise FetchError(f"HTTP {resp.status_code} for {day.isoformat()}") from e

        coins = parse_snapshot(resp.text, self.top_n)
        print(f"  Parsed {len(coins)} coins")
        return coins


def fetch_with_retry(
    fetch: Callable[[date], List[dict]],
    day: date,
    wait_seconds: float = 60,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[dict]:
    """
    Call fetch(day), waiting and retrying the same day while rate limited.

    Args:
        fetch: Day fetcher (e.g. CoinMarketCapFetcher().fetch_day)
        day: Calendar day to fetch
        wait_seconds: Fixed wait after each rate-limit response
        max_attempts: Total attempts before giving up (None = retry forever)
        sleep: Sleep function, injected so tests do not wait

    Raises:
        FetchError: on a non rate-limit failure, or when max_attempts is spent
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fetch(day)
        except RateLimitedError:
            if max_attempts is not None and attempt >= max_attempts:
                raise FetchError(
                    f"still rate limited on {day.isoformat()} after {attempt} attempts"
                )
            print(f"  Rate limited, waiting {wait_seconds}s before retrying {day.isoformat()} "
                  f"(attempt {attempt})")
            sleep(wait_seconds)
