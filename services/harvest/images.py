"""
Coin logo downloads.

Logos are fetched at 64x64 and stored once per coin. Downloads are best
effort: a failure is printed and the harvest carries on.
"""

import hashlib
import re
from typing import Optional

import requests

from libs.storage import Storage


def convert_image_url(image_url: str) -> str:
    """Switch a 32x32 logo URL to its 64x64 variant"""
    return image_url.replace("/32x32/", "/64x64/")


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", name).lower()


class ImageDownloader:
    """Downloads coin logos into `folder`, deduplicated by URL hash"""

    def __init__(self, folder: str = "race-images", storage: Optional[Storage] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10):
        self.folder = folder.rstrip("/")
        self.storage = storage or Storage()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.downloaded = set()

    def _path_for(self, coin_name: str) -> str:
        return f"{self.folder}/{sanitize_filename(coin_name)}.png"

    def download(self, image_url: str, coin_name: str) -> Optional[str]:
        """
        Download a coin logo unless it was already fetched.

        Returns:
            Storage path of the image, or None if unavailable
        """
        if not image_url:
            return None

        url = convert_image_url(image_url)
        url_hash = hashlib.md5(url.encode("utf-8")).hexdigest()
        path = self._path_for(coin_name)

        if url_hash in self.downloaded:
            return path

        try:
            if self.storage.exists(path):
                self.downloaded.add(url_hash)
                return path

            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            self.storage.write_bytes(resp.content, path)
        except Exception as e:
            print(f"  warning: failed to download image for {coin_name}: {e}")
            return None

        self.downloaded.add(url_hash)
        print(f"  Downloaded image for {coin_name}")
        return path

    def download_all(self, coins: list) -> int:
        """Download logos for a day's coins, returns how many are available"""
        paths = [self.download(c.get("image_url", ""), c["name"]) for c in coins]
        return sum(1 for p in paths if p)
