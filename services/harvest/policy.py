"""
Politeness policies for the daily harvest loop.

A policy decides how many days are fetched back to back (concurrency) and how
long to pause afterwards (delay). Fetches themselves stay sequential.
"""

import random
from typing import Optional, Sequence


class RandomPolicy:
    """Uniform random delay in [0, max_delay_ms] and a random batch size"""

    def __init__(self, max_delay_ms: int = 250, concurrency_choices: Sequence[int] = (1, 2, 3),
                 seed: Optional[int] = None):
        if max_delay_ms < 0:
            raise ValueError(f"max_delay_ms must be >= 0, got {max_delay_ms}")
        if not concurrency_choices or min(concurrency_choices) < 1:
            raise ValueError(f"concurrency choices must be >= 1, got {concurrency_choices}")
        self.max_delay_ms = max_delay_ms
        self.concurrency_choices = tuple(concurrency_choices)
        self._rng = random.Random(seed)

    def next_delay(self) -> int:
        return self._rng.randint(0, self.max_delay_ms)

    def next_concurrency(self) -> int:
        return self._rng.choice(self.concurrency_choices)


class FixedPolicy:
    """Deterministic policy, mostly for tests"""

    def __init__(self, delay_ms: int = 0, concurrency: int = 1):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.delay_ms = delay_ms
        self.concurrency = concurrency

    def next_delay(self) -> int:
        return self.delay_ms

    def next_concurrency(self) -> int:
        return self.concurrency
