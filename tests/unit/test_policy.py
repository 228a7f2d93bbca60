"""
unit tests for services/harvest/policy.py
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from services.harvest.policy import FixedPolicy, RandomPolicy


class TestRandomPolicy:
    """Tests for RandomPolicy"""

    def test_random_policy_delay_in_range(self):
        policy = RandomPolicy(max_delay_ms=250, seed=1)

        delays = [policy.next_delay() for _ in range(500)]

        assert min(delays) >= 0
        assert max(delays) <= 250

    def test_random_policy_concurrency_choices(self):
        policy = RandomPolicy(seed=1)

        levels = {policy.next_concurrency() for _ in range(200)}

        assert levels == {1, 2, 3}

    def test_random_policy_seed_is_reproducible(self):
        a = RandomPolicy(seed=7)
        b = RandomPolicy(seed=7)

        assert [a.next_delay() for _ in range(20)] == [b.next_delay() for _ in range(20)]

    def test_random_policy_rejects_bad_config(self):
        with pytest.raises(ValueError):
            RandomPolicy(max_delay_ms=-1)
        with pytest.raises(ValueError):
            RandomPolicy(concurrency_choices=(0, 1))


class TestFixedPolicy:
    """Tests for FixedPolicy"""

    def test_fixed_policy(self):
        policy = FixedPolicy(delay_ms=100, concurrency=2)

        assert policy.next_delay() == 100
        assert policy.next_concurrency() == 2

    def test_fixed_policy_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            FixedPolicy(concurrency=0)
