"""
Test Suite Configuration
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, List

import numpy as np
import pytest


def event(user_id, timestamp, platform="web", volume=1.0, fee=0.0) -> Dict:
    """Raw event mapping as ingested"""
    return {
        "user_id": user_id,
        "platform": platform,
        "timestamp": timestamp,
        "volume": volume,
        "fee": fee,
    }


@pytest.fixture
def make_event() -> Callable[..., Dict]:
    return event


@pytest.fixture
def scenario_a_events() -> List[Dict]:
    """Two events within six hours of the origin, one just after"""
    return [
        event("u1", "2023-02-01 08:00:00", volume=1, fee=0.5),
        event("u1", "2023-02-01 08:05:00", volume=2, fee=1.0),
        event("u1", "2023-02-01 14:01:00", volume=3, fee=1.5),
    ]


@pytest.fixture
def burst_events() -> List[Dict]:
    """Twenty events for one partition between 08:00 and 08:10"""
    start = datetime(2023, 2, 1, 8, 0)
    return [
        event("u2", start + timedelta(seconds=30 * i), volume=i + 1, fee=0.25 * i)
        for i in range(20)
    ]


@pytest.fixture
def random_events() -> List[Dict]:
    """Seeded batch spread over several users, platforms and days, with clusters"""
    rng = np.random.default_rng(7)
    start = datetime(2023, 2, 1)
    users = ["alice", "bob", "carol", "dave", "erin"]
    platforms = ["web", "android", "ios"]
    
    events = []
    for _ in range(600):
        # Half the events cluster in the first hour of a day
        if rng.random() < 0.5:
            offset = timedelta(days=int(rng.integers(0, 3)), seconds=int(rng.integers(0, 3600)))
        else:
            offset = timedelta(seconds=int(rng.integers(0, 3 * 24 * 3600)))
        events.append(event(
            str(rng.choice(users)),
            start + offset,
            platform=str(rng.choice(platforms)),
            volume=float(rng.integers(0, 10)),
            fee=round(float(rng.uniform(0, 3)), 2),
        ))
    return events
