"""
Shared fixtures: a fake upstream fetcher and a controllable clock.
"""

import asyncio

import pytest

from dayz_server_lookup.lookup import RefreshPolicy, ServerDirectory
from dayz_server_lookup.servers import normalize_server


def raw_server(addr="1.2.3.4:2302", gameport=2302, **overrides) -> dict:
    server = {
        "name": "X",
        "addr": addr,
        "gameport": gameport,
        "gametype": "lqs3",
        "players": 10,
        "max_players": 60,
        "map": "chernarus",
    }
    server.update(overrides)
    return server


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeFetcher:
    """
    Stands in for fetch_servers. Returns the queued results in order, repeating the last.
    """

    def __init__(self, *results, delay: float = 0):
        self.results = list(results)
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


@pytest.fixture
def servers() -> list[dict]:
    return [
        normalize_server(raw_server()),
        normalize_server(
            raw_server(
                addr="5.6.7.8:27016",
                gameport=2402,
                name="Y",
                gametype="battleye,etm4,entm8,14:05",
                map="livonia",
            )
        ),
        normalize_server(raw_server(gameport=2402, name="Z")),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_directory(clock):
    def make(fetcher) -> ServerDirectory:
        return ServerDirectory(fetcher, RefreshPolicy(clock=clock))

    return make
