import random

import pytest

from tradesim.domain.preset_mapper import map_preset_to_config
from tradesim.models.bot import BotConfig, ConvergenceMode
from tradesim.models.preset import PresetInput
from tradesim.repositories.in_memory_store import InMemoryStore
from tradesim.services.bot_manager import BotManager

# 2023-11-14 00:00:00 UTC
START_MS = 1_699_920_000_000

PRICES = {"BTC/USDT": 50_000.0, "ETH/USDT": 3_000.0, "BNB/USDT": 300.0}


class ManualClock:
    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def preset_config(
    mode: ConvergenceMode = ConvergenceMode.GUARANTEED, **changes
) -> BotConfig:
    config = map_preset_to_config(
        PresetInput(daily_target=2.5, trades_per_day=250, convergence_mode=mode),
        invested_capital=10_000,
    )
    if changes:
        config = config.merged(changes)
    return config


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def config():
    return preset_config()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def manager(store, clock):
    return BotManager(store, seed=7, clock=clock)
