"""
Market friction tests.
"""
import random

import pytest

from conftest import START_MS
from tradesim.domain.friction import draw_friction, estimate_volatility, pair_spread
from tradesim.models.bot import FrictionVolatility
from tradesim.models.trade import Side

HOUR_MS = 3_600_000


class TestSpread:
    @pytest.mark.parametrize(
        "pair, expected",
        [("BTC/USDT", -0.03), ("ETH/USDT", -0.03), ("SOL/USDT", -0.06), ("PEPE/USDT", -0.10)],
    )
    def test_pair_tiers(self, pair, expected):
        assert pair_spread(pair) == expected


class TestDraw:
    def test_components_add_up_and_cost(self, rng):
        for _ in range(2_000):
            volatility = rng.choice(list(FrictionVolatility))
            side = rng.choice([Side.LONG, Side.SHORT])
            friction = draw_friction(rng, "DOGE/USDT", side, rng.uniform(100, 2_000), volatility)
            assert friction.volatility is volatility
            assert friction.total == pytest.approx(
                friction.slippage + friction.spread + friction.funding_rate + friction.commission
            )
            assert -0.55 < friction.total < 0
            assert friction.slippage < 0 and friction.spread < 0 and friction.commission < 0

    def test_slippage_grows_with_volatility(self):
        def mean_slippage(volatility):
            rng = random.Random(3)
            draws = [
                draw_friction(rng, "BTC/USDT", Side.LONG, 500.0, volatility).slippage
                for _ in range(500)
            ]
            return sum(draws) / len(draws)

        low = mean_slippage(FrictionVolatility.LOW)
        medium = mean_slippage(FrictionVolatility.MEDIUM)
        high = mean_slippage(FrictionVolatility.HIGH)
        assert high < medium < low < 0


class TestVolatility:
    def test_active_hours_are_busier(self):
        rng = random.Random(11)
        # 16:00 UTC against 04:00 UTC
        busy = [estimate_volatility(rng, START_MS + 16 * HOUR_MS) for _ in range(1_000)]
        quiet = [estimate_volatility(rng, START_MS + 4 * HOUR_MS) for _ in range(1_000)]
        assert busy.count(FrictionVolatility.HIGH) > quiet.count(FrictionVolatility.HIGH)
        assert quiet.count(FrictionVolatility.LOW) > busy.count(FrictionVolatility.LOW)
