"""Trading costs shown on closed trades: slippage, spread, funding and fees.

All components are percent of the position size, negative when they cost the
trader. A trade's net P&L is still its drawn target; the friction explains the
difference between the gross price move and that net result.
"""
from random import Random

from ..models.bot import FrictionVolatility
from ..models.trade import FrictionBreakdown, Side

BASE_SLIPPAGE = {
    FrictionVolatility.LOW: -0.05,
    FrictionVolatility.MEDIUM: -0.12,
    FrictionVolatility.HIGH: -0.25,
}

MAJOR_COINS = ("BTC", "ETH")
POPULAR_ALTS = ("BNB", "SOL", "AVAX", "MATIC", "LINK")

BASE_COMMISSION = -0.05

# UTC hours with US/EU sessions overlapping.
ACTIVE_HOURS = range(14, 23)


def _vary(rng: Random, base: float, spread: float) -> float:
    return base * (1 + (rng.random() - 0.5) * spread)


def estimate_volatility(rng: Random, epoch_ms: int) -> FrictionVolatility:
    hour = (epoch_ms // 3_600_000) % 24
    roll = rng.random()
    if hour in ACTIVE_HOURS:
        if roll < 0.1:
            return FrictionVolatility.LOW
        return FrictionVolatility.MEDIUM if roll < 0.7 else FrictionVolatility.HIGH
    if roll < 0.7:
        return FrictionVolatility.LOW
    return FrictionVolatility.MEDIUM if roll < 0.95 else FrictionVolatility.HIGH


def pair_spread(pair: str) -> float:
    if any(coin in pair for coin in MAJOR_COINS):
        return -0.03
    if any(coin in pair for coin in POPULAR_ALTS):
        return -0.06
    return -0.10


def funding_rate(rng: Random, side: Side) -> float:
    # Longs pay in bullish funding, shorts pay otherwise.
    if rng.random() < 0.6:
        base = -0.01 if side is Side.LONG else 0.008
    else:
        base = 0.005 if side is Side.LONG else -0.012
    return _vary(rng, base, 0.8)


def draw_friction(
    rng: Random,
    pair: str,
    side: Side,
    position_size: float,
    volatility: FrictionVolatility,
) -> FrictionBreakdown:
    size_factor = min(position_size / 1000.0, 2.0)
    slippage = _vary(rng, BASE_SLIPPAGE[volatility] - 0.02 * (size_factor - 1), 0.4)
    spread = _vary(rng, pair_spread(pair), 0.6)
    funding = funding_rate(rng, side)
    commission = _vary(rng, BASE_COMMISSION, 0.4)
    return FrictionBreakdown(
        volatility=volatility,
        slippage=slippage,
        spread=spread,
        funding_rate=funding,
        commission=commission,
        total=slippage + spread + funding + commission,
    )
