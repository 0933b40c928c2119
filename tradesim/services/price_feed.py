import logging
import math
import random
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

PriceListener = Callable[[Dict[str, float]], None]
Unsubscribe = Callable[[], None]


class PriceFeed(ABC):
    """Source of price snapshots keyed by pair (``BTC/USDT`` or ``BTCUSDT``)."""

    @abstractmethod
    def subscribe(self, callback: PriceListener) -> Unsubscribe:
        ...


class LocalPriceFeed(PriceFeed):
    def __init__(self) -> None:
        self._listeners: List[PriceListener] = []

    def subscribe(self, callback: PriceListener) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, prices: Mapping[str, float]) -> None:
        snapshot = {
            pair: float(price)
            for pair, price in prices.items()
            if price is not None and math.isfinite(price) and price > 0
        }
        for listener in list(self._listeners):
            try:
                listener(dict(snapshot))
            except Exception:
                logger.exception("PRICE_LISTENER_FAILED: pairs=%d", len(snapshot))


class SimulatedPriceFeed(LocalPriceFeed):
    """Seeded multiplicative random walk for running without a market source."""

    def __init__(
        self,
        base_prices: Mapping[str, float],
        volatility: float = 0.001,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__()
        self._prices: Dict[str, float] = {pair: float(p) for pair, p in base_prices.items()}
        self._volatility = volatility
        self._rng = rng or random.Random()

    @property
    def prices(self) -> Dict[str, float]:
        return dict(self._prices)

    def step(self) -> Dict[str, float]:
        for pair, price in self._prices.items():
            move = self._rng.gauss(0.0, self._volatility)
            self._prices[pair] = price * math.exp(move)
        snapshot = self.prices
        self.publish(snapshot)
        return snapshot
