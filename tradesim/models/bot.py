from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field
from pydantic.alias_generators import to_camel

from .base import CamelModel


class UnknownConfigFieldError(ValueError):
    def __init__(self, fields: List[str]) -> None:
        super().__init__(f"Unknown config fields: {', '.join(fields)}")
        self.fields = fields


class AllowedSides(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    BOTH = "BOTH"


class Character(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class ConvergenceMode(str, Enum):
    NATURAL = "natural"
    ASSISTED = "assisted"
    GUARANTEED = "guaranteed"


class RealismMode(str, Enum):
    SMOOTH = "smooth"
    REALISTIC = "realistic"
    VOLATILE = "volatile"


class FrictionVolatility(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class StaggeredClosingConfig(CamelModel):
    enabled: bool = False
    max_closures_in_window: int = 3
    window_ms: int = 30_000


class MarketFrictionConfig(CamelModel):
    enabled: bool = False
    # None picks a volatility from the hour of day on every close.
    volatility: Optional[FrictionVolatility] = None


class BotConfig(CamelModel):
    """Full configuration of one simulated bot.

    Fields are only type-checked here. Range and consistency checks live in
    ``tradesim.domain.validator`` so that an inconsistent config can still be
    loaded, reported on and fixed.

    Units: ``daily_target_percent`` is percent of ``invested_capital`` per day,
    P&L bounds are percent of the position size, durations are milliseconds and
    ``max_slippage`` is percent of price.
    """

    id: str = ""
    name: str
    invested_capital: float

    leverage: Optional[float] = None
    leverages: List[float] = Field(default_factory=list)
    allowed_sides: AllowedSides = AllowedSides.BOTH
    trading_pairs: List[str]

    win_rate: float
    daily_target_percent: float
    trades_per_day: float

    min_position_size: float
    max_position_size: float
    max_concurrent_positions: int = 5
    open_frequency: float = 0.6

    win_pnl_min: float = Field(alias="winPnLMin")
    win_pnl_max: float = Field(alias="winPnLMax")
    loss_pnl_min: float = Field(alias="lossPnLMin")
    loss_pnl_max: float = Field(alias="lossPnLMax")

    min_duration: int
    max_duration: int

    max_slippage: float = 0.3
    convergence_mode: ConvergenceMode = ConvergenceMode.GUARANTEED
    realism_mode: RealismMode = RealismMode.REALISTIC

    character: Optional[Character] = None
    cooldown_ms: int = 0
    staggered_closing: Optional[StaggeredClosingConfig] = None
    market_friction: Optional[MarketFrictionConfig] = None
    created_at: Optional[int] = None

    def leverage_set(self) -> List[float]:
        if self.leverages:
            return list(self.leverages)
        if self.leverage is not None:
            return [self.leverage]
        return []

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def wire_name(cls, key: str) -> Optional[str]:
        """JSON alias for an attribute name or alias, None if unknown."""
        for name, field in cls.model_fields.items():
            alias = field.alias or to_camel(name)
            if key in (name, alias):
                return alias
        return None

    def merged(self, changes: Dict[str, Any]) -> "BotConfig":
        """Return a new config with ``changes`` applied on top of this one.

        Keys may use either the attribute name or the JSON alias. Unknown keys
        raise ``UnknownConfigFieldError``. A fixed ``leverage`` without a new
        ``leverages`` list replaces the leverage set.
        """
        data = self.to_json()
        updates: Dict[str, Any] = {}
        unknown = []
        for key, value in changes.items():
            alias = self.wire_name(key)
            if alias is None:
                unknown.append(key)
            else:
                updates[alias] = value
        if unknown:
            raise UnknownConfigFieldError(unknown)
        if "leverage" in updates and "leverages" not in updates:
            updates["leverages"] = []
        data.update(updates)
        return type(self).model_validate(data)
