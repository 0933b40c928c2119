from enum import Enum
from typing import Optional

from .base import CamelModel
from .bot import FrictionVolatility


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSING = "closing"


class Outcome(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"


class CloseReason(str, Enum):
    DURATION = "duration"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    EARLY_EXIT = "early_exit"


class FrictionBreakdown(CamelModel):
    volatility: FrictionVolatility
    slippage: float
    spread: float
    funding_rate: float
    commission: float
    total: float


class Position(CamelModel):
    id: str
    pair: str
    side: Side
    amount: float
    leverage: float
    position_size: float
    entry_price: float
    current_price: float
    pnl: float = 0.0
    pnl_percent: float = 0.0
    stop_loss: float
    take_profit: float
    opened_at: int
    status: PositionStatus = PositionStatus.OPEN
    close_reason: Optional[CloseReason] = None

    # Drawn when the position opens; closing reconciles to these.
    should_win: bool
    target_pnl_percent: float
    close_at: int
    earliest_close_at: int = 0
    entry_slippage: float = 0.0

    @property
    def target_pnl(self) -> float:
        return self.position_size * self.target_pnl_percent / 100.0


class Trade(CamelModel):
    id: str
    pair: str
    side: Side
    amount: float
    leverage: float
    position_size: float
    notional: float
    entry_price: float
    exit_price: float
    pnl: float
    pnl_percent: float
    stop_loss: float
    take_profit: float
    opened_at: int
    closed_at: int
    duration: int
    close_reason: CloseReason
    expected_outcome: Outcome
    actual_outcome: Outcome
    slippage: float = 0.0
    entry_slippage: float = 0.0
    friction: Optional[FrictionBreakdown] = None

    @property
    def is_win(self) -> bool:
        return self.pnl > 0
