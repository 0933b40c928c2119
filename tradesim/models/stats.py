from typing import List

from pydantic import Field

from .base import CamelModel
from .trade import Position, Trade


class BotStats(CamelModel):
    id: str
    name: str
    positions: List[Position]
    trades: List[Trade]
    total_pnl: float = Field(alias="totalPnL")
    unrealized_pnl: float = Field(alias="unrealizedPnL")
    win_rate: float
    trades_count: int
    wins_count: int
    losses_count: int
    avg_win: float
    avg_loss: float
    invested_capital: float
    current_value: float
    daily_pnl_percent: float = Field(alias="dailyPnLPercent")
    daily_progress: float


class ManagerStats(CamelModel):
    total_bots: int
    total_invested: float
    total_current_value: float
    total_pnl: float = Field(alias="totalPnL")
    win_rate: float
    total_positions: int
    total_trades: int
    trades: List[Trade]
    bots: List[BotStats]


class BotTickResult(CamelModel):
    bot_id: str
    opened: List[Position] = Field(default_factory=list)
    closed: List[Trade] = Field(default_factory=list)
    skipped: bool = False
    failed: bool = False
