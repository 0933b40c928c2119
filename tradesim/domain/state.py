from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.trade import Position, Trade

DAY_MS = 86_400_000


def day_index(epoch_ms: int) -> int:
    return epoch_ms // DAY_MS


@dataclass
class DailyState:
    day: int = -1
    pnl: float = 0.0
    trades: int = 0
    wins: int = 0

    def roll(self, day: int) -> bool:
        if day == self.day:
            return False
        self.day = day
        self.pnl = 0.0
        self.trades = 0
        self.wins = 0
        return True

    def record(self, trade: Trade) -> None:
        self.pnl += trade.pnl
        self.trades += 1
        if trade.is_win:
            self.wins += 1


@dataclass
class BotState:
    positions: List[Position] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)
    daily: DailyState = field(default_factory=DailyState)
    last_open_at: Optional[int] = None
    recent_closes: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positions": [p.model_dump(mode="json", by_alias=True) for p in self.positions],
            "trades": [t.model_dump(mode="json", by_alias=True) for t in self.trades],
            "daily": {
                "day": self.daily.day,
                "pnl": self.daily.pnl,
                "trades": self.daily.trades,
                "wins": self.daily.wins,
            },
            "lastOpenAt": self.last_open_at,
            "recentCloses": list(self.recent_closes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotState":
        daily = data.get("daily") or {}
        return cls(
            positions=[Position.model_validate(p) for p in data.get("positions", [])],
            trades=[Trade.model_validate(t) for t in data.get("trades", [])],
            daily=DailyState(
                day=daily.get("day", -1),
                pnl=daily.get("pnl", 0.0),
                trades=daily.get("trades", 0),
                wins=daily.get("wins", 0),
            ),
            last_open_at=data.get("lastOpenAt"),
            recent_closes=list(data.get("recentCloses", [])),
        )
