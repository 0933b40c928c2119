import logging
import math
import random
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..domain.convergence import ConvergenceController, DayProgress
from ..domain.friction import draw_friction, estimate_volatility
from ..domain.numeric import clamp, safe_div, safe_number
from ..domain.sampling import draw_in_range, realism_profile
from ..domain.state import DAY_MS, BotState, day_index
from ..domain.validator import validate_bot_config
from ..models.bot import AllowedSides, BotConfig
from ..models.preset import ValidationResult
from ..models.stats import BotStats, BotTickResult
from ..models.trade import (
    CloseReason,
    FrictionBreakdown,
    Outcome,
    Position,
    PositionStatus,
    Side,
    Trade,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

# Entry fills slip by at most this share of max_slippage.
ENTRY_SLIPPAGE_SHARE = 0.05


def now_ms() -> int:
    return int(time.time() * 1000)


def lookup_price(prices: Mapping[str, float], pair: str) -> Optional[float]:
    """Price for ``pair``, accepting both ``BTC/USDT`` and ``BTCUSDT`` keys."""
    price = prices.get(pair)
    if price is None:
        price = prices.get(pair.replace("/", ""))
    if price is None or not math.isfinite(price) or price <= 0:
        return None
    return float(price)


def _dump_rng(rng: random.Random) -> List[Any]:
    version, internal, gauss = rng.getstate()
    return [version, list(internal), gauss]


def _load_rng(data: List[Any]) -> random.Random:
    rng = random.Random()
    version, internal, gauss = data
    rng.setstate((version, tuple(internal), gauss))
    return rng


class TradingBot:
    """One simulated bot: its open positions, its trade history and the loop
    that turns price ticks into trades that track the configured targets.

    Every trade's outcome, P&L percent and lifetime are drawn when the position
    opens. Prices only drive the live valuation and the take-profit/stop-loss
    triggers; the close always settles on the pre-drawn result.
    """

    def __init__(
        self,
        bot_id: str,
        config: BotConfig,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
        state: Optional[BotState] = None,
    ) -> None:
        self.id = bot_id
        self._rng = rng or random.Random()
        self._clock = clock or now_ms
        self._state = state or BotState()
        self._apply_config(config)

    def _apply_config(self, config: BotConfig) -> None:
        self._config = config.model_copy(update={"id": self.id}, deep=True)
        self._validation = validate_bot_config(self._config)
        self._controller = ConvergenceController(
            self._config, self._validation.max_correction_percent
        )
        self._realism = realism_profile(self._config.realism_mode)

    @property
    def config(self) -> BotConfig:
        return self._config.model_copy(deep=True)

    @property
    def validation(self) -> ValidationResult:
        return self._validation

    @property
    def correction_cap(self) -> float:
        return self._controller.cap

    @property
    def positions(self) -> List[Position]:
        return [p.model_copy() for p in self._state.positions]

    @property
    def open_count(self) -> int:
        return len(self._state.positions)

    @property
    def trades(self) -> List[Trade]:
        return list(self._state.trades)

    def update_config(self, config: BotConfig) -> None:
        """Takes effect on the next tick. Open positions keep their draws."""
        self._apply_config(config)
        logger.info(
            "CONFIG_UPDATE: bot=%s target=%.2f%% trades_per_day=%g mode=%s realism=%s cap=%.4f",
            self.id,
            self._config.daily_target_percent,
            self._config.trades_per_day,
            self._config.convergence_mode.value,
            self._config.realism_mode.value,
            self._controller.cap,
        )

    def clear_history(self) -> None:
        self._state = BotState()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def process_tick(self, prices: Mapping[str, float]) -> BotTickResult:
        quotes: Dict[str, float] = {}
        for pair in self._config.trading_pairs:
            price = lookup_price(prices, pair)
            if price is not None:
                quotes[pair] = price

        priced_positions = any(
            lookup_price(prices, p.pair) is not None for p in self._state.positions
        )
        if not quotes and not priced_positions:
            logger.debug("TICK_SKIP: bot=%s no prices for configured pairs", self.id)
            return BotTickResult(bot_id=self.id, skipped=True)

        now = self._clock()
        previous_day = self._state.daily.day
        if self._state.daily.roll(day_index(now)) and previous_day >= 0:
            logger.info(
                "DAILY_RESET: bot=%s day=%d open_positions=%d",
                self.id,
                self._state.daily.day,
                len(self._state.positions),
            )

        closed = self._manage_positions(prices, now)
        opened = self._try_open_position(quotes, now)

        logger.debug(
            "TICK: bot=%s priced_pairs=%d positions=%d opened=%d closed=%d daily_pnl=%.2f",
            self.id,
            len(quotes),
            len(self._state.positions),
            0 if opened is None else 1,
            len(closed),
            self._state.daily.pnl,
        )
        return BotTickResult(
            bot_id=self.id,
            opened=[opened.model_copy()] if opened is not None else [],
            closed=closed,
        )

    # ------------------------------------------------------------------
    # Valuation and closing
    # ------------------------------------------------------------------

    def _manage_positions(self, prices: Mapping[str, float], now: int) -> List[Trade]:
        remaining: List[Position] = []
        candidates = []
        exit_chance = self._controller.early_exit_chance(self._day_progress(now))

        for position in self._state.positions:
            price = lookup_price(prices, position.pair)
            if price is not None:
                self._revalue(position, price)
            reason = self._close_reason(position, price, now, exit_chance)
            if reason is None:
                remaining.append(position)
            else:
                candidates.append((position, reason))

        # Positions already waiting in ``closing`` go first, then oldest due.
        candidates.sort(key=lambda c: (c[0].status is not PositionStatus.CLOSING, c[0].close_at))

        closed: List[Trade] = []
        for position, reason in candidates:
            if self._may_close(now):
                closed.append(self._close_position(position, reason, now))
            else:
                if position.status is not PositionStatus.CLOSING:
                    logger.debug(
                        "CLOSE_DEFERRED: bot=%s position=%s reason=%s",
                        self.id,
                        position.id,
                        reason.value,
                    )
                position.status = PositionStatus.CLOSING
                position.close_reason = reason
                remaining.append(position)

        self._state.positions = remaining
        return closed

    def _revalue(self, position: Position, price: float) -> None:
        position.current_price = price
        pnl = position.side.sign * (price - position.entry_price) * position.amount
        position.pnl = safe_number(pnl)
        position.pnl_percent = safe_div(pnl, position.position_size) * 100.0

    def _close_reason(
        self, position: Position, price: Optional[float], now: int, exit_chance: float = 0.0
    ) -> Optional[CloseReason]:
        if position.status is PositionStatus.CLOSING:
            return position.close_reason
        if now >= position.close_at:
            return CloseReason.DURATION
        if price is None or now < position.earliest_close_at:
            return None
        sign = position.side.sign
        if sign * (price - position.take_profit) >= 0:
            return CloseReason.TAKE_PROFIT
        if sign * (position.stop_loss - price) >= 0:
            return CloseReason.STOP_LOSS
        # Far past the daily target: bank a running winner before its target.
        if (
            exit_chance > 0
            and position.should_win
            and position.pnl_percent > 0
            and self._rng.random() < exit_chance
        ):
            return CloseReason.EARLY_EXIT
        return None

    def _settled_percent(self, position: Position, reason: CloseReason) -> float:
        target = position.target_pnl_percent
        if reason is not CloseReason.EARLY_EXIT:
            return target
        return clamp(position.pnl_percent, min(self._config.win_pnl_min, target), target)

    def _friction(self, position: Position, now: int) -> Optional[FrictionBreakdown]:
        friction = self._config.market_friction
        if friction is None or not friction.enabled:
            return None
        volatility = friction.volatility or estimate_volatility(self._rng, now)
        return draw_friction(
            self._rng, position.pair, position.side, position.position_size, volatility
        )

    def _may_close(self, now: int) -> bool:
        staggered = self._config.staggered_closing
        if staggered is None or not staggered.enabled:
            return True
        cutoff = now - staggered.window_ms
        self._state.recent_closes = [t for t in self._state.recent_closes if t > cutoff]
        return len(self._state.recent_closes) < staggered.max_closures_in_window

    def _close_position(self, position: Position, reason: CloseReason, now: int) -> Trade:
        settled = self._settled_percent(position, reason)
        pnl = position.position_size * settled / 100.0
        friction = self._friction(position, now)
        # The price move covers the costs on top of the net result.
        gross = settled - friction.total if friction is not None else settled
        sign = position.side.sign
        clean_exit = position.entry_price * (1 + sign * gross / (position.leverage * 100.0))
        slippage = self._rng.uniform(-1.0, 1.0) * self._config.max_slippage
        exit_price = clean_exit * (1 + slippage / 100.0)

        deferred = position.status is PositionStatus.CLOSING
        if reason is CloseReason.DURATION and not deferred:
            closed_at = min(now, position.close_at)
        else:
            closed_at = now

        trade = Trade(
            id=self._new_id("trade"),
            pair=position.pair,
            side=position.side,
            amount=position.amount,
            leverage=position.leverage,
            position_size=position.position_size,
            notional=position.position_size * position.leverage,
            entry_price=position.entry_price,
            exit_price=exit_price,
            pnl=pnl,
            pnl_percent=settled,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            opened_at=position.opened_at,
            closed_at=closed_at,
            duration=closed_at - position.opened_at,
            close_reason=reason,
            expected_outcome=Outcome.WIN if position.should_win else Outcome.LOSS,
            actual_outcome=Outcome.WIN if pnl > 0 else Outcome.LOSS,
            slippage=abs(slippage),
            entry_slippage=position.entry_slippage,
            friction=friction,
        )
        self._state.trades.append(trade)
        self._state.daily.record(trade)
        staggered = self._config.staggered_closing
        if staggered is not None and staggered.enabled:
            self._state.recent_closes.append(now)

        logger.debug(
            "BOT_CLOSE: bot=%s pair=%s side=%s reason=%s pnl=%.2f pnl_pct=%.4f "
            "entry=%.4f exit=%.4f duration_ms=%d daily_pnl=%.2f",
            self.id,
            trade.pair,
            trade.side.value,
            reason.value,
            trade.pnl,
            trade.pnl_percent,
            trade.entry_price,
            trade.exit_price,
            trade.duration,
            self._state.daily.pnl,
        )
        return trade

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def _day_progress(self, now: int) -> DayProgress:
        daily = self._state.daily
        open_positions = self._state.positions
        committed = daily.pnl + sum(p.target_pnl for p in open_positions)
        return DayProgress(
            trades=daily.trades + len(open_positions),
            wins=daily.wins + sum(1 for p in open_positions if p.should_win),
            pnl_percent=safe_div(committed, self._config.invested_capital) * 100.0,
            day_fraction=(now % DAY_MS) / DAY_MS,
        )

    def _try_open_position(self, quotes: Dict[str, float], now: int) -> Optional[Position]:
        config = self._config
        if not quotes:
            return None
        if len(self._state.positions) >= config.max_concurrent_positions:
            return None
        last_open = self._state.last_open_at
        if config.cooldown_ms and last_open is not None and now - last_open < config.cooldown_ms:
            return None
        leverages = [lev for lev in config.leverage_set() if lev > 0]
        if not leverages:
            return None

        correction = self._controller.correction(self._day_progress(now))
        probability = clamp(config.open_frequency * correction.open_multiplier, 0.0, 1.0)
        if self._rng.random() >= probability:
            return None

        rng = self._rng
        pair = rng.choice(list(quotes))
        side = self._pick_side()
        size = rng.uniform(config.min_position_size, config.max_position_size)
        size = max(config.min_position_size, size * correction.size_multiplier)
        leverage = rng.choice(leverages)
        should_win = rng.random() < correction.win_probability
        target = self._draw_target(should_win, correction.magnitude)
        lifetime = int(round(draw_in_range(rng, config.min_duration, config.max_duration, self._realism)))

        entry_slippage = rng.random() * config.max_slippage * ENTRY_SLIPPAGE_SHARE
        entry_price = quotes[pair] * (1 + side.sign * entry_slippage / 100.0)
        tp_percent = target if should_win else config.win_pnl_max
        sl_percent = config.loss_pnl_min if should_win else target
        scale = side.sign / (leverage * 100.0)

        position = Position(
            id=self._new_id("pos"),
            pair=pair,
            side=side,
            amount=size * leverage / entry_price,
            leverage=leverage,
            position_size=size,
            entry_price=entry_price,
            current_price=quotes[pair],
            stop_loss=entry_price * (1 + sl_percent * scale),
            take_profit=entry_price * (1 + tp_percent * scale),
            opened_at=now,
            should_win=should_win,
            target_pnl_percent=target,
            close_at=now + lifetime,
            earliest_close_at=now + config.min_duration,
            entry_slippage=entry_slippage,
        )
        self._revalue(position, quotes[pair])
        self._state.positions.append(position)
        self._state.last_open_at = now

        logger.debug(
            "BOT_OPEN: bot=%s pair=%s side=%s size=%.2f lev=%g entry=%.4f should_win=%s "
            "target_pct=%.4f lifetime_ms=%d p_win=%.3f magnitude=%.4f",
            self.id,
            pair,
            side.value,
            size,
            leverage,
            entry_price,
            should_win,
            target,
            lifetime,
            correction.win_probability,
            correction.magnitude,
        )
        return position

    def _pick_side(self) -> Side:
        allowed = self._config.allowed_sides
        if allowed is AllowedSides.LONG:
            return Side.LONG
        if allowed is AllowedSides.SHORT:
            return Side.SHORT
        return Side.LONG if self._rng.random() < 0.5 else Side.SHORT

    def _draw_target(self, should_win: bool, magnitude: float) -> float:
        config = self._config
        if should_win:
            low, high = config.win_pnl_min, config.win_pnl_max
            value = draw_in_range(self._rng, low, high, self._realism) * (1 + magnitude)
            return clamp(value, low, high)
        low, high = abs(config.loss_pnl_max), abs(config.loss_pnl_min)
        value = draw_in_range(self._rng, low, high, self._realism) * (1 - magnitude)
        return -clamp(value, low, high)

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.UUID(int=self._rng.getrandbits(128), version=4)}"

    # ------------------------------------------------------------------
    # Read side and persistence
    # ------------------------------------------------------------------

    def stats(self, trade_limit: Optional[int] = None) -> BotStats:
        config = self._config
        trades = self._state.trades
        wins = [t for t in trades if t.is_win]
        losses = [t for t in trades if not t.is_win]

        total_pnl = safe_number(sum(t.pnl for t in trades))
        unrealized = safe_number(sum(p.pnl for p in self._state.positions))
        daily_pct = safe_div(self._state.daily.pnl, config.invested_capital) * 100.0

        recent = list(reversed(trades))
        if trade_limit is not None:
            recent = recent[:trade_limit]

        return BotStats(
            id=self.id,
            name=config.name,
            positions=self.positions,
            trades=recent,
            total_pnl=total_pnl,
            unrealized_pnl=unrealized,
            win_rate=safe_div(len(wins), len(trades)),
            trades_count=len(trades),
            wins_count=len(wins),
            losses_count=len(losses),
            avg_win=safe_div(sum(t.pnl for t in wins), len(wins)),
            avg_loss=safe_div(sum(t.pnl for t in losses), len(losses)),
            invested_capital=safe_number(config.invested_capital),
            current_value=safe_number(config.invested_capital + total_pnl + unrealized),
            daily_pnl_percent=safe_number(daily_pct),
            daily_progress=safe_div(daily_pct, config.daily_target_percent),
        )

    def to_record(self) -> Dict[str, Any]:
        data = self._state.to_dict()
        data["rngState"] = _dump_rng(self._rng)
        return data

    @classmethod
    def from_record(
        cls,
        bot_id: str,
        config: BotConfig,
        data: Dict[str, Any],
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> "TradingBot":
        if data.get("rngState"):
            rng = _load_rng(data["rngState"])
        return cls(bot_id, config, rng=rng, clock=clock, state=BotState.from_dict(data))
