"""Per-trade contribution of a config to its daily return.

A trade contributes ``size * pnl_percent / capital`` percent of invested capital.
Sizes are uniform in the position-size bounds and P&L percents are
realism-weighted draws centred in their bound ranges, so the moments below are
exact for the bot's own sampling.
"""
import math
from dataclasses import dataclass

from ..models.bot import BotConfig
from .numeric import safe_div, safe_number
from .sampling import realism_profile


@dataclass(frozen=True)
class ContributionStats:
    win_rate: float
    trades_per_day: float
    win_value: float
    loss_value: float
    expected_per_trade: float
    mean_abs: float
    sigma: float
    best_daily: float
    worst_daily: float

    @property
    def expected_daily(self) -> float:
        return self.expected_per_trade * self.trades_per_day

    def max_correction(self, daily_target: float) -> float:
        """Worst realistic relative magnitude adjustment needed per trade.

        The structural part closes the gap between what the bounds imply and
        the target, spread over a day of trades. The variance part absorbs one
        standard deviation of a day's magnitude noise.
        """
        n = self.trades_per_day
        if n <= 0 or self.mean_abs <= 0:
            return 0.0
        structural = safe_div(abs(daily_target - self.expected_daily), n * self.mean_abs)
        variance = safe_div(self.sigma, self.mean_abs * math.sqrt(n))
        return safe_number(structural + variance)


def contribution_stats(config: BotConfig) -> ContributionStats:
    p = config.win_rate
    n = config.trades_per_day
    capital = config.invested_capital
    low, high = config.min_position_size, config.max_position_size
    mean_size = (low + high) / 2.0
    size_sq = (low * low + low * high + high * high) / 3.0

    unit_var = realism_profile(config.realism_mode).unit_variance()
    win_mid = (config.win_pnl_min + config.win_pnl_max) / 2.0
    loss_mid = abs(config.loss_pnl_min + config.loss_pnl_max) / 2.0
    win_var = unit_var * (config.win_pnl_max - config.win_pnl_min) ** 2
    loss_var = unit_var * (config.loss_pnl_max - config.loss_pnl_min) ** 2

    win_value = safe_div(mean_size * win_mid, capital)
    loss_value = safe_div(mean_size * loss_mid, capital)

    def conditional_var(mid: float, var: float) -> float:
        raw = size_sq * (mid * mid + var) - (mean_size * mid) ** 2
        return max(0.0, safe_div(raw, capital * capital))

    pooled = p * conditional_var(win_mid, win_var) + (1 - p) * conditional_var(loss_mid, loss_var)
    scale = safe_div(n * mean_size, capital)

    return ContributionStats(
        win_rate=p,
        trades_per_day=n,
        win_value=win_value,
        loss_value=loss_value,
        expected_per_trade=p * win_value - (1 - p) * loss_value,
        mean_abs=p * win_value + (1 - p) * loss_value,
        sigma=math.sqrt(safe_number(pooled)),
        best_daily=scale * (p * config.win_pnl_max + (1 - p) * config.loss_pnl_max),
        worst_daily=scale * (p * config.win_pnl_min + (1 - p) * config.loss_pnl_min),
    )
