"""Closed-loop correction that keeps a bot's day on its target trajectory.

Before each new trade is drawn the controller compares today's committed P&L
(closed trades plus the pre-drawn outcomes of open positions) with where the
target trajectory says it should be: the share of the day's trades already
made, or the share of the day already elapsed if that is further. The deficit is
spread over a mode-dependent horizon of future trades and applied through two
levers:

* magnitude: wins are scaled by ``1 + magnitude`` and losses by
  ``1 - magnitude``, capped by the bot's correction ceiling;
* probability: whatever the magnitude lever cannot absorb, plus today's
  win-count deficit, shifts the win probability within the mode's limit.

Trade pace gates the open decision: behind the day's schedule the open chance
rises to 1.5x, ahead of it the chance falls to zero, so the trade count follows
``trades_per_day`` however quickly positions close.

Once the committed P&L passes the full daily target three protective layers
apply regardless of mode: smaller positions, a throttle on new opens and early
exits of winning positions.
"""
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

from ..models.bot import BotConfig, ConvergenceMode
from .contribution import ContributionStats, contribution_stats
from .numeric import clamp, safe_div

# Trades ahead of schedule, as a share of trades_per_day, at which opening stops.
PACE_BAND = 0.02
MAX_PACE = 1.5

# Position-size multiplier by progress through the daily target.
SIZE_CURVE: Tuple[Tuple[float, float], ...] = ((1.0, 1.0), (1.1, 0.5), (1.2, 0.5), (1.3, 0.2))

THROTTLE_PROGRESS = 1.3
THROTTLE_KEEP = 0.3

EARLY_EXIT_STEPS: Tuple[Tuple[float, float], ...] = ((1.4, 0.5), (1.2, 0.3))


@dataclass(frozen=True)
class ConvergenceProfile:
    strength: float
    horizon: float
    correction_ceiling: float
    max_probability_shift: float
    target_probability: float


CONVERGENCE_PROFILES: Dict[ConvergenceMode, ConvergenceProfile] = {
    ConvergenceMode.NATURAL: ConvergenceProfile(
        strength=0.3,
        horizon=1.0,
        correction_ceiling=0.04,
        max_probability_shift=0.03,
        target_probability=0.825,
    ),
    ConvergenceMode.ASSISTED: ConvergenceProfile(
        strength=0.6,
        horizon=0.5,
        correction_ceiling=0.07,
        max_probability_shift=0.06,
        target_probability=0.90,
    ),
    ConvergenceMode.GUARANTEED: ConvergenceProfile(
        strength=1.0,
        horizon=0.25,
        correction_ceiling=0.10,
        max_probability_shift=0.10,
        target_probability=0.955,
    ),
}


def convergence_profile(mode: ConvergenceMode) -> ConvergenceProfile:
    return CONVERGENCE_PROFILES[ConvergenceMode(mode)]


def interpolate(x: float, points: Sequence[Tuple[float, float]]) -> float:
    """Piecewise-linear curve through ``points``, flat beyond both ends."""
    if x <= points[0][0]:
        return points[0][1]
    for (x0, y0), (x1, y1) in zip(points, points[1:]):
        if x <= x1:
            return y0 + (y1 - y0) * safe_div(x - x0, x1 - x0)
    return points[-1][1]


@dataclass(frozen=True)
class DayProgress:
    trades: int
    wins: int
    pnl_percent: float
    day_fraction: float


@dataclass(frozen=True)
class Correction:
    magnitude: float
    win_probability: float
    open_multiplier: float
    size_multiplier: float = 1.0


class ConvergenceController:
    def __init__(self, config: BotConfig, max_correction: float) -> None:
        self._profile = convergence_profile(config.convergence_mode)
        self._stats: ContributionStats = contribution_stats(config)
        self._target = config.daily_target_percent
        self.cap = max(0.0, min(self._profile.correction_ceiling, max_correction))

    @property
    def profile(self) -> ConvergenceProfile:
        return self._profile

    def target_progress(self, progress: DayProgress) -> float:
        """Committed P&L as a fraction of the full daily target."""
        return safe_div(progress.pnl_percent, self._target)

    def early_exit_chance(self, progress: DayProgress) -> float:
        reached = self.target_progress(progress)
        for threshold, chance in EARLY_EXIT_STEPS:
            if reached >= threshold:
                return chance
        return 0.0

    def correction(self, progress: DayProgress) -> Correction:
        stats = self._stats
        profile = self._profile
        n = stats.trades_per_day
        p = stats.win_rate
        horizon = max(1.0, n * profile.horizon)

        # Trajectory point: trade pace or wall-clock, whichever is further along.
        elapsed = clamp(max(safe_div(progress.trades, n), progress.day_fraction), 0.0, 1.0)
        deficit = self._target * elapsed - progress.pnl_percent
        needed = profile.strength * deficit / horizon

        magnitude = clamp(safe_div(needed, stats.mean_abs), -self.cap, self.cap)
        residual = needed - magnitude * stats.mean_abs
        shift = safe_div(residual, stats.win_value + stats.loss_value)
        shift += profile.strength * (p * progress.trades - progress.wins) / horizon
        shift = clamp(shift, -profile.max_probability_shift, profile.max_probability_shift)

        behind = n * progress.day_fraction - progress.trades
        pace = clamp(1.0 + behind / max(1.0, n * PACE_BAND), 0.0, MAX_PACE)

        reached = self.target_progress(progress)
        if reached > THROTTLE_PROGRESS:
            pace *= THROTTLE_KEEP

        return Correction(
            magnitude=magnitude,
            win_probability=clamp(p + shift, 0.01, 0.99),
            open_multiplier=pace,
            size_multiplier=interpolate(reached, SIZE_CURVE),
        )
