"""Expand a four-field preset into a full, internally consistent BotConfig.

The mapping is a pure function of its inputs: the same preset and context
always give the same config.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..models.bot import AllowedSides, BotConfig, Character, RealismMode
from ..models.preset import PresetInput
from .convergence import convergence_profile
from .numeric import safe_div
from .sampling import realism_profile
from .state import DAY_MS

DEFAULT_TRADING_PAIRS = ["BTC/USDT", "ETH/USDT", "BNB/USDT"]
DEFAULT_INVESTED_CAPITAL = 10_000.0

PRESET_MAX_CONCURRENT = 5
PRESET_OPEN_FREQUENCY = 0.6
MIN_POSITION_SHARE = 0.01
MAX_POSITION_SHARE = 0.10

# Average loss is LOSS_WIN_RATIO * p / (1 - p) times the average win.
LOSS_WIN_RATIO = 0.7


@dataclass(frozen=True)
class CharacterProfile:
    win_rate: float
    leverage_min: int
    leverage_max: int
    default_realism: RealismMode


CHARACTER_PROFILES: Dict[Character, CharacterProfile] = {
    Character.CONSERVATIVE: CharacterProfile(0.55, 5, 10, RealismMode.REALISTIC),
    Character.MODERATE: CharacterProfile(0.60, 10, 20, RealismMode.REALISTIC),
    Character.AGGRESSIVE: CharacterProfile(0.75, 20, 50, RealismMode.VOLATILE),
}


def leverage_ladder(low: int, high: int) -> List[float]:
    """``[min, mid, max]``, e.g. (5, 10) -> [5, 8, 10]."""
    mid = int((low + high) / 2 + 0.5)
    return [float(low), float(mid), float(high)]


def map_preset_to_config(
    preset: PresetInput,
    trading_pairs: Optional[List[str]] = None,
    invested_capital: Optional[float] = None,
    name: Optional[str] = None,
) -> BotConfig:
    character = CHARACTER_PROFILES[Character(preset.character)]
    realism_mode = RealismMode(preset.realism_mode or character.default_realism)
    realism = realism_profile(realism_mode)

    capital = invested_capital if invested_capital is not None else DEFAULT_INVESTED_CAPITAL
    min_size = round(capital * MIN_POSITION_SHARE, 2)
    max_size = round(capital * MAX_POSITION_SHARE, 2)
    mean_size = (min_size + max_size) / 2.0

    p = character.win_rate
    trades = preset.trades_per_day
    per_trade = safe_div(preset.daily_target * capital, trades * mean_size)
    loss_ratio = LOSS_WIN_RATIO * p / (1 - p)
    avg_win = per_trade / (p - (1 - p) * loss_ratio)
    avg_loss = loss_ratio * avg_win
    spread = realism.bound_spread

    mean_duration = safe_div(PRESET_MAX_CONCURRENT * DAY_MS, trades)

    return BotConfig(
        name=name or f"{character_label(preset)} Bot",
        invested_capital=capital,
        leverages=leverage_ladder(character.leverage_min, character.leverage_max),
        allowed_sides=AllowedSides.BOTH,
        trading_pairs=list(trading_pairs) if trading_pairs else list(DEFAULT_TRADING_PAIRS),
        win_rate=p,
        daily_target_percent=preset.daily_target,
        trades_per_day=trades,
        min_position_size=min_size,
        max_position_size=max_size,
        max_concurrent_positions=PRESET_MAX_CONCURRENT,
        open_frequency=PRESET_OPEN_FREQUENCY,
        win_pnl_min=round(avg_win * (1 - spread), 4),
        win_pnl_max=round(avg_win * (1 + spread), 4),
        loss_pnl_min=round(-avg_loss * (1 + spread), 4),
        loss_pnl_max=round(-avg_loss * (1 - spread), 4),
        min_duration=int(round(mean_duration * 0.25)),
        max_duration=int(round(mean_duration * 1.75)),
        max_slippage=realism.max_slippage,
        convergence_mode=preset.convergence_mode,
        realism_mode=realism_mode,
        character=character_key(preset),
    )


def character_key(preset: PresetInput) -> Character:
    return Character(preset.character)


def character_label(preset: PresetInput) -> str:
    return character_key(preset).value.capitalize()


def validate_preset_input(preset: PresetInput) -> List[str]:
    errors: List[str] = []
    if not 0 <= preset.daily_target <= 10:
        errors.append("Daily target must be between 0% and 10%")
    if not 50 <= preset.trades_per_day <= 500:
        errors.append("Trades per day must be between 50 and 500")
    return errors


def describe_preset(preset: PresetInput) -> str:
    character = CHARACTER_PROFILES[character_key(preset)]
    realism_mode = RealismMode(preset.realism_mode or character.default_realism)
    convergence = convergence_profile(preset.convergence_mode)
    return "\n".join([
        f"{character_key(preset).value.upper()} Bot",
        f"- Win Rate: {character.win_rate * 100:.0f}%",
        f"- Leverage: {character.leverage_min}-{character.leverage_max}x",
        f"- Daily Target: {preset.daily_target:.1f}%",
        f"- Trades/Day: {preset.trades_per_day:g}",
        f"- Realism: {realism_mode.value}",
        f"- Convergence: {preset.convergence_mode.value} "
        f"({convergence.target_probability * 100:.0f}% target probability)",
    ])
