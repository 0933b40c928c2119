import logging
from typing import List

from pydantic.alias_generators import to_camel

from ..models.bot import BotConfig
from ..models.preset import ValidationResult
from .contribution import contribution_stats
from .convergence import convergence_profile
from .numeric import safe_number

logger = logging.getLogger(__name__)

AGGRESSIVE_DAILY_TARGET = 5.0

_BOUND_PAIRS = (
    ("min_position_size", "max_position_size"),
    ("win_pnl_min", "win_pnl_max"),
    ("loss_pnl_min", "loss_pnl_max"),
    ("min_duration", "max_duration"),
)


def _alias(name: str) -> str:
    return BotConfig.model_fields[name].alias or to_camel(name)


def _structural_issues(config: BotConfig) -> List[str]:
    issues: List[str] = []

    for low_name, high_name in _BOUND_PAIRS:
        low = getattr(config, low_name)
        high = getattr(config, high_name)
        if low > high:
            issues.append(f"{_alias(low_name)} ({low:g}) > {_alias(high_name)} ({high:g})")

    if not config.trading_pairs:
        issues.append("tradingPairs must not be empty")

    leverages = config.leverage_set()
    if not leverages:
        issues.append("at least one leverage is required")
    elif any(not lev > 0 for lev in leverages):
        issues.append("leverages must be positive")

    if not 0 < config.win_rate < 1:
        issues.append(f"winRate ({config.win_rate:g}) must be between 0 and 1 (exclusive)")
    if not config.daily_target_percent > 0:
        issues.append("dailyTargetPercent must be greater than 0")
    if not config.trades_per_day > 0:
        issues.append("tradesPerDay must be greater than 0")
    if not config.invested_capital > 0:
        issues.append("investedCapital must be greater than 0")
    if not config.min_position_size > 0:
        issues.append("minPositionSize must be greater than 0")
    if config.max_concurrent_positions < 1:
        issues.append("maxConcurrentPositions must be at least 1")
    if not 0 < config.open_frequency <= 1:
        issues.append(f"openFrequency ({config.open_frequency:g}) must be in (0, 1]")
    if not config.win_pnl_min > 0:
        issues.append("winPnLMin and winPnLMax must be positive")
    if not config.loss_pnl_max < 0:
        issues.append("lossPnLMin and lossPnLMax must be negative")
    if config.min_duration < 0:
        issues.append("minDuration must not be negative")
    if not 0 <= config.max_slippage < 1:
        issues.append(f"maxSlippage ({config.max_slippage:g}) must be in [0, 1)")

    staggered = config.staggered_closing
    if staggered is not None and staggered.enabled:
        if staggered.max_closures_in_window < 1 or staggered.window_ms <= 0:
            issues.append("staggeredClosing needs maxClosuresInWindow >= 1 and windowMs > 0")

    return issues


def validate_bot_config(config: BotConfig) -> ValidationResult:
    """Check a config for consistency and estimate the correction it needs.

    Structural problems are fatal and skip the achievability estimate. The
    estimate compares the daily return implied by the P&L bounds with the
    target and reports ``max_correction_percent``, the worst realistic
    per-trade adjustment the convergence loop would have to make. Above the
    convergence mode's ceiling it is a warning, above twice the ceiling it is
    fatal.
    """
    issues = _structural_issues(config)
    if issues:
        return ValidationResult(valid=False, issues=issues)

    warnings: List[str] = []
    stats = contribution_stats(config)
    target = config.daily_target_percent

    if not stats.worst_daily <= target <= stats.best_daily:
        issues.append(
            f"Daily target {target:.2f}% is outside the reachable range "
            f"[{stats.worst_daily:.2f}%, {stats.best_daily:.2f}%] for these P&L bounds"
        )

    max_correction = stats.max_correction(target)
    ceiling = convergence_profile(config.convergence_mode).correction_ceiling
    mode = config.convergence_mode.value
    if max_correction > 2 * ceiling:
        issues.append(
            f"Max correction {max_correction * 100:.1f}% is far above the {mode} "
            f"ceiling of {ceiling * 100:.1f}%; trades would look fabricated"
        )
    elif max_correction > ceiling:
        warnings.append(
            f"Max correction {max_correction * 100:.1f}% exceeds the {mode} ceiling of "
            f"{ceiling * 100:.1f}%; the target will be missed more often"
        )

    if target > AGGRESSIVE_DAILY_TARGET:
        warnings.append(f"Daily target {target:.1f}% is aggressive. Monitor performance closely.")

    result = ValidationResult(
        valid=not issues,
        issues=issues,
        warnings=warnings,
        max_correction_percent=safe_number(max_correction),
        expected_daily_percent=safe_number(stats.expected_daily),
    )
    logger.debug(
        "VALIDATE: name=%s valid=%s max_correction=%.4f expected_daily=%.4f issues=%d warnings=%d",
        config.name,
        result.valid,
        result.max_correction_percent,
        result.expected_daily_percent,
        len(issues),
        len(warnings),
    )
    return result


def validation_summary(result: ValidationResult) -> str:
    head = "Configuration VALID" if result.valid else "Configuration INVALID"
    lines = [
        head,
        f"- Max correction: {result.max_correction_percent * 100:.2f}%",
        f"- Expected daily: {result.expected_daily_percent:.2f}%",
    ]
    if result.issues:
        lines.append("Issues:")
        lines.extend(f"  x {issue}" for issue in result.issues)
    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"  ! {warning}" for warning in result.warnings)
    return "\n".join(lines)
