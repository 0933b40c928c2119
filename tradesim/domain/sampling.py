"""Realism-weighted draws inside a bounded range.

Every draw is a mixture of a *tight* draw, a symmetric Beta concentrated on the
centre of the range, and a *wide* draw, uniform over the whole range. Both
components are symmetric, so the mean of a draw is always the centre of its
range. That is what lets the preset mapper place the expected trade exactly on
target while the realism mode only changes the spread.
"""
from dataclasses import dataclass
from random import Random
from typing import Dict

from ..models.bot import RealismMode


@dataclass(frozen=True)
class RealismProfile:
    tight_share: float
    tight_concentration: float
    bound_spread: float
    max_slippage: float

    def unit_variance(self) -> float:
        """Variance of a draw on [0, 1]."""
        a = self.tight_concentration
        tight = 1.0 / (4.0 * (2.0 * a + 1.0))
        wide = 1.0 / 12.0
        return self.tight_share * tight + (1.0 - self.tight_share) * wide


REALISM_PROFILES: Dict[RealismMode, RealismProfile] = {
    RealismMode.SMOOTH: RealismProfile(
        tight_share=0.90, tight_concentration=6.0, bound_spread=0.25, max_slippage=0.15
    ),
    RealismMode.REALISTIC: RealismProfile(
        tight_share=0.80, tight_concentration=6.0, bound_spread=0.40, max_slippage=0.30
    ),
    RealismMode.VOLATILE: RealismProfile(
        tight_share=0.60, tight_concentration=6.0, bound_spread=0.60, max_slippage=0.50
    ),
}


def realism_profile(mode: RealismMode) -> RealismProfile:
    return REALISM_PROFILES[RealismMode(mode)]


def draw_unit(rng: Random, profile: RealismProfile) -> float:
    if rng.random() < profile.tight_share:
        a = profile.tight_concentration
        return rng.betavariate(a, a)
    return rng.random()


def draw_in_range(rng: Random, low: float, high: float, profile: RealismProfile) -> float:
    if high <= low:
        return low
    return low + draw_unit(rng, profile) * (high - low)
