from typing import List, Optional

from pydantic import Field

from .base import CamelModel
from .bot import BotConfig, Character, ConvergenceMode, RealismMode


class PresetInput(CamelModel):
    daily_target: float = 2.5
    trades_per_day: float = 250
    character: Character = Character.MODERATE
    convergence_mode: ConvergenceMode = ConvergenceMode.GUARANTEED
    realism_mode: Optional[RealismMode] = None


class ValidationResult(CamelModel):
    valid: bool
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    max_correction_percent: float = 0.0
    expected_daily_percent: float = 0.0


class PresetRequest(CamelModel):
    """Preset plus the context the mapper needs, as posted to the API."""

    preset: PresetInput
    id: Optional[str] = None
    name: Optional[str] = None
    trading_pairs: Optional[List[str]] = None
    invested_capital: Optional[float] = None


class PresetMapping(CamelModel):
    config: BotConfig
    validation: ValidationResult
    input_errors: List[str] = Field(default_factory=list)
