import math


def safe_number(value: float) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return float(value)


def safe_div(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return safe_number(numerator / denominator)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
