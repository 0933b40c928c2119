import os
from typing import List, Optional

from pydantic import BaseModel


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else None


class Settings(BaseModel):
    store_dir: Optional[str] = os.getenv("TRADESIM_STORE_DIR") or None
    seed: Optional[int] = _env_int("TRADESIM_SEED")
    default_capital: float = float(os.getenv("TRADESIM_DEFAULT_CAPITAL", "10000"))
    default_pairs: List[str] = _env_list(
        "TRADESIM_DEFAULT_PAIRS", "BTC/USDT,ETH/USDT,BNB/USDT"
    )
    log_level: str = os.getenv("TRADESIM_LOG_LEVEL", "INFO")


def get_settings() -> Settings:
    return Settings()
