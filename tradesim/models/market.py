from typing import Dict

from pydantic import BaseModel


class PriceSnapshot(BaseModel):
    prices: Dict[str, float]
