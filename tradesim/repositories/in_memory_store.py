import copy
from typing import Dict, List, Optional

from .store import Record, Store


class InMemoryStore(Store):
    def __init__(self) -> None:
        self._storage: Dict[str, Record] = {}

    def get(self, key: str) -> Optional[Record]:
        value = self._storage.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Record) -> None:
        self._storage[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._storage.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._storage)
