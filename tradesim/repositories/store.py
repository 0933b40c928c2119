from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

Record = Dict[str, Any]


class Store(ABC):
    """Key-value persistence for JSON-compatible bot records."""

    @abstractmethod
    def get(self, key: str) -> Optional[Record]:
        ...

    @abstractmethod
    def set(self, key: str, value: Record) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...
