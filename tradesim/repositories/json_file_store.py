import json
import os
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote, unquote

from .store import Record, Store


class JsonFileStore(Store):
    """One ``<key>.json`` file per record under ``directory``."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self._dir = Path(directory)

    def _ensure_dir(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)

    def path(self, key: str) -> Path:
        return self._dir / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[Record]:
        path = self.path(key)
        if not path.exists():
            return None
        with path.open(encoding="utf-8") as f:
            return json.load(f)

    def set(self, key: str, value: Record) -> None:
        self._ensure_dir()
        path = self.path(key)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(value, f, indent=2, sort_keys=True)
        os.replace(tmp, path)

    def delete(self, key: str) -> None:
        path = self.path(key)
        if path.exists():
            path.unlink()

    def keys(self) -> List[str]:
        if not self._dir.exists():
            return []
        return sorted(unquote(p.name[: -len(".json")]) for p in self._dir.glob("*.json"))
