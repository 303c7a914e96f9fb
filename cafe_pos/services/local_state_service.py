from __future__ import annotations

import json
import os
import tempfile
from functools import lru_cache
from pathlib import Path

from cafe_pos.config import settings


class LocalStateDecodeError(ValueError):
    pass


class LocalStateStore:
    """Durable per-cashier key/value storage on the terminal's disk.

    Snapshots live outside the database so that queued orders survive while
    the store is unreachable.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, profile_id: int, key: str) -> Path:
        return self.root / str(profile_id) / f'{key}.json'

    def load(self, profile_id: int, key: str) -> dict | None:
        path = self._path(profile_id, key)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, json.JSONDecodeError) as exc:
            raise LocalStateDecodeError(f'Could not read local state {key}') from exc
        if not isinstance(payload, dict):
            raise LocalStateDecodeError(f'Local state {key} is not an object')
        return payload

    def save(self, profile_id: int, key: str, payload: dict) -> None:
        path = self._path(profile_id, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f'.{key}.', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(payload, handle)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def profile_ids(self) -> list[int]:
        if not self.root.exists():
            return []
        return sorted(int(entry.name) for entry in self.root.iterdir() if entry.is_dir() and entry.name.isdigit())


@lru_cache(maxsize=1)
def get_local_state_store() -> LocalStateStore:
    return LocalStateStore(settings.local_state_dir)
