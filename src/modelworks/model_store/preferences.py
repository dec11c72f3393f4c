"""Small JSON-backed stores: cached folder sizes and user preferences."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class _JsonStore:
    """Thread-safe dict persisted to a single JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            logger.error("Failed to persist %s: %s", self.path, exc)
            Path(tmp_name).unlink(missing_ok=True)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._write()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._write()

    def as_dict(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._data)


class SizeCache(_JsonStore):
    """Raw folder name -> size in GB."""

    def get_gb(self, name: str) -> Optional[float]:
        value = self.get(name)
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def set_gb(self, name: str, size_gb: float) -> None:
        self.set(name, round(float(size_gb), 6))


class Preferences(_JsonStore):
    """Selected / last-used model and the auto-load flag."""

    @property
    def selected_model(self) -> Optional[str]:
        return self.get("selected_model") or None

    @selected_model.setter
    def selected_model(self, value: Optional[str]) -> None:
        self.set("selected_model", value or "")

    @property
    def last_used_model(self) -> Optional[str]:
        return self.get("last_used_model") or None

    @last_used_model.setter
    def last_used_model(self, value: Optional[str]) -> None:
        self.set("last_used_model", value or "")

    @property
    def auto_load_model(self) -> bool:
        return bool(self.get("auto_load_model", True))

    @auto_load_model.setter
    def auto_load_model(self, value: bool) -> None:
        self.set("auto_load_model", bool(value))


__all__ = ["SizeCache", "Preferences"]
