"""
Model store: discover, classify, acquire and release large local models.
"""

from typing import TYPE_CHECKING, Any

__version__ = "0.1.0"

if TYPE_CHECKING:  # pragma: no cover - import-time hints only
    from .config import StoreConfig  # noqa: F401
    from .service import ModelStore  # noqa: F401

__all__ = [
    "ModelStore",
    "StoreConfig",
    "get_config",
    "set_config",
]


def __getattr__(name: str) -> Any:  # pragma: no cover - simple lazy import
    if name == "ModelStore":
        from .service import ModelStore as _ModelStore

        return _ModelStore
    if name in {"StoreConfig", "get_config", "set_config"}:
        from . import config as _config

        return getattr(_config, name)
    raise AttributeError(name)
