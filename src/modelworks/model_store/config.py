"""
Configuration management for the model store.

Handles the models root, the state directory holding cached sizes and
preferences, Hugging Face cache locations, worker pool sizing and the
best-effort memory scrub limits.
"""

import os
from pathlib import Path
from typing import List, Optional
import tomllib
from dataclasses import dataclass, field


def _default_hf_cache_locations() -> List[Path]:
    """Every place the Hugging Face hub may have left a cache behind."""

    locations: List[Path] = []
    if os.environ.get("HF_HUB_CACHE"):
        locations.append(Path(os.environ["HF_HUB_CACHE"]).expanduser())
    if os.environ.get("HF_HOME"):
        locations.append(Path(os.environ["HF_HOME"]).expanduser())
    if os.environ.get("XDG_CACHE_HOME"):
        locations.append(Path(os.environ["XDG_CACHE_HOME"]).expanduser() / "huggingface")
    locations.append(Path("~/.cache/huggingface").expanduser())

    unique: List[Path] = []
    for location in locations:
        if location not in unique:
            unique.append(location)
    return unique


@dataclass
class StoreConfig:
    """Main configuration for the model store."""

    models_root: Path = field(
        default_factory=lambda: Path("~/modelworks/Models").expanduser()
    )
    state_dir: Path = field(
        default_factory=lambda: Path("~/modelworks/state").expanduser()
    )

    # Snapshot fetch cache (None = hub default) and everything purged afterwards
    hf_cache_dir: Optional[Path] = None
    hf_cache_locations: List[Path] = field(default_factory=_default_hf_cache_locations)

    # Transfer settings
    max_workers: int = 4
    finished_job_ttl_s: float = 1.5
    request_timeout_s: float = 120.0
    chunk_size: int = 1 << 20

    # Memory scrub (MB)
    scrub_min_mb: int = 256
    scrub_max_mb: int = 2048
    scrub_chunk_mb: int = 64

    @property
    def sizes_path(self) -> Path:
        return self.state_dir / "sizes.json"

    @property
    def preferences_path(self) -> Path:
        return self.state_dir / "preferences.json"

    @classmethod
    def from_pyproject(cls, pyproject_path: Optional[Path] = None) -> "StoreConfig":
        """Load configuration from the ``[tool.modelworks.model-store]`` table."""
        if pyproject_path is None:
            pyproject_path = Path(__file__).parents[3] / "pyproject.toml"

        config = cls()

        try:
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)

            section = data.get("tool", {}).get("modelworks", {}).get("model-store", {})

            if "models_root" in section:
                config.models_root = Path(section["models_root"]).expanduser()
            if "state_dir" in section:
                config.state_dir = Path(section["state_dir"]).expanduser()
            if "hf_cache_dir" in section:
                config.hf_cache_dir = Path(section["hf_cache_dir"]).expanduser()
            if "hf_cache_locations" in section:
                config.hf_cache_locations = [
                    Path(p).expanduser() for p in section["hf_cache_locations"]
                ]
            for key in (
                "max_workers",
                "finished_job_ttl_s",
                "request_timeout_s",
                "chunk_size",
                "scrub_min_mb",
                "scrub_max_mb",
                "scrub_chunk_mb",
            ):
                if key in section:
                    setattr(config, key, type(getattr(config, key))(section[key]))

        except FileNotFoundError:
            pass
        except Exception as e:
            print(f"Warning: Could not load config from {pyproject_path}: {e}")

        return config

    @classmethod
    def from_env(cls, base: Optional["StoreConfig"] = None) -> "StoreConfig":
        """Apply environment overrides on top of ``base`` (or the defaults)."""
        config = base or cls()

        if "MODELWORKS_MODELS_ROOT" in os.environ:
            config.models_root = Path(os.environ["MODELWORKS_MODELS_ROOT"]).expanduser()

        if "MODELWORKS_STATE_DIR" in os.environ:
            config.state_dir = Path(os.environ["MODELWORKS_STATE_DIR"]).expanduser()

        if "MODELWORKS_HF_CACHE_DIR" in os.environ:
            cache_dir = Path(os.environ["MODELWORKS_HF_CACHE_DIR"]).expanduser()
            config.hf_cache_dir = cache_dir
            if cache_dir not in config.hf_cache_locations:
                config.hf_cache_locations.insert(0, cache_dir)

        return config

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        for directory in (self.models_root, self.state_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except (OSError, PermissionError) as e:
                print(f"Warning: Could not create directory {directory}: {e}")

    def model_dir(self, name: str) -> Path:
        return self.models_root / name

    def archive_path(self, name: str, job_id: Optional[str] = None) -> Path:
        stem = f"{name}.{job_id}" if job_id else name
        return self.models_root / f"{stem}.zip"

    def staging_dir(self, name: str, job_id: Optional[str] = None) -> Path:
        stem = f"{name}.{job_id}" if job_id else name
        return self.models_root / f"_{stem}_extract"


# Global config instance
_config_instance: Optional[StoreConfig] = None


def get_config() -> StoreConfig:
    """Get the global configuration instance."""
    global _config_instance
    if _config_instance is None:
        _config_instance = StoreConfig.from_env(StoreConfig.from_pyproject())
        _config_instance.ensure_directories()
    return _config_instance


def set_config(config: Optional[StoreConfig]) -> None:
    """Set (or with ``None`` reset) the global configuration instance."""
    global _config_instance
    _config_instance = config
