"""Capability interface between the lifecycle controller and inference pipelines."""

from __future__ import annotations

import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Protocol, runtime_checkable

from .errors import LoadFailed
from .models import VariantTag


class BackendKind(str, Enum):
    ACCELERATED_RUNTIME = "accelerated-runtime"
    COMPILED_GRAPH = "compiled-graph"


class PipelineBackend(str, Enum):
    """The closed set of pipelines a model can be loaded into."""

    ACCELERATED_RUNTIME = "accelerated-runtime"
    COMPILED_GRAPH_LEGACY = "compiled-graph-legacy"
    COMPILED_GRAPH_WIDE = "compiled-graph-wide"
    COMPILED_GRAPH_ADVANCED = "compiled-graph-advanced"

    @property
    def kind(self) -> BackendKind:
        if self is PipelineBackend.ACCELERATED_RUNTIME:
            return BackendKind.ACCELERATED_RUNTIME
        return BackendKind.COMPILED_GRAPH

    @classmethod
    def from_variant(cls, variant: VariantTag) -> "PipelineBackend":
        return _BACKEND_FOR_VARIANT.get(variant, cls.COMPILED_GRAPH_LEGACY)


_BACKEND_FOR_VARIANT = {
    VariantTag.ACCELERATED: PipelineBackend.ACCELERATED_RUNTIME,
    VariantTag.VARIANT_C: PipelineBackend.COMPILED_GRAPH_ADVANCED,
    VariantTag.VARIANT_B: PipelineBackend.COMPILED_GRAPH_WIDE,
    VariantTag.LEGACY: PipelineBackend.COMPILED_GRAPH_LEGACY,
}


@runtime_checkable
class PipelineHandle(Protocol):
    def load_resources(self) -> None: ...

    def unload_resources(self) -> None: ...


PipelineLoader = Callable[[Path, PipelineBackend], PipelineHandle]


class LoaderRegistry:
    """Map each backend to the factory that builds its pipeline."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._loaders: Dict[PipelineBackend, PipelineLoader] = {}

    def register(self, backend: PipelineBackend, loader: PipelineLoader) -> None:
        with self._lock:
            self._loaders[backend] = loader

    def register_all(self, loader: PipelineLoader) -> None:
        for backend in PipelineBackend:
            self.register(backend, loader)

    def loader_for(self, backend: PipelineBackend) -> PipelineLoader:
        with self._lock:
            loader = self._loaders.get(backend)
        if loader is None:
            raise LoadFailed(f"No pipeline loader registered for {backend.value}")
        return loader


__all__ = [
    "BackendKind",
    "LoaderRegistry",
    "PipelineBackend",
    "PipelineHandle",
    "PipelineLoader",
]
