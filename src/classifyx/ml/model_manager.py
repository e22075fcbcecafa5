"""Model manager: resolve, fetch, load, and optionally cache the model and labels.

By default every request reads the model and labels files from disk again,
so a replaced file takes effect on the next request. With caching enabled the
loaded pair is kept under a key that includes both files' modification times,
which gives the same pick-up-on-change behavior without reparsing each time.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from huggingface_hub import hf_hub_download

from classifyx.errors import LabelsLoadError, ModelLoadError

if TYPE_CHECKING:
    from classifyx.config import ModelSettings, Settings
    from classifyx.ml.backend import InferenceBackend

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadedModel:
    """A parsed graph handle plus its index-aligned labels."""

    graph: Any
    labels: list[str]


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def load(self, model_settings: ModelSettings) -> LoadedModel:
        """Return the graph and labels for the given model settings."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently cached models."""
        ...

    def unload_idle_models(self) -> None:
        """Unload models that have exceeded their TTL."""
        ...

    def shutdown(self) -> None:
        """Clear all cached models."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------

CacheKey = tuple[str, int, str, int]


@dataclass
class _CachedModel:
    model: LoadedModel
    last_used: float


class FileModelManager:
    """Loads model and labels files from the models directory."""

    def __init__(self, settings: Settings, backend: InferenceBackend) -> None:
        self._settings = settings
        self._backend = backend
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._cache: dict[CacheKey, _CachedModel] = {}

    # -- Public API ---------------------------------------------------------

    def resolve(self, filename: str) -> Path:
        """Return the absolute path of a file inside the models directory."""
        return (self._models_dir / filename).resolve()

    def ensure_downloaded(self, filename: str) -> Path:
        """Return the local path of ``filename``, fetching it from the Hub if configured."""
        path = self.resolve(filename)
        if path.exists() or self._settings.models_repo_id is None:
            return path

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=self._settings.models_repo_id,
                filename=filename,
                local_dir=str(self._models_dir),
            )
        )
        logger.info("Downloaded %s to %s", filename, downloaded)
        return downloaded

    def load(self, model_settings: ModelSettings) -> LoadedModel:
        """Load the model graph and labels, from cache when enabled."""
        model_path = self._existing(model_settings.model_filename, ModelLoadError, "load_model")
        labels_path = self._existing(model_settings.labels_filename, LabelsLoadError, "load_labels")

        if not self._settings.model_cache:
            return self._read(model_path, labels_path)

        key = self._cache_key(model_path, labels_path)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.model

        model = self._read(model_path, labels_path)

        with self._lock:
            # Double-check: another thread may have loaded it while we did.
            existing = self._cache.get(key)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.model
            # Entries for older versions of the same files are stale now.
            stale = [k for k in self._cache if k[0] == key[0] and k[2] == key[2]]
            for old_key in stale:
                del self._cache[old_key]
            self._cache[key] = _CachedModel(model=model, last_used=time.monotonic())
            logger.info("Cached model %s with %d labels", model_path.name, len(model.labels))
            return model

    def get_loaded_models(self) -> list[str]:
        """Return file names of models with cached graphs."""
        with self._lock:
            return [Path(key[0]).name for key in self._cache]

    def unload_idle_models(self) -> None:
        """Remove cached models that have exceeded the configured TTL."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [key for key, cached in self._cache.items() if (now - cached.last_used) > ttl]
            for key in expired:
                del self._cache[key]
                logger.info("Evicted idle model %s", Path(key[0]).name)

    def shutdown(self) -> None:
        """Clear all cached models."""
        with self._lock:
            self._cache.clear()
            logger.info("All cached models cleared")

    # -- Internal -----------------------------------------------------------

    def _existing(self, filename: str, error: type[ModelLoadError | LabelsLoadError], stage: str) -> Path:
        try:
            path = self.ensure_downloaded(filename)
        except Exception as exc:  # huggingface_hub raises HTTP, entry-not-found and OS errors
            raise error(stage, f"Cannot fetch {filename} from {self._settings.models_repo_id}: {exc}") from exc
        if not path.is_file():
            raise error(stage, f"File does not exist: {path}")
        return path

    def _cache_key(self, model_path: Path, labels_path: Path) -> CacheKey:
        return (
            str(model_path),
            self._mtime(model_path, ModelLoadError, "load_model"),
            str(labels_path),
            self._mtime(labels_path, LabelsLoadError, "load_labels"),
        )

    @staticmethod
    def _mtime(path: Path, error: type[ModelLoadError | LabelsLoadError], stage: str) -> int:
        try:
            return path.stat().st_mtime_ns
        except OSError as exc:
            raise error(stage, f"Cannot stat {path}: {exc}") from exc

    def _read(self, model_path: Path, labels_path: Path) -> LoadedModel:
        try:
            graph_bytes = model_path.read_bytes()
        except OSError as exc:
            raise ModelLoadError("load_model", f"Cannot read {model_path}: {exc}") from exc
        graph = self._backend.load_graph(graph_bytes)

        try:
            labels_bytes = labels_path.read_bytes()
        except OSError as exc:
            raise LabelsLoadError("load_labels", f"Cannot read {labels_path}: {exc}") from exc
        labels = self._backend.load_labels(labels_bytes)

        logger.info("Loaded model %s and %d labels from %s", model_path.name, len(labels), labels_path.name)
        return LoadedModel(graph=graph, labels=labels)
