"""
Model Weight Store
==================
Keyed, versioned storage for the ModelWeight set and the latest
RecalibrationResult.

Readers take an immutable snapshot; the single writer publishes with
compare-and-swap against the version it read at the start of its tick, so
consumers always see a complete prior or current weight set.

Two backends, selected by configuration:
- MemoryWeightStore: process-local
- JsonWeightStore: persisted to a JSON file, reloaded on start

Usage:
    from calibration.weight_store import create_weight_store

    store = create_weight_store("json", "data/model_weights.json")
    snap = store.snapshot()
    store.compare_and_swap(snap.version, new_weights, result)
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple, Union

from core.exceptions import ConfigurationError, StaleWriteError
from calibration.types import ModelWeight, RecalibrationResult, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeightSnapshot:
    """Immutable view of the store at one version."""
    version: int = 0
    weights: Tuple[ModelWeight, ...] = ()
    result: Optional[RecalibrationResult] = None
    published_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.version == 0 and not self.weights

    def weight_for(self, algorithm_id: str) -> Optional[ModelWeight]:
        for w in self.weights:
            if w.algorithm_id == algorithm_id:
                return w
        return None


class WeightStore(ABC):
    @abstractmethod
    def snapshot(self) -> WeightSnapshot:
        pass

    @abstractmethod
    def compare_and_swap(
        self,
        expected_version: int,
        weights: List[ModelWeight],
        result: Optional[RecalibrationResult] = None,
    ) -> WeightSnapshot:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryWeightStore(WeightStore):
    def __init__(self) -> None:
        self._snapshot = WeightSnapshot()
        self._lock = threading.Lock()

    def snapshot(self) -> WeightSnapshot:
        with self._lock:
            return self._snapshot

    def compare_and_swap(
        self,
        expected_version: int,
        weights: List[ModelWeight],
        result: Optional[RecalibrationResult] = None,
    ) -> WeightSnapshot:
        """
        Replace the whole weight set if nobody published since `expected_version`.

        Raises:
            StaleWriteError: the store moved on since the snapshot was taken
        """
        with self._lock:
            current = self._snapshot.version
            if current != expected_version:
                raise StaleWriteError(expected_version, current)
            new_snapshot = WeightSnapshot(
                version=current + 1,
                weights=tuple(sorted(weights, key=lambda w: w.algorithm_id)),
                result=result,
                published_at=datetime.now(timezone.utc),
            )
            self._persist(new_snapshot)
            self._snapshot = new_snapshot
            return new_snapshot

    def clear(self) -> None:
        with self._lock:
            self._snapshot = WeightSnapshot()

    def _persist(self, snapshot: WeightSnapshot) -> None:
        """Hook for durable backends; called under the lock before the swap."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(version={self.snapshot().version})"


class JsonWeightStore(MemoryWeightStore):
    """
    JSON persistence for the weight set.

    The file is written to a temporary path and renamed into place, so a
    crash mid-write leaves the previous file intact. A missing or invalid
    file loads as an empty store (consumers then see neutral defaults).
    """

    DEFAULT_PATH = Path(__file__).parent.parent / "data" / "model_weights.json"
    FORMAT_VERSION = "1.0"

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        super().__init__()
        self.path = Path(path) if path else self.DEFAULT_PATH
        self._snapshot = self._load()

    def _load(self) -> WeightSnapshot:
        if not self.path.exists():
            logger.debug(f"No model weights file at {self.path}")
            return WeightSnapshot()

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in weights file: {e}")
            return WeightSnapshot()
        except OSError as e:
            logger.error(f"Error reading weights file: {e}")
            return WeightSnapshot()

        if data.get('format_version') != self.FORMAT_VERSION:
            logger.warning(f"Unknown weights format version: {data.get('format_version')}")
            return WeightSnapshot()

        try:
            published = data.get('published_at')
            result = data.get('result')
            snapshot = WeightSnapshot(
                version=int(data.get('version', 0)),
                weights=tuple(ModelWeight.from_dict(w) for w in data.get('weights', [])),
                result=RecalibrationResult.from_dict(result) if result else None,
                published_at=parse_timestamp(published) if published else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed weights file {self.path}: {e}")
            return WeightSnapshot()

        logger.info(f"Loaded model weights v{snapshot.version} from {self.path}")
        return snapshot

    def _persist(self, snapshot: WeightSnapshot) -> None:
        payload = {
            'format_version': self.FORMAT_VERSION,
            'version': snapshot.version,
            'published_at': snapshot.published_at.isoformat() if snapshot.published_at else None,
            'weights': [w.to_dict() for w in snapshot.weights],
            'result': snapshot.result.to_dict() if snapshot.result else None,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)
        logger.info(f"Saved model weights v{snapshot.version} to {self.path}")

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()
            self._snapshot = WeightSnapshot()
        logger.info("Cleared model weights")


def create_weight_store(backend: str = "memory", path: Union[str, Path, None] = None) -> WeightStore:
    """Build the configured store backend ('memory' or 'json')."""
    backend = (backend or "memory").strip().lower()
    if backend == "memory":
        return MemoryWeightStore()
    if backend == "json":
        return JsonWeightStore(path)
    raise ConfigurationError("weight_store_backend", f"unknown backend {backend!r}")
