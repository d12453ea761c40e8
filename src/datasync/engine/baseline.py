"""Last-known-good fingerprint storage used for conflict detection."""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from ..exceptions import ConfigurationError
from ..models.sync import Fingerprint

logger = logging.getLogger(__name__)

BASELINE_FORMAT_VERSION = "1.0"


class BaselineStore(ABC):
    """Get/set fingerprint-by-key capability injected into the engine."""

    @abstractmethod
    def get(self, key: str) -> Optional[Fingerprint]:
        pass

    @abstractmethod
    def set(self, key: str, fingerprint: Fingerprint) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def save(self) -> None:
        """Persist pending changes. No-op for stores without backing storage."""
        return None


class InMemoryBaselineStore(BaselineStore):
    """Baseline kept in a dictionary for the lifetime of the process."""

    def __init__(self, initial: Optional[Dict[str, Fingerprint]] = None):
        self._lock = threading.Lock()
        self._fingerprints: Dict[str, Fingerprint] = dict(initial or {})

    def get(self, key: str) -> Optional[Fingerprint]:
        with self._lock:
            return self._fingerprints.get(key)

    def set(self, key: str, fingerprint: Fingerprint) -> None:
        with self._lock:
            self._fingerprints[key] = fingerprint

    def delete(self, key: str) -> None:
        with self._lock:
            self._fingerprints.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._fingerprints)


class JsonFileBaselineStore(InMemoryBaselineStore):
    """Baseline persisted to a JSON file between runs."""

    def __init__(self, path: Path):
        """Load the baseline from path, or start empty if it does not exist.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> Dict[str, Fingerprint]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
            return {
                key: Fingerprint(**value)
                for key, value in (data.get("items") or {}).items()
            }
        except (OSError, ValueError, TypeError, AttributeError) as e:
            raise ConfigurationError(f"Cannot read baseline file {self.path}: {e}") from e

    def save(self) -> None:
        """Write the baseline to disk."""
        with self._lock:
            data = {
                "version": BASELINE_FORMAT_VERSION,
                "items": {
                    key: fingerprint.model_dump(exclude_none=True)
                    for key, fingerprint in sorted(self._fingerprints.items())
                },
            }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        tmp_path.replace(self.path)
        logger.debug(f"Saved {len(data['items'])} baseline entries to {self.path}")
