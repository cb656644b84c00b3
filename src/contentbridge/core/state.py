"""
ContentBridge watermark persistence.

One watermark per content type: the highest source id of the last fully
applied page. Read once when a run starts, written after every page.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from pathlib import Path

from contentbridge.core.logging import get_logger

logger = get_logger(__name__)

_KEY_RE = re.compile(r"[^a-z0-9_\-]")


def sanitize_key(value: str) -> str:
    """Lowercase and strip everything but [a-z0-9_-]."""
    return _KEY_RE.sub("", (value or "").lower())


class WatermarkStore(ABC):
    """Storage interface for per-type watermarks."""

    @abstractmethod
    def load_all(self) -> dict[str, int]:
        """Return every stored watermark keyed by type slug."""

    @abstractmethod
    def save_all(self, watermarks: dict[str, int]) -> None:
        """Replace the stored watermarks."""

    def get(self, post_type: str) -> int:
        return self.load_all().get(sanitize_key(post_type), 0)

    def advance(self, post_type: str, cursor: int) -> int:
        """Persist `cursor` unless the stored watermark is already higher."""
        key = sanitize_key(post_type)
        watermarks = self.load_all()
        current = watermarks.get(key, 0)
        new_value = max(current, int(cursor))
        if new_value != current or key not in watermarks:
            watermarks[key] = new_value
            self.save_all(watermarks)
        return new_value

    def reset(self, post_type: str, value: int = 0) -> None:
        """Operator override; the only way a watermark goes down."""
        key = sanitize_key(post_type)
        watermarks = self.load_all()
        watermarks[key] = max(0, int(value))
        self.save_all(watermarks)
        logger.info("Watermark reset", post_type=key, value=watermarks[key])


class MemoryWatermarkStore(WatermarkStore):
    """Watermarks kept in process memory."""

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._data = {sanitize_key(k): int(v) for k, v in (initial or {}).items()}

    def load_all(self) -> dict[str, int]:
        return dict(self._data)

    def save_all(self, watermarks: dict[str, int]) -> None:
        self._data = dict(watermarks)


class JsonWatermarkStore(WatermarkStore):
    """Watermarks kept in a JSON file, durable across restarts."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load_all(self) -> dict[str, int]:
        if not self.path.exists():
            return {}
        with open(self.path) as handle:
            data = json.load(handle)

        if not isinstance(data, dict):
            # Older single-value files tracked posts only.
            return {"post": int(data or 0)}

        result: dict[str, int] = {}
        for key, value in data.items():
            try:
                result[sanitize_key(key)] = int(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring malformed watermark", post_type=key, value=value)
        return result

    def save_all(self, watermarks: dict[str, int]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as handle:
            json.dump(watermarks, handle, indent=2, sort_keys=True)
        tmp_path.replace(self.path)
