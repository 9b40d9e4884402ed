"""Persistent debounce state: when each alert identity was first seen firing."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Callable

from .errors import StateFlushError, StateLoadError
from .utils import format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class AlertStateStore:
    """Map of alert identity -> first-seen time, mirrored to a JSON file.

    A record exists for an identity from its first observation until it is
    resolved. Every mutation rewrites the whole file through a temporary file
    and ``os.replace`` so readers never see a partial write. One lock guards
    both the mapping and the flush, which makes the store safe to share
    between every rule loop.
    """

    def __init__(
        self, path: str | Path, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.path = Path(path)
        self._clock = clock
        self._lock = Lock()
        self._state: dict[str, datetime] = {}

    def now(self) -> datetime:
        return self._clock()

    def load(self) -> None:
        """Replace in-memory state with the file contents.

        A missing file leaves the store empty. Anything unreadable raises
        StateLoadError.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No state file at %s, starting empty", self.path)
            return
        except OSError as exc:
            raise StateLoadError(f"cannot read state file {self.path}: {exc}") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StateLoadError(f"state file {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StateLoadError(f"state file {self.path} must contain a JSON object")

        loaded: dict[str, datetime] = {}
        for key, value in data.items():
            try:
                loaded[key] = parse_timestamp(value)
            except ValueError as exc:
                raise StateLoadError(
                    f"state file {self.path} has an invalid timestamp for {key!r}: {exc}"
                ) from exc

        with self._lock:
            self._state = loaded
        logger.info("Loaded %d alert state entries from %s", len(loaded), self.path)

    def mark_active(self, key: str) -> bool:
        """Record ``key`` as firing now unless it already has a record.

        Returns True when a new record was created. Raises StateFlushError if
        the new record could not be persisted; the record stays in memory.
        """
        with self._lock:
            if key in self._state:
                return False
            self._state[key] = self._clock()
            self._flush_locked()
            return True

    def mark_resolved(self, key: str) -> bool:
        """Drop the record for ``key``. Returns True when one existed."""
        with self._lock:
            if key not in self._state:
                return False
            del self._state[key]
            self._flush_locked()
            return True

    def should_fire(self, key: str, for_s: float) -> bool:
        with self._lock:
            first = self._state.get(key)
            if first is None:
                return False
            return self._clock() - first >= timedelta(seconds=for_s)

    def first_seen(self, key: str) -> datetime | None:
        with self._lock:
            return self._state.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._state

    def __len__(self) -> int:
        with self._lock:
            return len(self._state)

    def _flush_locked(self) -> None:
        data = {
            key: format_timestamp(ts, timespec="microseconds")
            for key, ts in self._state.items()
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StateFlushError(f"failed to write state file {self.path}: {exc}") from exc


__all__ = ["AlertStateStore"]
