from __future__ import annotations

import copy
import json
import logging
import os
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from parallel_pantry.data.file_lock import FileLock
from parallel_pantry.domain import PersistenceError
from parallel_pantry.infra import RuntimeEventLogger

logger = logging.getLogger(__name__)


class JsonStore:
    """Single JSON document rewritten whole on every mutation.

    Writes go to a temp file that is fsynced and renamed over the target, so a
    reader never observes a partial document. A document that cannot be parsed
    or fails ``validate`` reads as ``default``; the bad file is kept aside as
    ``<name>.corrupt-<ts>`` and the event is reported.

    Every access holds a thread lock plus an ``flock`` on ``<name>.lock``, so a
    CLI process and the server never interleave a read-modify-write.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        default: Any,
        validate: Callable[[Any], Any] | None = None,
        on_corrupt: Callable[[], Any] | None = None,
        events: RuntimeEventLogger | None = None,
    ):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._default = default
        self._validate = validate
        self._on_corrupt = on_corrupt
        self._events = events
        self._lock = threading.RLock()
        self._flock = FileLock(self.path.with_name(self.path.name + ".lock"))

    def _fresh_default(self) -> Any:
        return copy.deepcopy(self._default)

    def _report_corrupt(self, err: Exception) -> None:
        kept = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time() * 1000)}")
        try:
            self.path.replace(kept)
        except OSError as exc:
            logger.error("could not set aside corrupt store %s: %s", self.path, exc)
            kept = self.path
        logger.error("store %s unreadable, treating as empty (kept at %s): %s", self.path, kept, err)
        if self._events is not None:
            self._events.emit("store.corrupt", path=str(self.path), kept=str(kept), error=str(err))

    def read(self) -> Any:
        with self.locked():
            if not self.path.exists():
                return self._fresh_default()
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
                if self._validate is not None:
                    payload = self._validate(payload)
                return payload
            except Exception as exc:
                self._report_corrupt(exc)
                if self._on_corrupt is not None:
                    return self._on_corrupt()
                return self._fresh_default()

    def write(self, payload: Any) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        body = json.dumps(payload, ensure_ascii=True, indent=2)
        with self.locked():
            try:
                with tmp.open("w", encoding="utf-8") as f:
                    f.write(body)
                    f.flush()
                    os.fsync(f.fileno())
                tmp.replace(self.path)
            except OSError as exc:
                raise PersistenceError(f"failed to write {self.path}: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Locked read-modify-write; the yielded document is written back on clean exit."""
        with self.locked():
            doc = self.read()
            yield doc
            self.write(doc)

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock, self._flock.hold():
            yield
