from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable, Iterator
from typing import Any

from .config import DEFAULT_QUEUE_SIZE
from .cursor import StreamFetchError
from .models import TargetEntry

logger = logging.getLogger(__name__)

_ENTRY = "entry"
_ERROR = "error"
_END = "end"
_PUT_POLL_SECONDS = 0.1


class ListingStream:
    """Run a lister in a background thread and pull its entries from a queue.

    Each pull yields one of three outcomes: the next entry, the end of the
    stream, or a ``StreamFetchError`` carrying the producer failure. A failed
    lister cannot resume, so every pull after an error raises the same error
    again. ``close()`` stops the producer.
    """

    def __init__(
        self, entries: Iterable[TargetEntry], maxsize: int = DEFAULT_QUEUE_SIZE
    ) -> None:
        self._entries = entries
        self._queue: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize=maxsize)
        self._stop = threading.Event()
        self._finished = False
        self._error: StreamFetchError | None = None
        self._thread = threading.Thread(
            target=self._produce, name="treemirror-lister", daemon=True
        )
        self._thread.start()

    def _put(self, item: tuple[str, Any]) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=_PUT_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _produce(self) -> None:
        try:
            for entry in self._entries:
                if not self._put((_ENTRY, entry)):
                    return
        except Exception as exc:  # noqa: BLE001
            logger.debug("lister failed: %s", exc)
            error = exc
            if not isinstance(exc, StreamFetchError):
                error = StreamFetchError(str(exc))
                error.__cause__ = exc
            self._put((_ERROR, error))
            return
        self._put((_END, None))

    def __iter__(self) -> Iterator[TargetEntry]:
        return self

    def __next__(self) -> TargetEntry:
        if self._finished:
            raise StopIteration
        if self._error is not None:
            raise self._error
        kind, payload = self._queue.get()
        if kind == _ENTRY:
            return payload
        if kind == _ERROR:
            self._error = payload
            raise payload
        self._finished = True
        raise StopIteration

    def close(self) -> None:
        self._stop.set()
        self._finished = True
        self._thread.join(timeout=1.0)

    def __enter__(self) -> ListingStream:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()
