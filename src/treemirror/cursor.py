from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .models import TargetEntry

logger = logging.getLogger(__name__)


class StreamFetchError(RuntimeError):
    """Advancing the target stream failed (listing or transport failure)."""


class TargetCursor:
    """Forward-only view over a sorted stream of target entries.

    The cursor holds at most one record, the last one fetched. Once the
    stream ends the cursor is latched as exhausted and never touches the
    stream again. A ``StreamFetchError`` raised by the stream propagates
    unchanged and leaves ``current`` and ``exhausted`` as they were.
    """

    def __init__(self, stream: Iterable[TargetEntry]) -> None:
        self._stream: Iterator[TargetEntry] = iter(stream)
        self.current: TargetEntry | None = None
        self.exhausted = False
        self.fetched = 0

    def advance(self) -> TargetEntry | None:
        if self.exhausted:
            return None
        try:
            entry = next(self._stream)
        except StopIteration:
            self.exhausted = True
            logger.debug("target stream exhausted after %d entries", self.fetched)
            return None
        except StreamFetchError as exc:
            logger.debug("target stream fetch failed: %s", exc)
            raise
        self.current = entry
        self.fetched += 1
        return entry
