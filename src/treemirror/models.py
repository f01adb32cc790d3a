from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Difference(str, Enum):
    NONE = "none"
    SIZE = "size"
    TIME_NEWER = "time_newer"
    TIME_OLDER = "time_older"
    ONLY_SOURCE = "only_source"
    TYPE = "type"


@dataclass(frozen=True)
class TargetEntry:
    key: str
    is_regular: bool
    size: int
    mtime_ns: int


@dataclass(frozen=True)
class SourceQuery:
    root_key: str
    suffix: str
    is_regular: bool
    size: int
    mtime_ns: int


@dataclass(frozen=True)
class DiffRecord:
    relpath: str
    difference: Difference
    is_regular: bool
    source_size: int
    source_mtime_ns: int
