from __future__ import annotations

import os
import stat
from collections.abc import Iterator
from pathlib import Path

from .cursor import StreamFetchError
from .excludes import is_excluded_name
from .models import TargetEntry
from .text_utils import normalize_text


def _child_key(name: str, is_dir: bool) -> str:
    return f"{name}/" if is_dir else name


class LocalLister:
    """Yield the entries below ``root`` in strictly increasing key position.

    Keys are ``<root>/<relative path>``; directories carry a trailing ``/``.
    Siblings are ordered by name and a directory's children follow it
    directly, which is the path-component order of ``compare.key_position``.
    Symlinks are listed as non-regular entries and never followed.
    """

    def __init__(self, root: Path, mtime_resolution_ns: int = 1) -> None:
        self.root = root.expanduser().resolve()
        self.root_key = normalize_text(self.root.as_posix())
        self.mtime_resolution_ns = max(1, mtime_resolution_ns)

    def resolve_root(self) -> str:
        return self.root_key

    def __iter__(self) -> Iterator[TargetEntry]:
        return self.iter_entries()

    def iter_entries(self) -> Iterator[TargetEntry]:
        if not self.root.exists() or not self.root.is_dir():
            raise FileNotFoundError(f"Local root not found: {self.root}")
        return self._walk(self.root, "")

    def _list_dir(
        self, directory: Path
    ) -> list[tuple[str, str, bool, os.stat_result]]:
        children: list[tuple[str, str, bool, os.stat_result]] = []
        try:
            with os.scandir(directory) as it:
                for dir_entry in it:
                    st = dir_entry.stat(follow_symlinks=False)
                    is_dir = stat.S_ISDIR(st.st_mode)
                    if is_excluded_name(dir_entry.name, is_dir=is_dir):
                        continue
                    children.append(
                        (normalize_text(dir_entry.name), dir_entry.name, is_dir, st)
                    )
        except OSError as exc:
            raise StreamFetchError(f"Failed to list {directory}: {exc}") from exc
        children.sort(key=lambda item: item[0])
        return children

    def _walk(self, directory: Path, rel_prefix: str) -> Iterator[TargetEntry]:
        for key_name, name, is_dir, st in self._list_dir(directory):
            relkey = f"{rel_prefix}{_child_key(key_name, is_dir)}"
            yield TargetEntry(
                key=f"{self.root_key.rstrip('/')}/{relkey}",
                is_regular=stat.S_ISREG(st.st_mode),
                size=0 if is_dir else st.st_size,
                mtime_ns=st.st_mtime_ns - st.st_mtime_ns % self.mtime_resolution_ns,
            )
            if is_dir:
                yield from self._walk(directory / name, relkey)
