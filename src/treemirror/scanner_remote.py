from __future__ import annotations

import stat
from collections.abc import Iterator
from typing import Any

import paramiko

from .config import RemoteConfig
from .cursor import StreamFetchError
from .excludes import is_excluded_name
from .models import TargetEntry
from .ssh_pool import pooled_ssh_client
from .text_utils import normalize_text


def expand_remote_root(sftp: Any, root: str) -> str:
    """Resolve ``root`` on the server; ``~`` is the SFTP login directory."""
    if root in {"", "~"}:
        return sftp.normalize(".")
    if root.startswith("~/"):
        return sftp.normalize(root[2:] or ".")
    return sftp.normalize(root)


def _mtime_ns(attrs: Any) -> int:
    return int(getattr(attrs, "st_mtime", 0) or 0) * 1_000_000_000


class RemoteLister:
    """Yield the entries below a remote root over SFTP, in sorted key order.

    ``resolve_root()`` connects and expands the configured root; the listing
    calls it first when it has not run yet.
    """

    def __init__(self, config: RemoteConfig) -> None:
        self.config = config
        self.root_key: str | None = None
        self._root: str | None = None

    def _client(self):
        return pooled_ssh_client(
            self.config,
            client_factory=paramiko.SSHClient,
            auto_add_policy_factory=paramiko.AutoAddPolicy,
        )

    def resolve_root(self) -> str:
        if self.root_key is not None:
            return self.root_key
        try:
            with self._client() as client:
                sftp = client.open_sftp()
                try:
                    self._root = expand_remote_root(sftp, self.config.root)
                finally:
                    sftp.close()
        except (OSError, paramiko.SSHException) as exc:
            raise StreamFetchError(
                f"Failed to resolve remote root {self.config.address}: {exc}"
            ) from exc
        self.root_key = normalize_text(self._root)
        return self.root_key

    def __iter__(self) -> Iterator[TargetEntry]:
        return self.iter_entries()

    def iter_entries(self) -> Iterator[TargetEntry]:
        root_key = self.resolve_root()
        return self._iter_entries(root_key)

    def _iter_entries(self, root_key: str) -> Iterator[TargetEntry]:
        remote_root = str(self._root)
        try:
            with self._client() as client:
                sftp = client.open_sftp()
                try:
                    yield from self._walk(sftp, root_key, remote_root, "")
                finally:
                    sftp.close()
        except (OSError, paramiko.SSHException) as exc:
            raise StreamFetchError(
                f"Remote listing failed on {self.config.address}: {exc}"
            ) from exc

    def _walk(
        self, sftp: Any, root_key: str, directory: str, rel_prefix: str
    ) -> Iterator[TargetEntry]:
        children: list[tuple[str, Any, bool]] = []
        for attrs in sftp.listdir_attr(directory):
            is_dir = stat.S_ISDIR(attrs.st_mode or 0)
            if is_excluded_name(attrs.filename, is_dir=is_dir):
                continue
            children.append((normalize_text(attrs.filename), attrs, is_dir))
        # Siblings by name, children right after their directory.
        children.sort(key=lambda item: item[0])

        for key_name, attrs, is_dir in children:
            relkey = f"{rel_prefix}{key_name}" + ("/" if is_dir else "")
            yield TargetEntry(
                key=f"{root_key.rstrip('/')}/{relkey}",
                is_regular=stat.S_ISREG(attrs.st_mode or 0),
                size=0 if is_dir else int(attrs.st_size or 0),
                mtime_ns=_mtime_ns(attrs),
            )
            if is_dir:
                yield from self._walk(
                    sftp,
                    root_key,
                    f"{directory.rstrip('/')}/{attrs.filename}",
                    relkey,
                )
