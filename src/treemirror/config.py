from __future__ import annotations

from dataclasses import dataclass

CACHE_FOLDERS = {"__pycache__", ".pytest_cache", ".cache", ".ruff_cache"}
EXCLUDED_FOLDERS = {"node_modules", ".tox"} | CACHE_FOLDERS
EXCLUDED_FILE_NAMES = {".DS_Store"}

DEFAULT_REMOTE_PORT = 22
DEFAULT_SSH_TIMEOUT = 10
DEFAULT_QUEUE_SIZE = 1000


@dataclass(frozen=True)
class RemoteConfig:
    host: str
    user: str
    root: str
    port: int = DEFAULT_REMOTE_PORT
    compress: bool = False
    timeout: int = DEFAULT_SSH_TIMEOUT

    @property
    def address(self) -> str:
        return f"{self.user}@{self.host}:{self.root}"


@dataclass(frozen=True)
class MirrorSettings:
    ssh_compression: bool = False
    sftp_put_confirm: bool = False

# SFTP reports whole-second mtimes; local listings are truncated to match
# when one side of a comparison is remote.
REMOTE_MTIME_RESOLUTION_NS = 1_000_000_000
