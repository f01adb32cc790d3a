from __future__ import annotations

import stat as stat_mod
from dataclasses import dataclass
from pathlib import Path

import pytest

from treemirror.cursor import StreamFetchError
from treemirror.models import Difference, DiffRecord, TargetEntry
from treemirror.ssh_pool import close_ssh_pool

T0 = 1_700_000_000_000_000_000


def mk_entry(
    key: str,
    *,
    is_regular: bool = True,
    size: int = 0,
    mtime_ns: int = T0,
) -> TargetEntry:
    return TargetEntry(key=key, is_regular=is_regular, size=size, mtime_ns=mtime_ns)


def mk_record(
    relpath: str,
    difference: Difference,
    *,
    is_regular: bool = True,
    size: int = 0,
    mtime_ns: int = T0,
) -> DiffRecord:
    return DiffRecord(
        relpath=relpath,
        difference=difference,
        is_regular=is_regular,
        source_size=size,
        source_mtime_ns=mtime_ns,
    )


class RecordingStream:
    """Iterator over fixed entries that counts pulls and can fail on one of them."""

    def __init__(
        self, entries: list[TargetEntry], fail_at: int | None = None
    ) -> None:
        self.entries = list(entries)
        self.fail_at = fail_at
        self.pulls = 0
        self._index = 0

    def __iter__(self) -> RecordingStream:
        return self

    def __next__(self) -> TargetEntry:
        self.pulls += 1
        if self.fail_at is not None and self._index == self.fail_at:
            raise StreamFetchError(f"listing failed at record {self._index}")
        if self._index >= len(self.entries):
            raise StopIteration
        entry = self.entries[self._index]
        self._index += 1
        return entry


@dataclass
class RemoteStat:
    st_mode: int
    st_atime: float
    st_mtime: float
    st_size: int = 0
    filename: str = ""


class FakeSFTPClient:
    def __init__(self, home: str = "/home/u") -> None:
        self.home = home
        self.remote_files: dict[str, bytes] = {}
        self.remote_stats: dict[str, RemoteStat] = {}
        self.existing_dirs: set[str] = {"/"}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple] = []

    def _check_failure(self, method: str, path: str) -> None:
        err = self.failures.get((method, path))
        if err is not None:
            raise err

    def add_file(self, path: str, data: bytes, *, mtime: float = 1.0) -> None:
        self.remote_files[path] = data
        self.remote_stats[path] = RemoteStat(
            st_mode=0o100644, st_atime=mtime, st_mtime=mtime, st_size=len(data)
        )

    def add_dir(self, path: str) -> None:
        self.existing_dirs.add(path)

    def normalize(self, path: str) -> str:
        self.calls.append(("normalize", path))
        if path == ".":
            return self.home
        if path.startswith("/"):
            return path
        return f"{self.home}/{path}"

    def stat(self, path: str):
        self._check_failure("stat", path)
        self.calls.append(("stat", path))
        if path in self.remote_stats:
            return self.remote_stats[path]
        if path in self.existing_dirs:
            return RemoteStat(st_mode=0o040755, st_atime=1.0, st_mtime=1.0)
        raise OSError(f"no such file: {path}")

    def listdir_attr(self, path: str) -> list[RemoteStat]:
        self._check_failure("listdir_attr", path)
        self.calls.append(("listdir_attr", path))
        prefix = f"{path.rstrip('/')}/"
        names: dict[str, RemoteStat] = {}
        for candidate in list(self.existing_dirs) + list(self.remote_stats):
            if not candidate.startswith(prefix) or candidate == prefix:
                continue
            rest = candidate[len(prefix) :]
            if "/" in rest:
                continue
            st = self.stat(candidate)
            names[rest] = RemoteStat(
                st_mode=st.st_mode,
                st_atime=st.st_atime,
                st_mtime=st.st_mtime,
                st_size=st.st_size,
                filename=rest,
            )
        # SFTP servers return directory entries unsorted.
        return [names[name] for name in sorted(names, reverse=True)]

    def mkdir(self, path: str) -> None:
        self._check_failure("mkdir", path)
        self.calls.append(("mkdir", path))
        self.existing_dirs.add(path)

    def put(self, local_path: str, remote_path: str, *, confirm: bool = True) -> None:
        self._check_failure("put", remote_path)
        self.calls.append(("put", local_path, remote_path, confirm))
        self.add_file(remote_path, Path(local_path).read_bytes())

    def get(self, remote_path: str, local_path: str) -> None:
        self._check_failure("get", remote_path)
        self.calls.append(("get", remote_path, local_path))
        if remote_path not in self.remote_files:
            raise FileNotFoundError(f"remote missing: {remote_path}")
        Path(local_path).write_bytes(self.remote_files[remote_path])

    def chmod(self, path: str, mode: int) -> None:
        self._check_failure("chmod", path)
        self.calls.append(("chmod", path, mode))
        entry = self.stat(path)
        self.remote_stats[path] = RemoteStat(
            st_mode=stat_mod.S_IFMT(entry.st_mode) | mode,
            st_atime=entry.st_atime,
            st_mtime=entry.st_mtime,
            st_size=entry.st_size,
        )

    def utime(self, path: str, times: tuple[int, int]) -> None:
        self._check_failure("utime", path)
        self.calls.append(("utime", path, times))
        entry = self.stat(path)
        self.remote_stats[path] = RemoteStat(
            st_mode=entry.st_mode,
            st_atime=float(times[0]),
            st_mtime=float(times[1]),
            st_size=entry.st_size,
        )

    def close(self) -> None:
        self.calls.append(("close",))


class FakeSSHClient:
    def __init__(self, sftp: FakeSFTPClient) -> None:
        self.sftp = sftp
        self.connect_calls: list[dict[str, object]] = []
        self.closed = False

    def load_system_host_keys(self) -> None:
        return None

    def set_missing_host_key_policy(self, policy: object) -> None:
        _ = policy

    def connect(self, **kwargs) -> None:
        self.connect_calls.append(kwargs)

    def open_sftp(self) -> FakeSFTPClient:
        return self.sftp

    def close(self) -> None:
        self.closed = True


class DummyAutoAddPolicy:
    pass


def install_fake_ssh(monkeypatch, module, sftp: FakeSFTPClient) -> FakeSSHClient:
    ssh = FakeSSHClient(sftp)
    monkeypatch.setattr(module.paramiko, "SSHClient", lambda: ssh)
    monkeypatch.setattr(module.paramiko, "AutoAddPolicy", DummyAutoAddPolicy)
    return ssh


@pytest.fixture(autouse=True)
def _reset_ssh_pool():
    yield
    close_ssh_pool()
