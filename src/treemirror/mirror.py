from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
import time
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import paramiko

from .config import MirrorSettings
from .endpoints import EndpointSpec, parse_endpoint
from .models import Difference, DiffRecord
from .scanner_remote import expand_remote_root
from .ssh_pool import pooled_ssh_client

logger = logging.getLogger(__name__)

OP_MKDIR = "mkdir"
OP_COPY = "copy"
OP_UPDATE = "update"

_UPDATABLE = {Difference.SIZE, Difference.TIME_NEWER, Difference.TIME_OLDER}


@dataclass(frozen=True)
class PlanOperation:
    kind: str
    relpath: str


@dataclass(frozen=True)
class MirrorPlan:
    operations: list[PlanOperation]
    conflicts: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExecuteResult:
    errors: list[str]
    succeeded_operations: int
    total_operations: int
    operation_seconds: dict[str, float] = field(default_factory=dict)


def build_mirror_plan(records: list[DiffRecord], overwrite: bool = False) -> MirrorPlan:
    """Turn diff records into mirror operations.

    Entries only on the source are copied (directories created). Entries that
    differ in size or time are updated only with ``overwrite``. Type conflicts
    are reported and never applied.
    """
    ops: list[PlanOperation] = []
    conflicts: list[str] = []
    skipped: list[str] = []
    for record in records:
        if record.difference == Difference.NONE:
            continue
        if record.difference == Difference.TYPE:
            conflicts.append(record.relpath)
            continue
        is_dir = record.relpath.endswith("/")
        if not record.is_regular and not is_dir:
            skipped.append(record.relpath)
            continue
        if record.difference == Difference.ONLY_SOURCE:
            kind = OP_MKDIR if is_dir else OP_COPY
            ops.append(PlanOperation(kind, record.relpath.rstrip("/")))
            continue
        if record.difference in _UPDATABLE:
            if overwrite:
                ops.append(PlanOperation(OP_UPDATE, record.relpath))
            else:
                skipped.append(record.relpath)
    return MirrorPlan(operations=ops, conflicts=conflicts, skipped=skipped)


@dataclass
class _SideRuntime:
    endpoint: EndpointSpec
    local_root: Path | None = None
    sftp: Any = None
    remote_root: str | None = None

    @property
    def is_local(self) -> bool:
        return self.endpoint.is_local

    def path(self, relpath: str) -> Path | str:
        if self.is_local:
            assert self.local_root is not None
            return self.local_root / relpath
        assert self.remote_root is not None
        return _join_remote(self.remote_root, relpath)


def _join_remote(root: str, relpath: str) -> str:
    return f"{root.rstrip('/')}/{relpath}"


def _coerce_endpoint(value: EndpointSpec | str | Path) -> EndpointSpec:
    if isinstance(value, EndpointSpec):
        return value
    if isinstance(value, Path):
        return EndpointSpec(kind="local", root=str(value.expanduser().resolve()))
    return parse_endpoint(str(value))


def _side_runtime(
    stack: ExitStack, endpoint: EndpointSpec, settings: MirrorSettings
) -> _SideRuntime:
    if endpoint.is_local:
        return _SideRuntime(
            endpoint=endpoint, local_root=Path(endpoint.root).expanduser().resolve()
        )
    client = stack.enter_context(
        pooled_ssh_client(
            endpoint.remote_config(compress=settings.ssh_compression),
            client_factory=paramiko.SSHClient,
            auto_add_policy_factory=paramiko.AutoAddPolicy,
        )
    )
    sftp = client.open_sftp()
    stack.callback(sftp.close)
    return _SideRuntime(
        endpoint=endpoint,
        sftp=sftp,
        remote_root=expand_remote_root(sftp, endpoint.root),
    )


def _ensure_remote_dir(sftp: Any, remote_path: str, known_dirs: set[str]) -> None:
    parts = []
    current = remote_path.rstrip("/")
    while current and current != "/" and current not in known_dirs:
        parts.append(current)
        current = os.path.dirname(current)
    for segment in reversed(parts):
        try:
            sftp.stat(segment)
        except OSError:
            sftp.mkdir(segment)
        known_dirs.add(segment)


def _mkdir(side: _SideRuntime, relpath: str, known_dirs: set[str]) -> None:
    target = side.path(relpath)
    if isinstance(target, Path):
        target.mkdir(parents=True, exist_ok=True)
        return
    _ensure_remote_dir(side.sftp, target, known_dirs)


def _source_stat(side: _SideRuntime, relpath: str) -> Any:
    target = side.path(relpath)
    if isinstance(target, Path):
        return target.stat()
    return side.sftp.stat(target)


def _mtime_seconds(st_obj: Any) -> int:
    if hasattr(st_obj, "st_mtime_ns"):
        return int(st_obj.st_mtime_ns // 1_000_000_000)
    return int(getattr(st_obj, "st_mtime", 0) or 0)


def _apply_metadata(side: _SideRuntime, relpath: str, source_stat: Any) -> None:
    mode = stat.S_IMODE(getattr(source_stat, "st_mode", 0) or 0)
    target = side.path(relpath)
    if isinstance(target, Path):
        os.chmod(target, mode)
        if hasattr(source_stat, "st_mtime_ns"):
            os.utime(target, ns=(source_stat.st_atime_ns, source_stat.st_mtime_ns))
        else:
            seconds = _mtime_seconds(source_stat)
            os.utime(target, (seconds, seconds))
        return
    seconds = _mtime_seconds(source_stat)
    side.sftp.chmod(target, mode)
    side.sftp.utime(target, (seconds, seconds))


def _copy_between(
    source: _SideRuntime,
    destination: _SideRuntime,
    relpath: str,
    *,
    settings: MirrorSettings,
    known_dirs: set[str],
) -> None:
    source_stat = _source_stat(source, relpath)
    if not stat.S_ISREG(getattr(source_stat, "st_mode", 0) or 0):
        raise OSError(f"source is no longer a regular file: {relpath}")

    src_path = source.path(relpath)
    dst_path = destination.path(relpath)

    if isinstance(dst_path, Path):
        dst_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        _ensure_remote_dir(destination.sftp, os.path.dirname(dst_path), known_dirs)

    if isinstance(src_path, Path) and isinstance(dst_path, Path):
        shutil.copyfile(src_path, dst_path)
    elif isinstance(src_path, Path):
        destination.sftp.put(str(src_path), dst_path, confirm=settings.sftp_put_confirm)
    elif isinstance(dst_path, Path):
        source.sftp.get(src_path, str(dst_path))
    else:
        with tempfile.NamedTemporaryFile(prefix="treemirror-", delete=False) as handle:
            tmp_path = Path(handle.name)
        try:
            source.sftp.get(src_path, str(tmp_path))
            destination.sftp.put(
                str(tmp_path), dst_path, confirm=settings.sftp_put_confirm
            )
        finally:
            tmp_path.unlink(missing_ok=True)

    _apply_metadata(destination, relpath, source_stat)


def execute_plan(
    source: EndpointSpec | str | Path,
    destination: EndpointSpec | str | Path,
    operations: list[PlanOperation],
    progress_cb: Callable[[int, int, PlanOperation, bool, str | None], None]
    | None = None,
    settings: MirrorSettings | None = None,
) -> ExecuteResult:
    resolved_settings = settings or MirrorSettings()
    if not operations:
        return ExecuteResult(errors=[], succeeded_operations=0, total_operations=0)

    source_endpoint = _coerce_endpoint(source)
    destination_endpoint = _coerce_endpoint(destination)
    errors: list[str] = []
    succeeded = 0
    total = len(operations)
    op_seconds: dict[str, float] = {}

    with ExitStack() as stack:
        source_side = _side_runtime(stack, source_endpoint, resolved_settings)
        destination_side = _side_runtime(stack, destination_endpoint, resolved_settings)
        known_dirs: set[str] = {"/"}
        if destination_side.remote_root is not None:
            known_dirs.add(destination_side.remote_root.rstrip("/") or "/")

        for done, op in enumerate(operations, start=1):
            ok = False
            error: str | None = None
            started = time.perf_counter()
            try:
                if op.kind == OP_MKDIR:
                    _mkdir(destination_side, op.relpath, known_dirs)
                    ok = True
                elif op.kind in {OP_COPY, OP_UPDATE}:
                    _copy_between(
                        source_side,
                        destination_side,
                        op.relpath,
                        settings=resolved_settings,
                        known_dirs=known_dirs,
                    )
                    ok = True
                else:
                    error = f"unsupported operation kind: {op.kind}"
            except (OSError, paramiko.SSHException) as exc:
                error = str(exc)
            finally:
                elapsed = time.perf_counter() - started
                op_seconds[op.kind] = op_seconds.get(op.kind, 0.0) + elapsed

            if ok:
                succeeded += 1
            else:
                logger.debug("%s %s failed: %s", op.kind, op.relpath, error)
                errors.append(f"{op.kind} {op.relpath}: {error}")
            if progress_cb is not None:
                progress_cb(done, total, op, ok, error)

    return ExecuteResult(
        errors=errors,
        succeeded_operations=succeeded,
        total_operations=total,
        operation_seconds=op_seconds,
    )
