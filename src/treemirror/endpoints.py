from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from .config import DEFAULT_REMOTE_PORT, REMOTE_MTIME_RESOLUTION_NS, RemoteConfig
from .scanner_local import LocalLister
from .scanner_remote import RemoteLister

_SCP_LIKE_RE = re.compile(r"^(?P<user>[^@/:]+)@(?P<host>[^:/]+):(?P<root>.*)$")


@dataclass(frozen=True)
class EndpointSpec:
    kind: str
    root: str
    user: str | None = None
    host: str | None = None
    port: int | None = None

    @property
    def is_local(self) -> bool:
        return self.kind == "local"

    @property
    def is_remote(self) -> bool:
        return self.kind == "remote"

    def remote_config(self, *, compress: bool = False) -> RemoteConfig:
        assert self.is_remote
        return RemoteConfig(
            host=str(self.host),
            user=str(self.user),
            root=self.root,
            port=self.port or DEFAULT_REMOTE_PORT,
            compress=compress,
        )


def _local(path: str) -> EndpointSpec:
    return EndpointSpec(kind="local", root=str(Path(path).expanduser().resolve()))


def parse_endpoint(text: str) -> EndpointSpec:
    """Parse a local path, ``local:/path``, ``ssh://user@host[:port]/path``
    or ``user@host:path``."""
    value = text.strip()
    if not value:
        raise ValueError("Endpoint is empty")

    if value.startswith("local:"):
        return _local(value[len("local:") :] or ".")

    if value.startswith("ssh://"):
        parsed = urlparse(value)
        if not parsed.username or not parsed.hostname:
            raise ValueError(f"Remote endpoint needs user and host: {text!r}")
        root = parsed.path or "~"
        if root.startswith("/~"):
            root = root[1:]
        return EndpointSpec(
            kind="remote",
            root=root,
            user=parsed.username,
            host=parsed.hostname,
            port=parsed.port,
        )

    match = _SCP_LIKE_RE.match(value)
    if match is not None:
        return EndpointSpec(
            kind="remote",
            root=match.group("root") or "~",
            user=match.group("user"),
            host=match.group("host"),
        )
    if "@" in value and ":" in value:
        raise ValueError(f"Invalid remote endpoint: {text!r}")

    return _local(value)


def endpoint_to_string(endpoint: EndpointSpec) -> str:
    if endpoint.is_local:
        return f"local:{endpoint.root}"
    port = f":{endpoint.port}" if endpoint.port else ""
    root = endpoint.root
    if not root.startswith(("/", "~")):
        root = f"~/{root}"
    if not root.startswith("/"):
        root = f"/{root}"
    return f"ssh://{endpoint.user}@{endpoint.host}{port}{root}"


def open_lister(
    endpoint: EndpointSpec,
    *,
    peer: EndpointSpec | None = None,
    compress: bool = False,
) -> LocalLister | RemoteLister:
    """Build the lister for ``endpoint``; ``peer`` is the other comparison side."""
    if endpoint.is_remote:
        return RemoteLister(endpoint.remote_config(compress=compress))
    resolution = 1
    if peer is not None and peer.is_remote:
        resolution = REMOTE_MTIME_RESOLUTION_NS
    return LocalLister(Path(endpoint.root), mtime_resolution_ns=resolution)
