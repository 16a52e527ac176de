from __future__ import annotations

import posixpath
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Protocol

FileKind = Literal["file", "directory", "other"]


@dataclass(frozen=True)
class SourceFile:
    # Path relative to the transport's configured root, "/" separated.
    name: str
    kind: FileKind
    modified_at: datetime


class Transport(Protocol):
    def connect(self) -> None: ...

    def list(self, path: str) -> list[SourceFile]: ...

    def get(self, path: str) -> bytes: ...

    def end(self) -> None: ...


def join_remote(root: str, path: str) -> str:
    if not root or posixpath.isabs(path):
        return path
    return posixpath.join(root, path) if path else root


def relative_to_root(root: str, full: str) -> str:
    """Strip the configured root prefix (and its separator) from a listed path."""
    root = (root or "").rstrip("/")
    if root and full.startswith(root + "/"):
        return full[len(root) + 1:]
    return full
