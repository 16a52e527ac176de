from __future__ import annotations

import os
import stat
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

from .base import SourceFile, join_remote, relative_to_root


def _kind(mode: int) -> str:
    if stat.S_ISREG(mode):
        return "file"
    if stat.S_ISDIR(mode):
        return "directory"
    return "other"


class LocalTransport:
    """Local directory tree exposed through the transport interface."""

    def __init__(self, root: str = "", recursive: bool = False, max_workers: int = 8):
        self.root = root or ""
        self.recursive = recursive
        self.max_workers = max_workers

    def connect(self) -> None:
        return None

    def _stat_entries(self, directory: str) -> list[tuple[str, os.stat_result]]:
        names = sorted(os.listdir(directory))
        paths = [name if directory == "." else f"{directory}/{name}" for name in names]
        # Plain filesystem metadata: safe to fetch concurrently.
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            stats = list(pool.map(os.stat, paths))
        return list(zip(paths, stats))

    def _walk(self, directory: str) -> list[SourceFile]:
        result: list[SourceFile] = []
        for full, st in self._stat_entries(directory):
            kind = _kind(st.st_mode)
            if not self.recursive and kind != "file":
                continue
            if kind == "directory":
                result.extend(self._walk(full))
                continue
            result.append(
                SourceFile(
                    name=relative_to_root(self.root, full),
                    kind=kind,
                    modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                )
            )
        return result

    def list(self, path: str) -> list[SourceFile]:
        directory = join_remote(self.root, path).rstrip("/") or "."
        return self._walk(directory)

    def get(self, path: str) -> bytes:
        return Path(join_remote(self.root, path)).read_bytes()

    def end(self) -> None:
        return None
