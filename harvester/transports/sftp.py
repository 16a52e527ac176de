from __future__ import annotations

import io
import stat
from datetime import datetime, timezone
from typing import Any

import paramiko

from .base import SourceFile, join_remote, relative_to_root


class SftpTransport:
    """
    SFTP source over a single paramiko session.

    The session does not support concurrent requests: listing recursion and
    downloads are issued one at a time.
    """

    def __init__(
        self,
        host: str,
        port: int | None = None,
        username: str = "",
        password: str = "",
        private_key_path: str = "",
        root: str = "",
        recursive: bool = False,
        timeout_sec: float = 30.0,
    ):
        self.host = host
        self.port = int(port or 22)
        self.username = username or None
        self.password = password or None
        self.private_key_path = private_key_path or None
        self.root = root or ""
        self.recursive = recursive
        self.timeout_sec = timeout_sec
        self._transport: paramiko.Transport | None = None
        self._client: paramiko.SFTPClient | None = None

    def connect(self) -> None:
        if self._client is not None:
            return
        if not self.host:
            raise ValueError("sftp host missing")

        transport = paramiko.Transport((self.host, self.port))
        transport.banner_timeout = self.timeout_sec
        transport.auth_timeout = self.timeout_sec

        pkey = None
        if self.private_key_path:
            try:
                pkey = paramiko.RSAKey.from_private_key_file(self.private_key_path)
            except paramiko.SSHException:
                pkey = paramiko.Ed25519Key.from_private_key_file(self.private_key_path)

        transport.connect(username=self.username, password=self.password, pkey=pkey)
        self._transport = transport
        self._client = paramiko.SFTPClient.from_transport(transport)

    @property
    def client(self) -> paramiko.SFTPClient:
        if self._client is None:
            raise RuntimeError("sftp_not_connected")
        return self._client

    def _entry(self, full: str, attr: Any) -> SourceFile:
        mode = attr.st_mode or 0
        if stat.S_ISREG(mode):
            kind = "file"
        elif stat.S_ISDIR(mode):
            kind = "directory"
        else:
            kind = "other"
        return SourceFile(
            name=relative_to_root(self.root, full),
            kind=kind,
            modified_at=datetime.fromtimestamp(attr.st_mtime or 0, tz=timezone.utc),
        )

    def _list_dir(self, directory: str) -> list[SourceFile]:
        result: list[SourceFile] = []
        for attr in self.client.listdir_attr(directory):
            full = f"{directory.rstrip('/')}/{attr.filename}"
            entry = self._entry(full, attr)
            if not self.recursive:
                if entry.kind == "file":
                    result.append(entry)
                continue
            if entry.kind == "directory":
                result.extend(self._list_dir(full))
            else:
                result.append(entry)
        return result

    def list(self, path: str) -> list[SourceFile]:
        return self._list_dir(join_remote(self.root, path) or ".")

    def get(self, path: str) -> bytes:
        buf = io.BytesIO()
        self.client.getfo(join_remote(self.root, path), buf)
        return buf.getvalue()

    def end(self) -> None:
        try:
            if self._client is not None:
                self._client.close()
        finally:
            self._client = None
        try:
            if self._transport is not None:
                self._transport.close()
        finally:
            self._transport = None
