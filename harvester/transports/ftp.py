from __future__ import annotations

import ftplib
import io
from datetime import datetime, timezone

from .base import SourceFile, join_remote, relative_to_root

_MLSD_KINDS = {"file": "file", "dir": "directory"}


def parse_mlsd_modify(value: str | None) -> datetime:
    """Parse an MLSD `modify` fact (YYYYMMDDHHMMSS[.sss], always UTC)."""
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    text = value.split(".", 1)[0]
    return datetime.strptime(text, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)


class FtpTransport:
    """FTP source, optionally over explicit TLS (FTPS)."""

    def __init__(
        self,
        host: str,
        port: int | None = None,
        username: str = "",
        password: str = "",
        root: str = "",
        recursive: bool = False,
        secure: bool = False,
        timeout_sec: float = 30.0,
    ):
        self.host = host
        self.port = int(port or 21)
        self.username = username or "anonymous"
        self.password = password or ""
        self.root = root or ""
        self.recursive = recursive
        self.secure = secure
        self.timeout_sec = timeout_sec
        self._ftp: ftplib.FTP | None = None

    def connect(self) -> None:
        if self._ftp is not None:
            return
        if not self.host:
            raise ValueError("ftp host missing")
        ftp = ftplib.FTP_TLS(timeout=self.timeout_sec) if self.secure else ftplib.FTP(timeout=self.timeout_sec)
        ftp.connect(self.host, self.port)
        ftp.login(self.username, self.password)
        if isinstance(ftp, ftplib.FTP_TLS):
            ftp.prot_p()
        self._ftp = ftp

    @property
    def ftp(self) -> ftplib.FTP:
        if self._ftp is None:
            raise RuntimeError("ftp_not_connected")
        return self._ftp

    def _list_dir(self, directory: str) -> list[SourceFile]:
        result: list[SourceFile] = []
        entries = list(self.ftp.mlsd(directory, facts=["type", "modify"]))
        for name, facts in entries:
            kind = _MLSD_KINDS.get(facts.get("type", ""), "other")
            if facts.get("type") in ("cdir", "pdir"):
                continue
            full = f"{directory.rstrip('/')}/{name}"
            if not self.recursive:
                if kind == "file":
                    result.append(self._entry(full, kind, facts))
                continue
            if kind == "directory":
                result.extend(self._list_dir(full))
            else:
                result.append(self._entry(full, kind, facts))
        return result

    def _entry(self, full: str, kind: str, facts: dict[str, str]) -> SourceFile:
        return SourceFile(
            name=relative_to_root(self.root, full),
            kind=kind,
            modified_at=parse_mlsd_modify(facts.get("modify")),
        )

    def list(self, path: str) -> list[SourceFile]:
        return self._list_dir(join_remote(self.root, path) or ".")

    def get(self, path: str) -> bytes:
        buf = io.BytesIO()
        self.ftp.retrbinary(f"RETR {join_remote(self.root, path)}", buf.write)
        return buf.getvalue()

    def end(self) -> None:
        if self._ftp is None:
            return
        try:
            self._ftp.quit()
        except (ftplib.Error, OSError):
            self._ftp.close()
        finally:
            self._ftp = None
