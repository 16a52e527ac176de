from __future__ import annotations

from harvester.core.config import SourceConfig
from harvester.sync.errors import ConfigurationError

from .base import SourceFile, Transport
from .local import LocalTransport


def build_transport(cfg: SourceConfig) -> Transport:
    if cfg.protocol == "local":
        return LocalTransport(root=cfg.root, recursive=cfg.recursive)
    if cfg.protocol == "sftp":
        from .sftp import SftpTransport

        return SftpTransport(
            host=cfg.host,
            port=cfg.port,
            username=cfg.username,
            password=cfg.password,
            private_key_path=cfg.private_key_path,
            root=cfg.root,
            recursive=cfg.recursive,
            timeout_sec=cfg.timeout_sec,
        )
    if cfg.protocol in ("ftp", "ftps"):
        from .ftp import FtpTransport

        return FtpTransport(
            host=cfg.host,
            port=cfg.port,
            username=cfg.username,
            password=cfg.password,
            root=cfg.root,
            recursive=cfg.recursive,
            secure=cfg.protocol == "ftps",
            timeout_sec=cfg.timeout_sec,
        )
    raise ConfigurationError(f"unknown_source_protocol: {cfg.protocol}")


__all__ = ["LocalTransport", "SourceFile", "Transport", "build_transport"]
