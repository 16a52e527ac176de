from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

PROJECT_ROOT = Path(os.environ.get("HARVESTER_HOME", ".")).expanduser().resolve()
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"
LAST_RUN_ONCE_PATH = RUNTIME_DIR / "last_run_once.json"
RUN_HISTORY_PATH = RUNTIME_DIR / "run_history.jsonl"


class SourceConfig(BaseModel):
    protocol: Literal["local", "sftp", "ftp", "ftps"] = "local"
    host: str = ""
    port: int | None = None
    username: str = ""
    password: str = ""
    private_key_path: str = ""
    # Listed names are reported relative to this root.
    root: str = ""
    recursive: bool = False
    timeout_sec: int = 30


class RateLimitConfig(BaseModel):
    # 0 disables throttling; otherwise at most `calls` per `period_sec`.
    calls: int = Field(default=0, ge=0)
    period_sec: float = Field(default=1.0, gt=0)


class CatalogConfig(BaseModel):
    url: str = "https://www.data.gouv.fr/api/1"
    api_key: str = ""
    proxy: str = ""
    timeout_sec: int = 30
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


class SyncConfig(BaseModel):
    source_paths: str | list[str] = ""
    destination_id: str = ""
    # Multi-dataset mode: dataset id -> source path(s). Takes precedence over
    # source_paths/destination_id when non-empty.
    mappings: dict[str, str | list[str]] = Field(default_factory=dict)
    overwrite: bool = False
    source_filter: str | None = None
    destination_filter: str | None = None
    # Demo mode: only the first N listed entries are considered.
    sample_limit: int | None = Field(default=None, ge=0)
    mime_type: str = "text/csv"


class NotificationConfig(BaseModel):
    enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    sender: str = ""
    recipients: list[str] = Field(default_factory=list)
    subject_prefix: str = "[harvester]"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "harvester.log")


class AppConfig(BaseModel):
    source: SourceConfig = Field(default_factory=SourceConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class SyncSettings(BaseModel):
    """Everything one dataset reconciliation needs, resolved from `AppConfig`."""

    source_paths: str | list[str]
    destination_id: str
    overwrite: bool = False
    source_filter: str | None = None
    destination_filter: str | None = None
    sample_limit: int | None = None
    mime_type: str = "text/csv"
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


def dataset_settings(cfg: AppConfig) -> list[SyncSettings]:
    """Expand the config into one `SyncSettings` per target dataset."""
    common = {
        "overwrite": cfg.sync.overwrite,
        "source_filter": cfg.sync.source_filter,
        "destination_filter": cfg.sync.destination_filter,
        "sample_limit": cfg.sync.sample_limit,
        "mime_type": cfg.sync.mime_type,
        "rate_limit": cfg.catalog.rate_limit,
    }
    if cfg.sync.mappings:
        return [
            SyncSettings(source_paths=paths, destination_id=dataset_id, **common)
            for dataset_id, paths in cfg.sync.mappings.items()
        ]
    return [SyncSettings(source_paths=cfg.sync.source_paths, destination_id=cfg.sync.destination_id, **common)]


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg
