from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from harvester.core.config import (
    DEFAULT_CONFIG_PATH,
    LAST_RUN_ONCE_PATH,
    RUN_HISTORY_PATH,
    AppConfig,
    dataset_settings,
    load_config,
)
from harvester.core.logging_setup import module_log_func, setup_logging
from harvester.core.ratelimit import TokenBucket
from harvester.notify import build_notifier
from harvester.providers.udata import UdataClient
from harvester.sync import SyncEngine
from harvester.transports import build_transport

app = typer.Typer(add_completion=False)
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _append_run_history(summary: dict) -> None:
    RUN_HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
    with RUN_HISTORY_PATH.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def build_sync_engine(cfg: AppConfig) -> SyncEngine:
    limiter = TokenBucket(cfg.catalog.rate_limit.calls, cfg.catalog.rate_limit.period_sec)
    client = UdataClient(
        base_url=cfg.catalog.url,
        api_key=cfg.catalog.api_key,
        timeout=int(cfg.catalog.timeout_sec),
        proxy=cfg.catalog.proxy,
        limiter=limiter,
    )
    return SyncEngine(
        dataset_settings(cfg),
        client=client,
        transport=build_transport(cfg.source),
        notifier=build_notifier(cfg.notification),
        log_func=module_log_func,
    )


@app.command("config-show")
def config_show(path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config")):
    """Show current config.yaml (secrets masked)."""
    cfg = load_config(path)
    data = cfg.model_dump()
    for section, key in (("catalog", "api_key"), ("source", "password"), ("notification", "password")):
        if data[section].get(key):
            data[section][key] = "***"
    print(json.dumps(data, ensure_ascii=False, indent=2))


@app.command("config-validate")
def config_validate(
    path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config"),
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and sync prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "catalog_url_configured": False,
            "api_key_configured": False,
            "source_host_configured": False,
            "datasets_configured": False,
            "filters_valid": False,
            "log_parent_ready": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        print(json.dumps(out, ensure_ascii=False, indent=2))
        if strict:
            raise typer.Exit(2)
        return

    out["checks"]["catalog_url_configured"] = bool(cfg.catalog.url)
    if not cfg.catalog.url:
        out["errors"].append("catalog_url_missing")

    out["checks"]["api_key_configured"] = bool(cfg.catalog.api_key)
    if not cfg.catalog.api_key:
        out["warnings"].append("api_key_missing: uploads and deletions will be rejected")

    out["checks"]["source_host_configured"] = cfg.source.protocol == "local" or bool(cfg.source.host)
    if not out["checks"]["source_host_configured"]:
        out["errors"].append(f"source_host_missing for protocol {cfg.source.protocol}")

    datasets = dataset_settings(cfg)
    out["checks"]["datasets_configured"] = all(s.destination_id and s.source_paths for s in datasets)
    if not out["checks"]["datasets_configured"]:
        out["errors"].append("dataset_mapping_incomplete: destination_id and source_paths are required")

    filter_errors = []
    for name in ("source_filter", "destination_filter"):
        pattern = getattr(cfg.sync, name)
        if not pattern:
            continue
        try:
            re.compile(pattern)
        except re.error as e:
            filter_errors.append(f"{name}_invalid: {e}")
    out["checks"]["filters_valid"] = not filter_errors
    out["errors"].extend(filter_errors)

    if cfg.catalog.rate_limit.calls == 0:
        out["warnings"].append("rate_limit_disabled: catalog calls are not throttled")

    try:
        Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
        out["checks"]["log_parent_ready"] = True
    except Exception as e:
        out["errors"].append(f"log_parent_unavailable: {e}")

    out["ok"] = len(out["errors"]) == 0
    print(json.dumps(out, ensure_ascii=False, indent=2))
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command()
def plan(path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config")):
    """Show what a sync would add, update and delete, without changing anything."""
    cfg = load_config(path)
    setup_logging(cfg.logging.level, cfg.logging.file)
    summary = build_sync_engine(cfg).run_once(run_type="plan_cli", dry_run=True)

    for dataset in summary["datasets"]:
        table = Table(title=f"dataset {dataset['destination_id']}")
        table.add_column("Action")
        table.add_column("File")
        for action in ("to_add", "to_update", "to_delete"):
            for name in dataset[action]:
                table.add_row(action.removeprefix("to_"), name)
        console.print(table)
        for kind, groups in dataset["duplicates"].items():
            for group in groups:
                console.print(f"[yellow]{kind}[/yellow] {group['name']}: {', '.join(group['members'])}")
        if dataset["fatal_error"]:
            console.print(f"[red]error[/red] {dataset['fatal_error']}")

    if summary["fatal_error"]:
        console.print(f"[red]error[/red] {summary['fatal_error']}")
        raise typer.Exit(2)


@app.command("run-once")
def run_once(
    path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build plans only, no catalog mutation."),
    run_type: str = typer.Option("manual_cli", "--run-type", help="Label stored in the run summary."),
):
    """Run one sync over every configured dataset and print summary JSON."""
    cfg = load_config(path)
    setup_logging(cfg.logging.level, cfg.logging.file)

    summary = build_sync_engine(cfg).run_once(run_type=run_type, dry_run=dry_run)

    LAST_RUN_ONCE_PATH.parent.mkdir(parents=True, exist_ok=True)
    LAST_RUN_ONCE_PATH.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    _append_run_history(summary)
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    if not summary["ok"]:
        raise typer.Exit(2)


def main():
    app()


if __name__ == "__main__":
    main()
