import json
from datetime import datetime
from typing import Callable, Dict, List, Optional

from harvester.core.config import SyncSettings
from harvester.providers.udata.models import CatalogResource, Dataset
from harvester.transports.base import SourceFile

from .dedup import find_catalog_duplicates, remove_source_duplicates, resolve_collisions
from .errors import ConfigurationError, DuplicateGroup, SyncCountMismatch, SyncReport
from .naming import base_name, filename_from_url, filter_names, to_catalog_name
from .planner import build_plan, get_resource_meta, should_update

LogFunc = Callable[[str, str, str, Optional[str]], None]


def now_iso():
    return datetime.now().isoformat(timespec="seconds")


def main_resource_names(resources: List[CatalogResource], pattern: Optional[str]) -> List[str]:
    names = [filename_from_url(r.url) for r in resources if r.resource_type == "main"]
    return filter_names(names, pattern)


class SyncEngine:
    """One-way reconciliation of source file trees into udata datasets.

    `client` follows the udata client interface, `transport` the source
    transport interface and `notifier` exposes `notify(kind, groups)`.
    """

    def __init__(self, datasets: List[SyncSettings], client, transport, notifier, log_func: LogFunc):
        self.datasets = datasets
        self.client = client
        self.transport = transport
        self.notifier = notifier
        self.log_func = log_func

    def _log(self, level: str, module: str, message: str, detail: Optional[dict] = None):
        self.log_func(level, module, message, json.dumps(detail, ensure_ascii=False, default=str) if detail else None)

    def _notify(self, kind: str, groups: List[DuplicateGroup]):
        if not groups:
            return
        try:
            self.notifier.notify(kind, [{"name": g.name, "members": list(g.members)} for g in groups])
        except Exception as e:
            self._log("WARN", "notify", "notification_failed", {"kind": kind, "error": str(e)})

    def list_source_files(self, source_paths) -> List[SourceFile]:
        if isinstance(source_paths, str):
            return list(self.transport.list(source_paths))
        if isinstance(source_paths, (list, tuple)):
            files: List[SourceFile] = []
            for path in source_paths:
                files.extend(self.transport.list(path))
            return files
        raise ConfigurationError(f"unknown source type: {type(source_paths).__name__}")

    def _clean_source(self, settings: SyncSettings, report: SyncReport) -> Dict[str, SourceFile]:
        files = [f for f in self.list_source_files(settings.source_paths) if f.kind == "file"]
        if settings.sample_limit is not None:
            files = files[: settings.sample_limit]
        if settings.source_filter:
            keep = set(filter_names([base_name(f.name) for f in files], settings.source_filter))
            files = [f for f in files if base_name(f.name) in keep]
        self._log("INFO", "sync", "source_listed", {"dataset": settings.destination_id, "files": len(files)})

        files, duplicates = remove_source_duplicates(files)
        report.duplicates["source_duplicates"] = duplicates
        for group in duplicates:
            self._log("ERROR", "sync", "source_duplicate", {"name": group.name, "members": group.members})
        self._notify("source_duplicates", duplicates)

        files, mapping, collisions = resolve_collisions(files)
        report.duplicates["name_collisions"] = collisions
        for group in collisions:
            self._log("ERROR", "sync", "name_collision", {"name": group.name, "members": group.members})
        self._notify("name_collisions", collisions)

        report.source_total = len(mapping)
        self._log("INFO", "sync", "source_cleaned", {"dataset": settings.destination_id, "files": len(mapping)})
        return mapping

    def _clean_catalog(self, settings: SyncSettings, dataset: Dataset, report: SyncReport, dry_run: bool) -> Dataset:
        to_delete, duplicates = find_catalog_duplicates(dataset.resources)
        report.duplicates["catalog_duplicates"] = duplicates
        for group in duplicates:
            self._log("ERROR", "sync", "catalog_duplicate", {"name": group.name, "resources": group.members})
        self._notify("catalog_duplicates", duplicates)
        if not to_delete:
            return dataset

        if dry_run:
            doomed = {r.id for r in to_delete}
            return dataset.model_copy(update={"resources": [r for r in dataset.resources if r.id not in doomed]})

        for resource in to_delete:
            if self.client.delete_resource(settings.destination_id, resource.id):
                report.dedup_deleted += 1
                self._log("INFO", "sync", "dedup_delete_succeeded", {"url": resource.url})
            else:
                report.fail("dedup_delete", filename_from_url(resource.url), f"delete failed for {resource.id}")
                self._log("ERROR", "sync", "dedup_delete_failed", {"url": resource.url})
        return self.client.get_dataset(settings.destination_id)

    def _download(self, key: str, source: SourceFile, report: SyncReport) -> Optional[bytes]:
        try:
            return self.transport.get(source.name)
        except Exception as e:
            report.fail("download", key, str(e))
            self._log("ERROR", "sync", "download_failed", {"file": source.name, "error": str(e)})
            return None

    def _apply_deletions(self, settings: SyncSettings, resources: List[CatalogResource], report: SyncReport):
        for key in report.to_delete:
            meta = get_resource_meta(key, resources)
            if self.client.delete_resource(settings.destination_id, meta.id):
                report.deleted += 1
                self._log("INFO", "sync", "delete_succeeded", {"file": key})
            else:
                report.fail("delete", key, f"delete failed for {meta.id}")
                self._log("ERROR", "sync", "delete_failed", {"file": key})

    def _apply_additions(self, settings: SyncSettings, mapping: Dict[str, SourceFile], report: SyncReport):
        for key in report.to_add:
            data = self._download(key, mapping[key], report)
            if data is None:
                continue
            result = self.client.upload_resource(key, data, settings.destination_id, settings.mime_type)
            if result:
                report.added += 1
                self._log("INFO", "sync", "upload_succeeded", {"file": key})
            else:
                report.fail("upload", key, "upload returned no resource")
                self._log("ERROR", "sync", "upload_failed", {"file": key})

    def _apply_updates(
        self,
        settings: SyncSettings,
        mapping: Dict[str, SourceFile],
        resources: List[CatalogResource],
        report: SyncReport,
    ):
        for key in report.to_update:
            data = self._download(key, mapping[key], report)
            if data is None:
                continue
            meta = get_resource_meta(key, resources)

            try:
                needed = should_update(key, data, meta.checksum)
            except ValueError as e:
                # Unknown digest algorithm: the content cannot be compared.
                self._log("WARN", "sync", "checksum_unsupported", {"file": key, "error": str(e)})
                needed = True
            if not needed:
                report.unchanged += 1
                self._log("INFO", "sync", "already_up_to_date", {"file": key})
                continue

            result = self.client.update_resource(key, data, settings.destination_id, meta.id, settings.mime_type)
            if not result:
                report.fail("update", key, "content upload returned no resource")
                self._log("ERROR", "sync", "update_failed", {"file": key})
                continue

            # The content upload resets title/description on udata; restore them.
            result_meta = self.client.update_resource_meta(settings.destination_id, meta.id, meta.title, meta.description)
            if not result_meta:
                report.fail("update_meta", key, "metadata update returned no resource")
                self._log("ERROR", "sync", "update_meta_failed", {"file": key})
                continue

            report.updated += 1
            self._log("INFO", "sync", "update_succeeded", {"file": key})

    def _verify(self, settings: SyncSettings, report: SyncReport):
        dataset = self.client.get_dataset(settings.destination_id)
        names = main_resource_names(dataset.resources, settings.destination_filter)
        if len(names) != report.source_total:
            raise SyncCountMismatch(len(names), report.source_total)

    def _sync(self, settings: SyncSettings, report: SyncReport, dry_run: bool):
        if not settings.destination_id:
            raise ConfigurationError("destination_id missing")

        dataset = self.client.get_dataset(settings.destination_id)
        self._log("INFO", "sync", "sync_started", {"dataset": settings.destination_id, "title": dataset.title})

        mapping = self._clean_source(settings, report)
        dataset = self._clean_catalog(settings, dataset, report, dry_run)

        destination_keys = main_resource_names(dataset.resources, settings.destination_filter)
        plan = build_plan(mapping.keys(), destination_keys, mapping, settings.overwrite)
        report.to_add = plan.to_add
        report.to_update = plan.to_update
        report.to_delete = plan.to_delete
        self._log(
            "INFO",
            "sync",
            "plan_built",
            {"to_add": plan.to_add, "to_update": plan.to_update, "to_delete": plan.to_delete},
        )
        if dry_run:
            return

        self._apply_deletions(settings, dataset.resources, report)
        self._apply_additions(settings, mapping, report)
        self._apply_updates(settings, mapping, dataset.resources, report)
        self._verify(settings, report)

    def sync(self, settings: SyncSettings, dry_run: bool = False) -> SyncReport:
        report = SyncReport(destination_id=settings.destination_id)
        try:
            self._sync(settings, report, dry_run)
        except Exception as e:
            report.fatal_error = str(e)
            self._log("ERROR", "sync", "sync_failed", {"dataset": settings.destination_id, "error": str(e)})
        return report

    def run_once(self, run_type: str = "manual", dry_run: bool = False) -> dict:
        summary = {
            "run_type": run_type,
            "dry_run": dry_run,
            "started_at": now_iso(),
            "finished_at": None,
            "datasets": [],
            "fatal_error": None,
            "ok": False,
        }

        try:
            self.transport.connect()
            self._log("INFO", "sync", "connection_established")
            for settings in self.datasets:
                report = self.sync(settings, dry_run=dry_run)
                summary["datasets"].append(report.to_dict())
        except Exception as e:
            summary["fatal_error"] = str(e)
            self._log("ERROR", "sync", "run_failed", {"error": str(e)})
        finally:
            try:
                self.transport.end()
            except Exception as e:
                self._log("WARN", "sync", "transport_close_failed", {"error": str(e)})

        summary["finished_at"] = now_iso()
        summary["ok"] = summary["fatal_error"] is None and all(d["ok"] for d in summary["datasets"])
        self._log("INFO" if summary["ok"] else "ERROR", "sync", "run_finished", {"ok": summary["ok"]})
        return summary
