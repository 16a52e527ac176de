from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ItemOperation = Literal["delete", "dedup_delete", "download", "upload", "update", "update_meta"]


class FatalRunError(RuntimeError):
    """Aborts the reconciliation of a dataset before or during mutation."""


class ConfigurationError(FatalRunError):
    pass


class MetadataNotFound(FatalRunError):
    def __init__(self, key: str):
        super().__init__(f"metadata_not_found: {key}")
        self.key = key


class ResourceAmbiguity(FatalRunError):
    def __init__(self, key: str, resource_ids: list[str]):
        super().__init__(f"multiple_metadata_found: {key} ({', '.join(resource_ids)})")
        self.key = key
        self.resource_ids = resource_ids


class SyncCountMismatch(FatalRunError):
    def __init__(self, catalog_count: int, source_count: int):
        super().__init__(f"different number of files after sync, catalog: {catalog_count}, source: {source_count}")
        self.catalog_count = catalog_count
        self.source_count = source_count


@dataclass(frozen=True)
class ItemFailure:
    """A per-item failure: recorded, never raised."""

    operation: ItemOperation
    key: str
    error: str


@dataclass(frozen=True)
class DuplicateGroup:
    name: str
    members: list[str]


@dataclass
class SyncReport:
    destination_id: str
    source_total: int = 0
    to_add: list[str] = field(default_factory=list)
    to_update: list[str] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)
    deleted: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    dedup_deleted: int = 0
    duplicates: dict[str, list[DuplicateGroup]] = field(default_factory=dict)
    failures: list[ItemFailure] = field(default_factory=list)
    fatal_error: str | None = None

    def fail(self, operation: ItemOperation, key: str, error: str) -> None:
        self.failures.append(ItemFailure(operation=operation, key=key, error=error))

    @property
    def ok(self) -> bool:
        if self.fatal_error or self.failures:
            return False
        return not any(self.duplicates.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination_id": self.destination_id,
            "ok": self.ok,
            "source_total": self.source_total,
            "to_add": list(self.to_add),
            "to_update": list(self.to_update),
            "to_delete": list(self.to_delete),
            "deleted": self.deleted,
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "dedup_deleted": self.dedup_deleted,
            "duplicates": {
                kind: [{"name": g.name, "members": list(g.members)} for g in groups]
                for kind, groups in self.duplicates.items()
                if groups
            },
            "failures": [
                {"operation": f.operation, "key": f.key, "error": f.error} for f in self.failures
            ],
            "fatal_error": self.fatal_error,
        }
