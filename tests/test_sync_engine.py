import hashlib
from datetime import datetime, timezone

import pytest

from harvester.core.config import SyncSettings
from harvester.providers.udata.models import Dataset
from harvester.sync.engine import SyncEngine
from harvester.sync.errors import ConfigurationError
from harvester.transports.base import SourceFile

DATASET = "ds-1"


def _ts(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


class _FakeTransport:
    def __init__(self, listing: dict[str, list[tuple[str, int]]], contents: dict[str, bytes] | None = None):
        self.listing = listing
        self.contents = contents or {}
        self.connected = False
        self.ended = False
        self.fail_connect = False
        self.downloads: list[str] = []

    def connect(self):
        if self.fail_connect:
            raise OSError("connection refused")
        self.connected = True

    def list(self, path: str):
        return [
            SourceFile(name=name, kind="directory" if name.endswith("/") else "file", modified_at=_ts(day))
            for name, day in self.listing.get(path, [])
        ]

    def get(self, path: str) -> bytes:
        self.downloads.append(path)
        if path not in self.contents:
            raise OSError(f"no such file: {path}")
        return self.contents[path]

    def end(self):
        self.ended = True


class _FakeCatalog:
    def __init__(self, resources: dict[str, list[dict]] | None = None):
        self.resources = resources or {}
        self.calls: list[tuple] = []
        self.fail_delete = False
        self.fail_upload: set[str] = set()
        self.fail_meta = False
        self._next_id = 0

    def _new_id(self) -> str:
        self._next_id += 1
        return f"new-{self._next_id}"

    def get_dataset(self, dataset_id: str) -> Dataset:
        self.calls.append(("get_dataset", dataset_id))
        if dataset_id not in self.resources:
            raise RuntimeError(f"status code: 404, dataset {dataset_id}")
        return Dataset.model_validate({"id": dataset_id, "title": "Test", "resources": self.resources[dataset_id]})

    def upload_resource(self, filename, data, dataset_id, mime):
        self.calls.append(("upload", filename, mime))
        if filename in self.fail_upload:
            return {}
        resource = resource_dict(self._new_id(), filename, day=28, data=data)
        self.resources[dataset_id].append(resource)
        return resource

    def update_resource(self, filename, data, dataset_id, resource_id, mime):
        self.calls.append(("update", filename, resource_id))
        return {"id": resource_id}

    def update_resource_meta(self, dataset_id, resource_id, title, description):
        self.calls.append(("update_meta", resource_id, title, description))
        if self.fail_meta:
            return {}
        return {"id": resource_id, "title": title}

    def delete_resource(self, dataset_id, resource_id):
        self.calls.append(("delete", resource_id))
        if self.fail_delete:
            return False
        self.resources[dataset_id] = [r for r in self.resources[dataset_id] if r["id"] != resource_id]
        return True

    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] != "get_dataset"]


class _Notifier:
    def __init__(self):
        self.sent: list[tuple[str, list[dict]]] = []

    def notify(self, kind, groups):
        self.sent.append((kind, groups))


def resource_dict(rid: str, filename: str, day: int = 1, data: bytes | None = None, rtype: str = "main") -> dict:
    checksum = {"type": "sha1", "value": hashlib.sha1(data).hexdigest()} if data is not None else None
    return {
        "id": rid,
        "url": f"https://static.example.org/resources/{DATASET}/{rid}/{filename}",
        "title": f"Title of {filename}",
        "description": "kept description",
        "type": rtype,
        "checksum": checksum,
        "last_modified": _ts(day).isoformat(),
    }


def _settings(**overrides) -> SyncSettings:
    values = {"source_paths": "in", "destination_id": DATASET}
    values.update(overrides)
    return SyncSettings(**values)


def _engine(transport, catalog, notifier=None, datasets=None, events=None) -> SyncEngine:
    def log_func(level, module, message, detail=None):
        if events is not None:
            events.append((level, module, message))

    return SyncEngine(
        datasets or [_settings()],
        client=catalog,
        transport=transport,
        notifier=notifier or _Notifier(),
        log_func=log_func,
    )


def test_adds_new_files_and_deletes_orphans():
    transport = _FakeTransport(
        {"in": [("in/x.csv", 1), ("in/Y File.csv", 2)]},
        {"in/x.csv": b"x", "in/Y File.csv": b"y"},
    )
    catalog = _FakeCatalog({DATASET: [resource_dict("r-x", "x.csv"), resource_dict("r-old", "old.csv")]})

    report = _engine(transport, catalog).sync(_settings())

    assert report.ok, report.to_dict()
    assert report.to_add == ["y-file.csv"]
    assert report.to_delete == ["old.csv"]
    assert report.added == 1
    assert report.deleted == 1
    assert ("upload", "y-file.csv", "text/csv") in catalog.calls
    assert ("delete", "r-old") in catalog.calls
    assert transport.downloads == ["in/Y File.csv"]


def test_operations_run_deletions_then_additions_in_modification_order():
    transport = _FakeTransport(
        {"in": [("in/c.csv", 3), ("in/a.csv", 1), ("in/b.csv", 2)]},
        {"in/a.csv": b"a", "in/b.csv": b"b", "in/c.csv": b"c"},
    )
    catalog = _FakeCatalog({DATASET: [resource_dict("r-z", "z.csv")]})

    _engine(transport, catalog).sync(_settings())

    assert [c[:2] for c in catalog.mutations()] == [
        ("delete", "r-z"),
        ("upload", "a.csv"),
        ("upload", "b.csv"),
        ("upload", "c.csv"),
    ]


def test_multiple_source_paths_are_concatenated():
    transport = _FakeTransport(
        {"in": [("in/a.csv", 1)], "more": [("more/b.csv", 2)]},
        {"in/a.csv": b"a", "more/b.csv": b"b"},
    )
    catalog = _FakeCatalog({DATASET: []})

    report = _engine(transport, catalog).sync(_settings(source_paths=["in", "more"]))

    assert report.ok
    assert report.to_add == ["a.csv", "b.csv"]


def test_unknown_source_path_type_is_a_configuration_error():
    engine = _engine(_FakeTransport({}), _FakeCatalog({DATASET: []}))

    with pytest.raises(ConfigurationError):
        engine.list_source_files(42)


def test_directories_are_not_synced():
    transport = _FakeTransport({"in": [("in/a.csv", 1), ("in/sub/", 1)]}, {"in/a.csv": b"a"})
    catalog = _FakeCatalog({DATASET: []})

    report = _engine(transport, catalog).sync(_settings())

    assert report.to_add == ["a.csv"]
    assert report.source_total == 1


def test_unchanged_content_is_not_reuploaded():
    transport = _FakeTransport({"in": [("in/x.csv", 1)]}, {"in/x.csv": b"same"})
    catalog = _FakeCatalog({DATASET: [resource_dict("r-x", "x.csv", data=b"same")]})

    report = _engine(transport, catalog).sync(_settings(overwrite=True))

    assert report.ok
    assert report.to_update == ["x.csv"]
    assert report.unchanged == 1
    assert report.updated == 0
    assert catalog.mutations() == []


def test_changed_content_is_uploaded_and_metadata_restored():
    transport = _FakeTransport({"in": [("in/x.csv", 1)]}, {"in/x.csv": b"new"})
    catalog = _FakeCatalog({DATASET: [resource_dict("r-x", "x.csv", data=b"old")]})

    report = _engine(transport, catalog).sync(_settings(overwrite=True))

    assert report.ok
    assert report.updated == 1
    assert catalog.mutations() == [
        ("update", "x.csv", "r-x"),
        ("update_meta", "r-x", "Title of x.csv", "kept description"),
    ]


def test_without_overwrite_existing_files_are_left_alone():
    transport = _FakeTransport({"in": [("in/x.csv", 1)]}, {"in/x.csv": b"new"})
    catalog = _FakeCatalog({DATASET: [resource_dict("r-x", "x.csv", data=b"old")]})

    report = _engine(transport, catalog).sync(_settings())

    assert report.to_update == []
    assert catalog.mutations() == []
    assert transport.downloads == []


def test_metadata_step_failure_is_recorded_without_aborting():
    transport = _FakeTransport({"in": [("in/x.csv", 1), ("in/y.csv", 2)]}, {"in/x.csv": b"new", "in/y.csv": b"y2"})
    catalog = _FakeCatalog(
        {DATASET: [resource_dict("r-x", "x.csv", data=b"old"), resource_dict("r-y", "y.csv", data=b"y1")]}
    )
    catalog.fail_meta = True

    report = _engine(transport, catalog).sync(_settings(overwrite=True))

    assert not report.ok
    assert report.fatal_error is None
    assert [(f.operation, f.key) for f in report.failures] == [("update_meta", "x.csv"), ("update_meta", "y.csv")]
    assert report.updated == 0


def test_item_failures_continue_the_batch_and_count_check_is_fatal():
    transport = _FakeTransport(
        {"in": [("in/a.csv", 1), ("in/b.csv", 2), ("in/c.csv", 3)]},
        {"in/b.csv": b"b", "in/c.csv": b"c"},
    )
    catalog = _FakeCatalog({DATASET: []})
    catalog.fail_upload = {"c.csv"}

    report = _engine(transport, catalog).sync(_settings())

    assert report.added == 1
    assert [(f.operation, f.key) for f in report.failures] == [("download", "a.csv"), ("upload", "c.csv")]
    assert "different number of files after sync" in report.fatal_error
    assert not report.ok


def test_catalog_duplicates_are_cleaned_before_planning():
    transport = _FakeTransport({"in": [("in/x.csv", 1)]}, {"in/x.csv": b"x"})
    catalog = _FakeCatalog({DATASET: [resource_dict("r-old", "x.csv", day=1), resource_dict("r-new", "x.csv", day=5)]})
    notifier = _Notifier()

    report = _engine(transport, catalog, notifier=notifier).sync(_settings())

    assert catalog.mutations() == [("delete", "r-old")]
    assert report.dedup_deleted == 1
    assert report.to_add == [] and report.to_delete == []
    assert report.fatal_error is None
    assert not report.ok
    assert notifier.sent == [("catalog_duplicates", [{"name": "x.csv", "members": ["r-old", "r-new"]}])]


def test_failed_duplicate_cleanup_makes_lookup_ambiguous():
    transport = _FakeTransport({"in": []})
    catalog = _FakeCatalog({DATASET: [resource_dict("r-1", "x.csv", day=1), resource_dict("r-2", "x.csv", day=5)]})
    catalog.fail_delete = True

    report = _engine(transport, catalog).sync(_settings())

    assert report.to_delete == ["x.csv"]
    assert "multiple_metadata_found" in report.fatal_error
    assert [f.operation for f in report.failures] == ["dedup_delete"]


def test_source_duplicates_and_collisions_are_skipped_and_reported():
    transport = _FakeTransport(
        {"in": [("in/a/report.csv", 1), ("in/b/report.csv", 2), ("in/Data.csv", 1), ("in/data.csv", 2), ("in/ok.csv", 3)]},
        {"in/ok.csv": b"ok"},
    )
    catalog = _FakeCatalog({DATASET: []})
    notifier = _Notifier()

    report = _engine(transport, catalog, notifier=notifier).sync(_settings())

    assert report.to_add == ["ok.csv"]
    assert report.source_total == 1
    assert report.fatal_error is None
    assert not report.ok
    assert [kind for kind, _groups in notifier.sent] == ["source_duplicates", "name_collisions"]
    assert notifier.sent[0][1] == [{"name": "report.csv", "members": ["in/a/report.csv", "in/b/report.csv"]}]


def test_failing_notifier_does_not_break_the_run():
    class _BrokenNotifier:
        def notify(self, kind, groups):
            raise ConnectionError("smtp down")

    transport = _FakeTransport({"in": [("in/a/x.csv", 1), ("in/b/x.csv", 1)]})
    catalog = _FakeCatalog({DATASET: []})
    events: list[tuple] = []

    report = _engine(transport, catalog, notifier=_BrokenNotifier(), events=events).sync(_settings())

    assert report.fatal_error is None
    assert ("WARN", "notify", "notification_failed") in events


def test_filters_apply_to_both_sides_before_comparison():
    transport = _FakeTransport({"in": [("in/x.csv", 1), ("in/readme.md", 1), ("in/y.csv", 2)]}, {"in/y.csv": b"y"})
    catalog = _FakeCatalog({DATASET: [resource_dict("r-x", "x.csv"), resource_dict("r-n", "notes.txt")]})

    report = _engine(transport, catalog).sync(_settings(source_filter=r"\.csv$", destination_filter=r"\.csv$"))

    assert report.ok, report.to_dict()
    assert report.to_add == ["y.csv"]
    assert report.to_delete == []


def test_non_main_resources_are_ignored_by_the_plan():
    transport = _FakeTransport({"in": [("in/x.csv", 1)]})
    catalog = _FakeCatalog({DATASET: [resource_dict("r-x", "x.csv"), resource_dict("r-doc", "doc.pdf", rtype="documentation")]})

    report = _engine(transport, catalog).sync(_settings())

    assert report.ok
    assert report.to_delete == []
    assert catalog.mutations() == []


def test_sample_limit_keeps_first_entries():
    transport = _FakeTransport({"in": [("in/a.csv", 1), ("in/b.csv", 2), ("in/c.csv", 3)]})
    catalog = _FakeCatalog({DATASET: []})

    report = _engine(transport, catalog).sync(_settings(sample_limit=2), dry_run=True)

    assert report.to_add == ["a.csv", "b.csv"]


def test_dry_run_does_not_mutate():
    transport = _FakeTransport({"in": [("in/x.csv", 1)]})
    catalog = _FakeCatalog(
        {DATASET: [resource_dict("r-1", "old.csv"), resource_dict("r-2", "dup.csv", day=1), resource_dict("r-3", "dup.csv", day=2)]}
    )

    report = _engine(transport, catalog).sync(_settings(), dry_run=True)

    assert catalog.mutations() == []
    assert transport.downloads == []
    assert report.to_add == ["x.csv"]
    assert report.to_delete == ["dup.csv", "old.csv"]


def test_run_once_continues_after_a_fatal_dataset_and_closes_transport():
    transport = _FakeTransport({"in": [("in/x.csv", 1)]}, {"in/x.csv": b"x"})
    catalog = _FakeCatalog({DATASET: []})
    datasets = [_settings(destination_id="missing"), _settings()]

    summary = _engine(transport, catalog, datasets=datasets).run_once(run_type="test")

    assert transport.connected and transport.ended
    assert summary["ok"] is False
    assert summary["fatal_error"] is None
    assert summary["datasets"][0]["fatal_error"].startswith("status code: 404")
    assert summary["datasets"][1]["ok"] is True
    assert summary["datasets"][1]["added"] == 1


def test_run_once_connection_failure_is_fatal():
    transport = _FakeTransport({})
    transport.fail_connect = True

    summary = _engine(transport, _FakeCatalog({DATASET: []})).run_once()

    assert summary["ok"] is False
    assert summary["fatal_error"] == "connection refused"
    assert summary["datasets"] == []
    assert transport.ended


def test_second_run_against_unchanged_source_performs_no_writes():
    transport = _FakeTransport({"in": [("in/x.csv", 1), ("in/y.csv", 2)]}, {"in/x.csv": b"x", "in/y.csv": b"y"})
    catalog = _FakeCatalog({DATASET: []})
    engine = _engine(transport, catalog, datasets=[_settings(overwrite=True)])

    first = engine.run_once()
    catalog.calls.clear()
    second = engine.run_once()

    assert first["ok"] and second["ok"]
    assert catalog.mutations() == []
    assert second["datasets"][0]["unchanged"] == 2
