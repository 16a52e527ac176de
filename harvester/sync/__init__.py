from .dedup import find_catalog_duplicates, remove_source_duplicates, resolve_collisions
from .engine import SyncEngine
from .errors import (
    ConfigurationError,
    DuplicateGroup,
    FatalRunError,
    ItemFailure,
    MetadataNotFound,
    ResourceAmbiguity,
    SyncCountMismatch,
    SyncReport,
)
from .naming import filename_from_url, to_catalog_name
from .planner import ReconciliationPlan, build_plan, get_resource_meta, should_update

__all__ = [
    "ConfigurationError",
    "DuplicateGroup",
    "FatalRunError",
    "ItemFailure",
    "MetadataNotFound",
    "ReconciliationPlan",
    "ResourceAmbiguity",
    "SyncCountMismatch",
    "SyncEngine",
    "SyncReport",
    "build_plan",
    "filename_from_url",
    "find_catalog_duplicates",
    "get_resource_meta",
    "remove_source_duplicates",
    "resolve_collisions",
    "should_update",
    "to_catalog_name",
]
