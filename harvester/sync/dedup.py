from __future__ import annotations

from typing import Dict, List, Tuple

from harvester.providers.udata.models import CatalogResource
from harvester.transports.base import SourceFile

from .errors import DuplicateGroup
from .naming import base_name, filename_from_url, to_catalog_name


def _group(items, key) -> Dict[str, list]:
    groups: Dict[str, list] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups


def remove_source_duplicates(files: List[SourceFile]) -> Tuple[List[SourceFile], List[DuplicateGroup]]:
    """Drop every file whose base name appears more than once in the listing.

    Same-named files in different folders are ambiguous; none of them is
    synced until the data owner resolves it at the source.
    """
    groups = _group(files, lambda f: base_name(f.name))
    duplicates = [
        DuplicateGroup(name=name, members=[f.name for f in members])
        for name, members in groups.items()
        if len(members) > 1
    ]
    kept = [f for f in files if len(groups[base_name(f.name)]) == 1]
    return kept, duplicates


def resolve_collisions(
    files: List[SourceFile],
) -> Tuple[List[SourceFile], Dict[str, SourceFile], List[DuplicateGroup]]:
    """Drop files whose catalog names collide and map the rest by catalog name."""
    groups = _group(files, lambda f: to_catalog_name(f.name))
    collisions = [
        DuplicateGroup(name=key, members=[f.name for f in members])
        for key, members in groups.items()
        if len(members) > 1
    ]
    mapping = {key: members[0] for key, members in groups.items() if len(members) == 1}
    kept = [f for f in files if to_catalog_name(f.name) in mapping]
    return kept, mapping, collisions


def find_catalog_duplicates(
    resources: List[CatalogResource],
) -> Tuple[List[CatalogResource], List[DuplicateGroup]]:
    """Return the resources to delete so that each URL file name is unique.

    Within a duplicate group the most recently modified resource is kept.
    """
    groups = _group(resources, lambda r: filename_from_url(r.url))
    to_delete: List[CatalogResource] = []
    duplicates: List[DuplicateGroup] = []
    for name, members in groups.items():
        if len(members) <= 1:
            continue
        duplicates.append(DuplicateGroup(name=name, members=[r.id for r in members]))
        newest_first = sorted(members, key=lambda r: r.modified_sort_key, reverse=True)
        to_delete.extend(newest_first[1:])
    return to_delete, duplicates
