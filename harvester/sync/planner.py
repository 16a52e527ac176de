from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from harvester.providers.udata.models import CatalogResource, Checksum
from harvester.transports.base import SourceFile

from .errors import MetadataNotFound, ResourceAmbiguity
from .naming import filename_from_url

# udata checksum type names that differ from hashlib's.
_ALGORITHM_ALIASES = {"sha2": "sha256"}


@dataclass
class ReconciliationPlan:
    # Ordered by source modification time, oldest first.
    to_add: List[str] = field(default_factory=list)
    to_update: List[str] = field(default_factory=list)
    to_delete: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_update or self.to_delete)


def build_plan(
    source_keys: Iterable[str],
    destination_keys: Iterable[str],
    mapping: Dict[str, SourceFile],
    overwrite: bool,
) -> ReconciliationPlan:
    """Compute the add/update/delete sets turning the catalog into the source.

    Both key collections must already be filtered by the configured
    inclusion patterns, otherwise filtered-out source files would show up
    as deletions.
    """
    source: Set[str] = set(source_keys)
    destination: Set[str] = set(destination_keys)

    to_add = sorted(source - destination, key=lambda k: (mapping[k].modified_at, k))
    to_update = sorted(source & destination) if overwrite else []
    to_delete = sorted(destination - source)
    return ReconciliationPlan(to_add=to_add, to_update=to_update, to_delete=to_delete)


def get_resource_meta(key: str, resources: Iterable[CatalogResource]) -> CatalogResource:
    matches = [r for r in resources if filename_from_url(r.url) == key]
    if not matches:
        raise MetadataNotFound(key)
    if len(matches) > 1:
        raise ResourceAmbiguity(key, [r.id for r in matches])
    return matches[0]


def file_digest(data: bytes, algorithm: str) -> str:
    name = algorithm.lower()
    h = hashlib.new(_ALGORITHM_ALIASES.get(name, name))
    h.update(data)
    return h.hexdigest()


def should_update(key: str, data: bytes, checksum: Optional[Checksum]) -> bool:
    """True unless `data` hashes to the checksum stored on the catalog.

    Raises ValueError when the stored algorithm is unknown to hashlib.
    """
    if checksum is None or not checksum.value:
        return True
    return file_digest(data, checksum.algorithm) != checksum.value.lower()
