from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Checksum(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # udata names the digest algorithm `type` (sha1, sha256, md5, ...).
    algorithm: str = Field(alias="type")
    value: str


class CatalogResource(BaseModel):
    """One file registered on a udata dataset."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    url: str
    title: str = ""
    description: str | None = None
    resource_type: str = Field(default="main", alias="type")
    checksum: Checksum | None = None
    last_modified: datetime | None = None

    @property
    def modified_sort_key(self) -> datetime:
        value = self.last_modified or EPOCH
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Dataset(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    title: str = ""
    resources: list[CatalogResource] = Field(default_factory=list)
