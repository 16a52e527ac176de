"""File-name helpers shared by the source and catalog sides of a sync.

udata slugifies the names of uploaded files (awesome-slugify rules), so a
source name has to go through the same transformation before it can be
compared with the file name found in a resource URL.
"""

from __future__ import annotations

import posixpath
import re
import unicodedata
from urllib.parse import urlparse

_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")
_UNWANTED = re.compile(r"[^A-Za-z0-9.]+")


def base_name(name: str) -> str:
    return posixpath.basename(name.replace("\\", "/"))


def to_catalog_name(raw_name: str) -> str:
    name = base_name(raw_name)
    name = _COMBINING_MARKS.sub("", unicodedata.normalize("NFD", name))
    name = name.lower()
    name = name.replace("'", "").strip()
    words = [w for w in _UNWANTED.split(name) if w]
    return "-".join(words)


def filename_from_url(url: str) -> str:
    return posixpath.basename(urlparse(url).path)


def filter_names(names, pattern: str | None):
    """Keep names matching `pattern` (search semantics); no pattern keeps all."""
    if not pattern:
        return list(names)
    regex = re.compile(pattern)
    return [n for n in names if regex.search(n)]
