"""Metadata search over an unlocked vault's index."""
from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass
from typing import Callable, Iterable

from filecabinet.entry import IndexRecord
from filecabinet.errors import ValidationError
from filecabinet.index import Index


@dataclass(frozen=True)
class EntryRef:
    entry_id: str
    name: str


def _name_matcher(pattern: str | None, regex: bool) -> Callable[[str], bool]:
    if pattern is None:
        return lambda _name: True
    if regex:
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise ValidationError(f"Invalid regular expression {pattern!r}: {exc}") from exc
        return lambda name: compiled.search(name) is not None
    return lambda name: fnmatch.fnmatchcase(name, pattern)


def search(
    index: Index,
    pattern: str | None = None,
    *,
    regex: bool = False,
    tags: Iterable[str] | None = None,
    match_any: bool = False,
    predicate: Callable[[IndexRecord], bool] | None = None,
) -> list[EntryRef]:
    """Return entries whose metadata matches every given criterion.

    ``pattern`` is a case-sensitive glob over the whole name, or a regular
    expression searched anywhere in the name when ``regex`` is true. ``tags``
    must all be present on an entry, or at least one of them with
    ``match_any``. Results are ordered by name, then by entry id.
    """

    matches_name = _name_matcher(pattern, regex)
    if isinstance(tags, str):
        tags = [tags]
    wanted = frozenset(tags or ())

    results: list[EntryRef] = []
    for record in index.iter_by_name():
        if not matches_name(record.name):
            continue
        if wanted:
            present = wanted.intersection(record.tags)
            if match_any and not present:
                continue
            if not match_any and present != wanted:
                continue
        if predicate is not None and not predicate(record):
            continue
        results.append(EntryRef(entry_id=record.entry_id, name=record.name))
    return results
