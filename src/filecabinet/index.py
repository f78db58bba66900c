"""In-memory catalog of entry metadata.

The index never touches disk. The vault engine seals :meth:`Index.serialize`
output and writes it as part of the container.
"""
from __future__ import annotations

import bisect
import json
from typing import TYPE_CHECKING, Callable, Iterator

from filecabinet.crypto.aead import open_sealed
from filecabinet.entry import IndexRecord, entry_id_to_bytes, validate_name, validate_tag
from filecabinet.errors import CorruptContainer, NotFoundError, ValidationError

if TYPE_CHECKING:
    from filecabinet.container.format import ContainerImage

INDEX_FORMAT_VERSION = 1
INDEX_AAD = b"filecabinet/index"

_RECORD_FIELDS = ("created_ns", "id", "modified_ns", "name", "size", "tags")


class Index:
    """Ordered mapping of entry identifiers to :class:`IndexRecord`.

    Lookup by id is a dict access; ``(name, entry_id)`` keys are kept sorted
    so listing in name order needs no sort.
    """

    def __init__(self) -> None:
        self._records: dict[str, IndexRecord] = {}
        self._by_name: list[tuple[str, str]] = []

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._records

    def __iter__(self) -> Iterator[IndexRecord]:
        return self.iter_by_name()

    def __repr__(self) -> str:
        return f"<Index records={len(self)}>"

    def get(self, entry_id: str) -> IndexRecord:
        try:
            return self._records[entry_id]
        except KeyError:
            raise NotFoundError(f"No entry with id {entry_id}") from None

    def ids(self) -> set[str]:
        return set(self._records)

    def insert(self, record: IndexRecord) -> None:
        if record.entry_id in self._records:
            raise ValidationError(f"Duplicate entry id {record.entry_id}")
        self._records[record.entry_id] = record
        bisect.insort(self._by_name, (record.name, record.entry_id))

    def remove(self, entry_id: str) -> IndexRecord:
        record = self.get(entry_id)
        del self._records[entry_id]
        key = (record.name, entry_id)
        pos = bisect.bisect_left(self._by_name, key)
        del self._by_name[pos]
        return record

    def update(self, entry_id: str, mutator: Callable[[IndexRecord], IndexRecord]) -> IndexRecord:
        """Replace a record with ``mutator(old_record)``."""
        old = self.get(entry_id)
        new = mutator(old)
        if new.entry_id != entry_id:
            raise ValidationError("Entry identifiers are immutable")
        self.remove(entry_id)
        self.insert(new)
        return new

    def copy(self) -> Index:
        clone = Index()
        clone._records = dict(self._records)
        clone._by_name = list(self._by_name)
        return clone

    def iter_by_name(self) -> Iterator[IndexRecord]:
        for _name, entry_id in self._by_name:
            yield self._records[entry_id]

    def iter_by_created(self) -> Iterator[IndexRecord]:
        return iter(sorted(self._records.values(), key=lambda r: (r.created_ns, r.name, r.entry_id)))

    def iter_by_modified(self) -> Iterator[IndexRecord]:
        return iter(sorted(self._records.values(), key=lambda r: (r.modified_ns, r.name, r.entry_id)))

    def serialize(self) -> bytes:
        records = [
            {
                "id": record.entry_id,
                "name": record.name,
                "tags": list(record.tags),
                "created_ns": record.created_ns,
                "modified_ns": record.modified_ns,
                "size": record.size,
            }
            for _entry_id, record in sorted(self._records.items())
        ]
        document = {"version": INDEX_FORMAT_VERSION, "records": records}
        return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @classmethod
    def parse(cls, data: bytes) -> Index:
        try:
            document = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptContainer("Invalid index document") from exc

        if not isinstance(document, dict) or document.get("version") != INDEX_FORMAT_VERSION:
            raise CorruptContainer("Unsupported index version")
        raw_records = document.get("records")
        if not isinstance(raw_records, list):
            raise CorruptContainer("Invalid index document")

        index = cls()
        for raw in raw_records:
            record = _record_from_json(raw)
            if record.entry_id in index:
                raise CorruptContainer(f"Duplicate index record {record.entry_id}")
            index.insert(record)
        return index

    @classmethod
    def rebuild(cls, image: ContainerImage, key: bytes) -> Index:
        """Open the container's sealed index and check it against the entry table."""
        plaintext = open_sealed(key, image.sealed_index, INDEX_AAD)
        index = cls.parse(plaintext)
        if index.ids() != {entry_id for entry_id, _blob in image.entries}:
            raise CorruptContainer("Index does not match container entries")
        return index


def _record_from_json(raw: object) -> IndexRecord:
    if not isinstance(raw, dict) or tuple(sorted(raw)) != _RECORD_FIELDS:
        raise CorruptContainer("Invalid index record")
    try:
        entry_id_to_bytes(raw["id"])
    except ValidationError as exc:
        raise CorruptContainer("Invalid index record id") from exc
    tags = raw["tags"]
    if not isinstance(tags, list) or not all(
        isinstance(raw[key], int) and not isinstance(raw[key], bool)
        for key in ("created_ns", "modified_ns", "size")
    ):
        raise CorruptContainer("Invalid index record")
    try:
        validate_name(raw["name"])
        for tag in tags:
            validate_tag(tag)
    except ValidationError as exc:
        raise CorruptContainer(f"Invalid index record: {exc}") from exc
    return IndexRecord(
        entry_id=raw["id"],
        name=raw["name"],
        tags=tuple(tags),
        created_ns=raw["created_ns"],
        modified_ns=raw["modified_ns"],
        size=raw["size"],
    )
