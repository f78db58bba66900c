"""Cabinet entries, their index projection and the canonical entry codec."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from struct import Struct
from typing import Iterable

from filecabinet.errors import CorruptContainer, ValidationError

ENTRY_MAGIC = b"FENT"
ENTRY_VERSION = 1
ENTRY_ID_LEN = 16

MAX_NAME_LEN = 255
MAX_TAGS = 64
MAX_TAG_LEN = 64
MAX_PAYLOAD_LEN = 1024 * 1024 * 1024

_ENTRY_PREFIX_STRUCT = Struct("<4sB16sqq")
_U16 = Struct("<H")
_U64 = Struct("<Q")

_FORBIDDEN_NAME_CHARS = frozenset("\x00/\\")
_FORBIDDEN_TAG_CHARS = frozenset(",\x00")


def new_entry_id() -> str:
    return uuid.uuid4().hex


def entry_id_to_bytes(entry_id: str) -> bytes:
    try:
        raw = bytes.fromhex(entry_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid entry id: {entry_id!r}") from exc
    if len(raw) != ENTRY_ID_LEN:
        raise ValidationError(f"Invalid entry id: {entry_id!r}")
    return raw


def entry_id_from_bytes(raw: bytes) -> str:
    return raw.hex()


def _utf8_len(text: str, what: str) -> int:
    try:
        return len(text.encode("utf-8"))
    except UnicodeEncodeError as exc:
        raise ValidationError(f"{what} is not valid Unicode text") from exc


def validate_name(name: str) -> str:
    if not isinstance(name, str):
        raise ValidationError("Entry name must be a string")
    if not name.strip():
        raise ValidationError("Entry name must not be empty")
    if any(ch in _FORBIDDEN_NAME_CHARS for ch in name):
        raise ValidationError("Entry name must not contain path separators or NUL")
    if _utf8_len(name, "Entry name") > MAX_NAME_LEN:
        raise ValidationError(f"Entry name exceeds {MAX_NAME_LEN} bytes")
    return name


def validate_tag(tag: str) -> str:
    if not isinstance(tag, str) or not tag:
        raise ValidationError("Tags must be non-empty strings")
    if any(ch.isspace() or ch in _FORBIDDEN_TAG_CHARS for ch in tag):
        raise ValidationError(f"Tag {tag!r} contains whitespace or a comma")
    if _utf8_len(tag, f"Tag {tag!r}") > MAX_TAG_LEN:
        raise ValidationError(f"Tag exceeds {MAX_TAG_LEN} bytes")
    return tag


def normalize_tags(tags: Iterable[str] | None) -> tuple[str, ...]:
    """Validate tags and return them deduplicated and sorted."""
    if tags is None:
        return ()
    if isinstance(tags, str):
        raise ValidationError("Tags must be an iterable of strings, not a string")
    unique = sorted({validate_tag(tag) for tag in tags})
    if len(unique) > MAX_TAGS:
        raise ValidationError(f"An entry may carry at most {MAX_TAGS} tags")
    return tuple(unique)


def validate_payload(payload: bytes) -> bytes:
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise ValidationError("Payload must be bytes")
    payload = bytes(payload)
    if len(payload) > MAX_PAYLOAD_LEN:
        raise ValidationError(f"Payload exceeds {MAX_PAYLOAD_LEN} bytes")
    return payload


@dataclass(frozen=True)
class IndexRecord:
    entry_id: str
    name: str
    tags: tuple[str, ...]
    created_ns: int
    modified_ns: int
    size: int


@dataclass(frozen=True)
class Entry:
    entry_id: str
    name: str
    tags: tuple[str, ...] = ()
    created_ns: int = 0
    modified_ns: int = 0
    payload: bytes = field(default=b"", repr=False)

    @property
    def size(self) -> int:
        return len(self.payload)

    def record(self) -> IndexRecord:
        return IndexRecord(
            entry_id=self.entry_id,
            name=self.name,
            tags=self.tags,
            created_ns=self.created_ns,
            modified_ns=self.modified_ns,
            size=self.size,
        )


def make_entry(name: str, tags: Iterable[str] | None, payload: bytes) -> Entry:
    """Validate user input and build a new entry with a fresh identifier."""
    now = time.time_ns()
    return Entry(
        entry_id=new_entry_id(),
        name=validate_name(name),
        tags=normalize_tags(tags),
        created_ns=now,
        modified_ns=now,
        payload=validate_payload(payload),
    )


def validate_entry(entry: Entry) -> None:
    entry_id_to_bytes(entry.entry_id)
    validate_name(entry.name)
    if normalize_tags(entry.tags) != tuple(entry.tags):
        raise ValidationError("Entry tags must be unique and sorted")
    validate_payload(entry.payload)
    for stamp in (entry.created_ns, entry.modified_ns):
        if not isinstance(stamp, int) or not (-(2**63) <= stamp < 2**63):
            raise ValidationError("Entry timestamps must be 64-bit integers")


def _pack_text(text: str) -> bytes:
    data = text.encode("utf-8")
    return _U16.pack(len(data)) + data


def encode(entry: Entry) -> bytes:
    """Serialize an entry into its canonical byte layout."""

    validate_entry(entry)
    parts = [
        _ENTRY_PREFIX_STRUCT.pack(
            ENTRY_MAGIC,
            ENTRY_VERSION,
            entry_id_to_bytes(entry.entry_id),
            entry.created_ns,
            entry.modified_ns,
        ),
        _pack_text(entry.name),
        _U16.pack(len(entry.tags)),
        *(_pack_text(tag) for tag in entry.tags),
        _U64.pack(len(entry.payload)),
        entry.payload,
    ]
    return b"".join(parts)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = memoryview(data)
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise CorruptContainer("Entry data truncated")
        chunk = self.data[self.offset:end].tobytes()
        self.offset = end
        return chunk

    def unpack(self, fmt: Struct) -> tuple:
        return fmt.unpack(self.take(fmt.size))

    def text(self) -> str:
        (length,) = self.unpack(_U16)
        try:
            return self.take(length).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptContainer("Entry text is not valid UTF-8") from exc

    def at_end(self) -> bool:
        return self.offset == len(self.data)


def decode(data: bytes) -> Entry:
    """Parse bytes produced by :func:`encode`."""

    reader = _Reader(data)
    magic, version, raw_id, created_ns, modified_ns = reader.unpack(_ENTRY_PREFIX_STRUCT)
    if magic != ENTRY_MAGIC:
        raise CorruptContainer("Invalid entry magic")
    if version != ENTRY_VERSION:
        raise CorruptContainer("Unsupported entry version")

    name = reader.text()
    (tag_count,) = reader.unpack(_U16)
    tags = tuple(reader.text() for _ in range(tag_count))
    (payload_len,) = reader.unpack(_U64)
    payload = reader.take(payload_len)
    if not reader.at_end():
        raise CorruptContainer("Unexpected trailing entry data")

    entry = Entry(
        entry_id=entry_id_from_bytes(raw_id),
        name=name,
        tags=tags,
        created_ns=created_ns,
        modified_ns=modified_ns,
        payload=payload,
    )
    try:
        validate_entry(entry)
    except ValidationError as exc:
        raise CorruptContainer(f"Invalid entry: {exc}") from exc
    return entry
