"""Vault container envelope.

Layout (little-endian)::

    header      <4sBB16sIIIII  magic, version, flags, salt, argon memory KiB,
                               argon time cost, argon parallelism,
                               sealed index length, entry count
    index       sealed index blob
    entries     repeated: <16sI entry id, sealed blob length; sealed blob
    trailer     SHA-256 of everything above

Every structural check runs without the key, so a damaged file surfaces as
:class:`CorruptContainer` rather than :class:`AuthFailure`.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from struct import Struct

from filecabinet.crypto.aead import SEALED_OVERHEAD
from filecabinet.crypto.kdf import SALT_LEN, Argon2Params, validate_stored_params
from filecabinet.entry import entry_id_from_bytes, entry_id_to_bytes
from filecabinet.errors import CorruptContainer, ValidationError

MAGIC = b"FCAB"
VERSION_V1 = 1
CURRENT_VERSION = VERSION_V1
DIGEST_LEN = 32

_HEADER_STRUCT = Struct("<4sBB16sIIIII")
_ENTRY_STRUCT = Struct("<16sI")
HEADER_LEN = _HEADER_STRUCT.size


@dataclass(frozen=True)
class ContainerImage:
    salt: bytes
    kdf_params: Argon2Params
    sealed_index: bytes
    entries: tuple[tuple[str, bytes], ...] = ()
    version: int = CURRENT_VERSION

    def entry_map(self) -> dict[str, bytes]:
        return dict(self.entries)


def build_container(image: ContainerImage) -> bytes:
    """Serialize a container image to bytes."""

    if image.version != CURRENT_VERSION:
        raise CorruptContainer("Unsupported container version")
    if len(image.salt) != SALT_LEN:
        raise CorruptContainer(f"salt must be {SALT_LEN} bytes")
    if len(image.sealed_index) < SEALED_OVERHEAD:
        raise CorruptContainer("Sealed index is too short")

    params = image.kdf_params
    parts = [
        _HEADER_STRUCT.pack(
            MAGIC,
            image.version,
            0,
            image.salt,
            params.mem_cost_kib,
            params.time_cost,
            params.parallelism,
            len(image.sealed_index),
            len(image.entries),
        ),
        image.sealed_index,
    ]
    seen: set[str] = set()
    for entry_id, blob in image.entries:
        if entry_id in seen:
            raise CorruptContainer(f"Duplicate entry id {entry_id}")
        seen.add(entry_id)
        if len(blob) < SEALED_OVERHEAD:
            raise CorruptContainer("Sealed entry is too short")
        try:
            raw_id = entry_id_to_bytes(entry_id)
        except ValidationError as exc:
            raise CorruptContainer(str(exc)) from exc
        parts.append(_ENTRY_STRUCT.pack(raw_id, len(blob)))
        parts.append(blob)

    body = b"".join(parts)
    return body + hashlib.sha256(body).digest()


def parse_container(data: bytes) -> ContainerImage:
    """Parse and structurally verify container bytes."""

    if len(data) < HEADER_LEN + DIGEST_LEN:
        raise CorruptContainer("Container too small")
    if data[: len(MAGIC)] != MAGIC:
        raise CorruptContainer("Invalid magic")

    (
        _magic,
        version,
        flags,
        salt,
        mem_cost,
        time_cost,
        parallelism,
        index_len,
        entry_count,
    ) = _HEADER_STRUCT.unpack_from(data, 0)

    if version != CURRENT_VERSION:
        raise CorruptContainer(f"Unsupported container version {version}")
    if flags != 0:
        raise CorruptContainer("Header flags set for unsupported features")

    body, digest = data[:-DIGEST_LEN], data[-DIGEST_LEN:]
    if hashlib.sha256(body).digest() != digest:
        raise CorruptContainer("Container checksum mismatch")

    params = validate_stored_params(
        Argon2Params(mem_cost_kib=mem_cost, time_cost=time_cost, parallelism=parallelism)
    )

    offset = HEADER_LEN
    if index_len < SEALED_OVERHEAD or offset + index_len > len(body):
        raise CorruptContainer("Invalid sealed index length")
    sealed_index = body[offset : offset + index_len]
    offset += index_len

    entries: list[tuple[str, bytes]] = []
    seen: set[str] = set()
    for _ in range(entry_count):
        if offset + _ENTRY_STRUCT.size > len(body):
            raise CorruptContainer("Entry table truncated")
        raw_id, blob_len = _ENTRY_STRUCT.unpack_from(body, offset)
        offset += _ENTRY_STRUCT.size
        if blob_len < SEALED_OVERHEAD or offset + blob_len > len(body):
            raise CorruptContainer("Invalid sealed entry length")
        entry_id = entry_id_from_bytes(raw_id)
        if entry_id in seen:
            raise CorruptContainer(f"Duplicate entry id {entry_id}")
        seen.add(entry_id)
        entries.append((entry_id, body[offset : offset + blob_len]))
        offset += blob_len

    if offset != len(body):
        raise CorruptContainer("Unexpected trailing data")

    return ContainerImage(
        salt=salt,
        kdf_params=params,
        sealed_index=sealed_index,
        entries=tuple(entries),
        version=version,
    )
