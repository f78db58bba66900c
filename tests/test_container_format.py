"""Structural checks on the container envelope. None of these need a key."""

from __future__ import annotations

import hashlib
import os
from dataclasses import replace

import pytest
from hypothesis import given, strategies as st

from filecabinet.container.format import (
    DIGEST_LEN,
    HEADER_LEN,
    MAGIC,
    ContainerImage,
    _HEADER_STRUCT,
    build_container,
    parse_container,
)
from filecabinet.crypto.aead import SEALED_OVERHEAD
from filecabinet.crypto.kdf import Argon2Params, new_salt
from filecabinet.entry import new_entry_id
from filecabinet.errors import CorruptContainer

PARAMS = Argon2Params(mem_cost_kib=8 * 1024, time_cost=1, parallelism=1)


def _image(entry_count: int = 2) -> ContainerImage:
    return ContainerImage(
        salt=new_salt(),
        kdf_params=PARAMS,
        sealed_index=os.urandom(SEALED_OVERHEAD + 10),
        entries=tuple((new_entry_id(), os.urandom(SEALED_OVERHEAD + i)) for i in range(entry_count)),
    )


def _reseal(body: bytes) -> bytes:
    return body + hashlib.sha256(body).digest()


def test_build_then_parse_preserves_image() -> None:
    image = _image()
    assert parse_container(build_container(image)) == image


def test_empty_container_parses() -> None:
    image = _image(entry_count=0)
    data = build_container(image)
    assert data.startswith(MAGIC)
    assert parse_container(data).entries == ()


def test_checksum_mismatch_is_detected() -> None:
    data = bytearray(build_container(_image()))
    data[HEADER_LEN + 3] ^= 0x01
    with pytest.raises(CorruptContainer, match="checksum"):
        parse_container(bytes(data))


def test_bad_magic_is_detected() -> None:
    data = build_container(_image())
    with pytest.raises(CorruptContainer, match="magic"):
        parse_container(b"XXXX" + data[4:])


def test_unknown_version_is_detected() -> None:
    body = bytearray(build_container(_image())[:-DIGEST_LEN])
    body[4] = 99
    with pytest.raises(CorruptContainer, match="version"):
        parse_container(_reseal(bytes(body)))


def test_nonzero_flags_are_rejected() -> None:
    body = bytearray(build_container(_image())[:-DIGEST_LEN])
    body[5] = 1
    with pytest.raises(CorruptContainer):
        parse_container(_reseal(bytes(body)))


def test_invalid_kdf_params_are_corruption() -> None:
    image = _image(entry_count=0)
    body = build_container(image)[:-DIGEST_LEN]
    fields = list(_HEADER_STRUCT.unpack_from(body, 0))
    fields[4] = 1  # memory cost KiB
    tampered = _HEADER_STRUCT.pack(*fields) + body[HEADER_LEN:]
    with pytest.raises(CorruptContainer):
        parse_container(_reseal(tampered))


def test_entry_count_overstated_is_detected() -> None:
    body = build_container(_image(entry_count=1))[:-DIGEST_LEN]
    fields = list(_HEADER_STRUCT.unpack_from(body, 0))
    fields[-1] = 5
    tampered = _HEADER_STRUCT.pack(*fields) + body[HEADER_LEN:]
    with pytest.raises(CorruptContainer, match="truncated"):
        parse_container(_reseal(tampered))


def test_trailing_bytes_are_detected() -> None:
    body = build_container(_image())[:-DIGEST_LEN]
    with pytest.raises(CorruptContainer, match="trailing"):
        parse_container(_reseal(body + b"junk"))


def test_duplicate_entry_ids_are_rejected_on_build() -> None:
    entry_id = new_entry_id()
    image = replace(_image(0), entries=((entry_id, b"\x00" * 40), (entry_id, b"\x01" * 40)))
    with pytest.raises(CorruptContainer):
        build_container(image)


def test_truncated_container_is_detected() -> None:
    data = build_container(_image())
    with pytest.raises(CorruptContainer):
        parse_container(data[: HEADER_LEN + 4])


@given(data=st.binary(max_size=256))
def test_random_bytes_never_parse(data: bytes) -> None:
    with pytest.raises(CorruptContainer):
        parse_container(data)


@given(position=st.integers(min_value=0, max_value=HEADER_LEN + SEALED_OVERHEAD + 9))
def test_any_flipped_byte_is_detected(position: int) -> None:
    data = bytearray(build_container(_image(entry_count=0)))
    data[position] ^= 0xFF
    with pytest.raises(CorruptContainer):
        parse_container(bytes(data))
