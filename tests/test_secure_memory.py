"""Tests for key material handling."""
from __future__ import annotations

import pytest

from filecabinet.crypto.secure_memory import KeyMaterial, mlock_available, secure_zeroize
from filecabinet.errors import VaultLocked


def test_key_material_exposes_bytes_while_live() -> None:
    key = KeyMaterial(b"\xaa" * 32)
    assert bytes(key) == b"\xaa" * 32
    assert len(key) == 32
    assert not key.destroyed


def test_destroy_zeroes_buffer() -> None:
    key = KeyMaterial(b"\xff" * 32)
    buffer = key._buffer
    key.destroy()
    assert buffer == bytearray(32)
    assert key.destroyed


def test_destroy_is_idempotent_and_blocks_reads() -> None:
    key = KeyMaterial(b"secret_material!")
    key.destroy()
    key.destroy()
    with pytest.raises(VaultLocked):
        bytes(key)


def test_repr_never_shows_key() -> None:
    key = KeyMaterial(b"topsecretkey" * 2)
    assert "topsecret" not in repr(key)


def test_secure_zeroize_basic() -> None:
    buf = bytearray(b"sensitive data here!")
    secure_zeroize(buf)
    assert buf == bytearray(len(buf))


def test_secure_zeroize_none() -> None:
    secure_zeroize(None)


def test_mlock_available_returns_bool() -> None:
    assert isinstance(mlock_available(), bool)


def test_key_material_keeps_its_own_copy() -> None:
    source = bytearray(b"\x11" * 32)
    key = KeyMaterial(bytes(source))
    secure_zeroize(source)
    assert bytes(key) == b"\x11" * 32
    key.destroy()
