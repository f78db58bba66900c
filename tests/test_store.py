"""Atomic replacement of container files."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from filecabinet.container import store
from filecabinet.container.format import ContainerImage
from filecabinet.crypto.aead import KEY_LEN, seal
from filecabinet.crypto.kdf import Argon2Params, new_salt
from filecabinet.entry import new_entry_id
from filecabinet.errors import AlreadyExists, CorruptContainer, IoFailure, NotFoundError
from filecabinet.index import INDEX_AAD
from filecabinet.vault import entry_aad


class _Crash(BaseException):
    """Stands in for the process dying mid-write."""


def _leftovers(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir() if p.name.endswith(store.TEMP_SUFFIX))


def test_write_atomic_creates_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "v.cab"
    store.write_atomic(target, b"first")
    store.write_atomic(target, b"second")
    assert target.read_bytes() == b"second"
    assert _leftovers(tmp_path) == []


def test_failure_before_rename_leaves_original(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "v.cab"
    target.write_bytes(b"original")

    def _fail(src, dst):  # noqa: ANN001
        raise OSError("disk full")

    monkeypatch.setattr(store.os, "replace", _fail)
    with pytest.raises(IoFailure):
        store.write_atomic(target, b"replacement")

    assert target.read_bytes() == b"original"
    assert _leftovers(tmp_path) == []


def test_crash_after_staging_leaves_original(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "v.cab"
    target.write_bytes(b"original")

    def _crash(src, dst):  # noqa: ANN001
        raise _Crash()

    monkeypatch.setattr(store.os, "replace", _crash)
    with pytest.raises(_Crash):
        store.write_atomic(target, b"replacement")
    assert target.read_bytes() == b"original"


def _image(params: Argon2Params, *payloads: bytes) -> ContainerImage:
    key = os.urandom(KEY_LEN)
    entries = []
    for payload in payloads:
        entry_id = new_entry_id()
        entries.append((entry_id, seal(key, payload, entry_aad(entry_id))))
    return ContainerImage(
        salt=new_salt(),
        kdf_params=params,
        sealed_index=seal(key, b"index", INDEX_AAD),
        entries=tuple(entries),
    )


def test_crash_after_rename_leaves_new_container(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fast_params: Argon2Params
) -> None:
    target = tmp_path / "v.cab"
    store.write_container(target, _image(fast_params, b"old"))
    replacement = _image(fast_params, b"new", b"newer")
    real_replace = os.replace

    def _replace_then_crash(src, dst):  # noqa: ANN001
        real_replace(src, dst)
        raise _Crash()

    monkeypatch.setattr(store.os, "replace", _replace_then_crash)
    with pytest.raises(_Crash):
        store.write_container(target, replacement)
    assert store.read_container(target) == replacement


def test_exclusive_write_refuses_existing_file(tmp_path: Path, fast_params: Argon2Params) -> None:
    target = tmp_path / "v.cab"
    target.write_bytes(b"someone else's vault")
    with pytest.raises(AlreadyExists):
        store.write_container(target, _image(fast_params), exclusive=True)
    assert target.read_bytes() == b"someone else's vault"
    assert _leftovers(tmp_path) == []


def test_exclusive_write_creates_new_file(tmp_path: Path, fast_params: Argon2Params) -> None:
    target = tmp_path / "v.cab"
    image = _image(fast_params, b"payload")
    store.write_container(target, image, exclusive=True)
    assert store.read_container(target) == image
    assert _leftovers(tmp_path) == []


def test_directory_fsync_failure_is_not_fatal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(directory: Path) -> None:
        raise OSError("unsupported")

    monkeypatch.setattr(store, "_fsync_directory", _fail)
    target = tmp_path / "v.cab"
    store.write_atomic(target, b"data")
    assert target.read_bytes() == b"data"


def test_missing_directory_is_io_failure(tmp_path: Path) -> None:
    with pytest.raises(IoFailure):
        store.write_atomic(tmp_path / "missing" / "v.cab", b"data")


def test_read_missing_vault_is_not_found(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        store.read_container(tmp_path / "absent.cab")


def test_read_garbage_is_corrupt(tmp_path: Path) -> None:
    target = tmp_path / "v.cab"
    target.write_bytes(b"definitely not a vault")
    with pytest.raises(CorruptContainer):
        store.read_container(target)


def test_container_exists(tmp_path: Path) -> None:
    target = tmp_path / "v.cab"
    assert not store.container_exists(target)
    target.write_bytes(b"")
    assert store.container_exists(target)
