"""Vault engine: create/unlock a container and mutate it through a handle.

Every mutation follows the same discipline: build the new index and the new
set of sealed entries off to the side, write the whole container atomically,
and only then swap the new state into the handle. A failed write leaves both
the file on disk and the in-memory index exactly as they were.
"""
from __future__ import annotations

import logging
import threading
import time
import weakref
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Sequence, TypeVar, Union

from filecabinet.container.format import ContainerImage
from filecabinet.container.store import container_exists, read_container, write_container
from filecabinet.crypto.aead import open_sealed, seal
from filecabinet.crypto.kdf import Argon2Params, derive_key, new_salt, recommended_params, validate_params
from filecabinet.crypto.secure_memory import KeyMaterial
from filecabinet.entry import (
    Entry,
    IndexRecord,
    decode,
    encode,
    entry_id_to_bytes,
    make_entry,
    normalize_tags,
    validate_name,
)
from filecabinet.errors import (
    AlreadyExists,
    BatchCancelled,
    CorruptContainer,
    NotFoundError,
    ValidationError,
    VaultLocked,
)
from filecabinet.index import INDEX_AAD, Index
from filecabinet.search import EntryRef
from filecabinet.search import search as search_index

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
ENTRY_AAD_PREFIX = b"filecabinet/entry/"
RECORD_ORDERS = ("name", "created", "modified")

_T = TypeVar("_T")
_R = TypeVar("_R")


class VaultState(str, Enum):
    CLOSED = "closed"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class NewEntry:
    name: str
    tags: tuple[str, ...] = ()
    payload: bytes = b""


NewEntryLike = Union[NewEntry, tuple]


def entry_aad(entry_id: str) -> bytes:
    return ENTRY_AAD_PREFIX + entry_id_to_bytes(entry_id)


# One unlocked handle per container path within this process.
_registry_lock = threading.Lock()
_open_handles: dict[Path, weakref.ReferenceType[VaultHandle]] = {}


def _registry_key(path: Path) -> Path:
    return path.resolve()


def _register(handle: VaultHandle) -> None:
    key = _registry_key(handle.path)
    with _registry_lock:
        previous_ref = _open_handles.get(key)
        _open_handles[key] = weakref.ref(handle)
    previous = previous_ref() if previous_ref is not None else None
    if previous is not None and previous is not handle and previous.is_unlocked:
        logger.info("Locking previous handle for %s", handle.path)
        previous.lock()


def _unregister(handle: VaultHandle) -> None:
    key = _registry_key(handle.path)
    with _registry_lock:
        current = _open_handles.get(key)
        if current is not None and current() is handle:
            del _open_handles[key]


def _coerce_new_entry(item: NewEntryLike) -> NewEntry:
    if isinstance(item, NewEntry):
        return item
    if isinstance(item, tuple) and len(item) == 3:
        name, tags, payload = item
        return NewEntry(name=name, tags=tags, payload=payload)
    raise ValidationError(f"Expected NewEntry or (name, tags, payload), got {item!r}")


class VaultHandle:
    """An unlocked vault. Obtain one from :func:`create` or :func:`unlock`.

    The handle owns the derived key, the decrypted index and the sealed
    entry blobs of the current container version. After :meth:`lock` every
    data operation raises :class:`VaultLocked`.
    """

    def __init__(
        self,
        path: Path,
        key: KeyMaterial,
        salt: bytes,
        params: Argon2Params,
        index: Index,
        sealed: dict[str, bytes],
        *,
        max_workers: int | None = None,
    ) -> None:
        if max_workers is not None and max_workers < 1:
            raise ValidationError("max_workers must be at least 1")
        self._path = Path(path)
        self._key: KeyMaterial | None = key
        self._salt = salt
        self._params = params
        self._index: Index | None = index
        self._sealed = sealed
        self._max_workers = max_workers
        self._write_lock = threading.RLock()

    def __repr__(self) -> str:
        return f"<VaultHandle {self._path} {self.state.value}>"

    def __enter__(self) -> VaultHandle:
        return self

    def __exit__(self, *args: object) -> None:
        self.lock()

    def __len__(self) -> int:
        return len(self._require_index())

    @property
    def path(self) -> Path:
        return self._path

    @property
    def kdf_params(self) -> Argon2Params:
        return self._params

    @property
    def state(self) -> VaultState:
        return VaultState.UNLOCKED if self._key is not None else VaultState.CLOSED

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None

    @property
    def index(self) -> Index:
        """The live index. Treat as read-only; mutate through the handle."""
        return self._require_index()

    def _require_index(self) -> Index:
        index = self._index
        if index is None:
            raise VaultLocked("Vault is locked")
        return index

    def _key_bytes(self) -> bytes:
        key = self._key
        if key is None:
            raise VaultLocked("Vault is locked")
        return bytes(key)

    def _seal_entry(self, key: bytes, entry: Entry) -> bytes:
        return seal(key, encode(entry), entry_aad(entry.entry_id))

    def _open_entry(self, key: bytes, entry_id: str, blob: bytes) -> Entry:
        entry = decode(open_sealed(key, blob, entry_aad(entry_id)))
        if entry.entry_id != entry_id:
            raise CorruptContainer(f"Entry {entry_id} holds data for {entry.entry_id}")
        return entry

    def _commit(self, index: Index, sealed: dict[str, bytes], *, exclusive: bool = False) -> None:
        """Write ``index`` + ``sealed`` as the next container version, then adopt them."""
        with self._write_lock:
            key = self._key_bytes()
            image = ContainerImage(
                salt=self._salt,
                kdf_params=self._params,
                sealed_index=seal(key, index.serialize(), INDEX_AAD),
                entries=tuple((record.entry_id, sealed[record.entry_id]) for record in index.iter_by_name()),
            )
            write_container(self._path, image, exclusive=exclusive)
            self._index = index
            self._sealed = sealed

    def _run_parallel(
        self,
        func: Callable[[_T], _R],
        items: Sequence[_T],
        progress: ProgressCallback | None,
        cancel: threading.Event | None,
    ) -> list[_R]:
        total = len(items)
        results: list[_R | None] = [None] * total
        if not total:
            return []

        def _guarded(item: _T) -> _R:
            if cancel is not None and cancel.is_set():
                raise BatchCancelled("Batch cancelled")
            return func(item)

        completed = 0
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {pool.submit(_guarded, item): pos for pos, item in enumerate(items)}
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
                    completed += 1
                    if cancel is not None and cancel.is_set():
                        raise BatchCancelled("Batch cancelled")
                    if progress is not None:
                        progress(completed, total)
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return results  # type: ignore[return-value]

    def add(self, name: str, tags: Iterable[str] | None = (), payload: bytes = b"") -> str:
        """Store a new entry and return its identifier."""
        entry = make_entry(name, tags, payload)
        blob = self._seal_entry(self._key_bytes(), entry)
        with self._write_lock:
            index = self._require_index().copy()
            index.insert(entry.record())
            sealed = {**self._sealed, entry.entry_id: blob}
            self._commit(index, sealed)
        logger.info("Added entry %s (%d bytes)", entry.entry_id, entry.size)
        return entry.entry_id

    def bulk_add(
        self,
        items: Iterable[NewEntryLike],
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> list[str]:
        """Add many entries in a single commit.

        All items are validated before any work starts; one invalid item
        rejects the whole batch. Sealing runs on a thread pool and
        ``progress(completed, total)`` is called on the calling thread after
        each item. Cancelling via ``cancel`` raises :class:`BatchCancelled`
        and nothing is written.
        """
        requested = [_coerce_new_entry(item) for item in items]
        entries = [make_entry(item.name, item.tags, item.payload) for item in requested]
        key = self._key_bytes()

        blobs = self._run_parallel(lambda entry: self._seal_entry(key, entry), entries, progress, cancel)
        if cancel is not None and cancel.is_set():
            raise BatchCancelled("Batch cancelled")
        if not entries:
            return []

        with self._write_lock:
            index = self._require_index().copy()
            sealed = dict(self._sealed)
            for entry, blob in zip(entries, blobs):
                index.insert(entry.record())
                sealed[entry.entry_id] = blob
            self._commit(index, sealed)
        logger.info("Committed batch of %d entries", len(entries))
        return [entry.entry_id for entry in entries]

    def remove(self, entry_id: str) -> None:
        with self._write_lock:
            index = self._require_index().copy()
            index.remove(entry_id)
            sealed = dict(self._sealed)
            del sealed[entry_id]
            self._commit(index, sealed)
        logger.info("Removed entry %s", entry_id)

    def _rewrite_entry(self, entry_id: str, change: Callable[[Entry], Entry]) -> IndexRecord:
        with self._write_lock:
            key = self._key_bytes()
            current = self.get_entry(entry_id)
            updated = change(current)
            blob = self._seal_entry(key, updated)
            index = self._require_index().copy()
            record = index.update(entry_id, lambda _old: updated.record())
            sealed = {**self._sealed, entry_id: blob}
            self._commit(index, sealed)
        return record

    def rename(self, entry_id: str, new_name: str) -> IndexRecord:
        """Change an entry's display name. The identifier stays the same."""
        new_name = validate_name(new_name)
        record = self._rewrite_entry(
            entry_id, lambda entry: replace(entry, name=new_name, modified_ns=time.time_ns())
        )
        logger.info("Renamed entry %s", entry_id)
        return record

    def retag(self, entry_id: str, tags: Iterable[str] | None) -> IndexRecord:
        new_tags = normalize_tags(tags)
        record = self._rewrite_entry(
            entry_id, lambda entry: replace(entry, tags=new_tags, modified_ns=time.time_ns())
        )
        logger.info("Retagged entry %s", entry_id)
        return record

    def record(self, entry_id: str) -> IndexRecord:
        return self._require_index().get(entry_id)

    def records(self, order: str = "name") -> list[IndexRecord]:
        index = self._require_index()
        if order == "name":
            return list(index.iter_by_name())
        if order == "created":
            return list(index.iter_by_created())
        if order == "modified":
            return list(index.iter_by_modified())
        raise ValidationError(f"order must be one of {', '.join(RECORD_ORDERS)}")

    def get_entry(self, entry_id: str) -> Entry:
        key = self._key_bytes()
        self._require_index().get(entry_id)
        return self._open_entry(key, entry_id, self._sealed[entry_id])

    def export(self, entry_id: str) -> bytes:
        """Decrypt and return one entry's payload."""
        return self.get_entry(entry_id).payload

    def export_many(
        self,
        entry_ids: Iterable[str],
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, bytes]:
        """Decrypt several payloads in parallel, keyed by entry id."""
        key = self._key_bytes()
        index = self._require_index()
        wanted = list(dict.fromkeys(entry_ids))
        for entry_id in wanted:
            index.get(entry_id)
        sealed = self._sealed

        payloads = self._run_parallel(
            lambda entry_id: self._open_entry(key, entry_id, sealed[entry_id]).payload,
            wanted,
            progress,
            cancel,
        )
        return dict(zip(wanted, payloads))

    def verify(self, *, progress: ProgressCallback | None = None) -> int:
        """Open every entry once; return the number verified."""
        key = self._key_bytes()
        records = list(self._require_index().iter_by_name())
        sealed = self._sealed

        def _check(record: IndexRecord) -> None:
            entry = self._open_entry(key, record.entry_id, sealed[record.entry_id])
            if entry.record() != record:
                raise CorruptContainer(f"Index record for {record.entry_id} is out of date")

        self._run_parallel(_check, records, progress, None)
        return len(records)

    def search(
        self,
        pattern: str | None = None,
        *,
        regex: bool = False,
        tags: Iterable[str] | None = None,
        match_any: bool = False,
        predicate: Callable[[IndexRecord], bool] | None = None,
    ) -> list[EntryRef]:
        return search_index(
            self._require_index(),
            pattern,
            regex=regex,
            tags=tags,
            match_any=match_any,
            predicate=predicate,
        )

    def lock(self) -> None:
        """Destroy the key and drop all decrypted state. Safe to call twice."""
        with self._write_lock:
            key = self._key
            self._key = None
            self._index = None
            self._sealed = {}
        if key is not None:
            key.destroy()
            _unregister(self)
            logger.info("Locked vault %s", self._path)


def _check_passphrase(passphrase: str) -> None:
    if not isinstance(passphrase, str) or not passphrase:
        raise ValidationError("Passphrase must be a non-empty string")
    try:
        passphrase.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError("Passphrase is not valid Unicode text") from exc


def create(
    path: Path | str,
    passphrase: str,
    *,
    params: Argon2Params | None = None,
    max_workers: int | None = None,
) -> VaultHandle:
    """Create an empty vault at ``path`` and return it unlocked."""

    path = Path(path)
    _check_passphrase(passphrase)
    if container_exists(path):
        raise AlreadyExists(f"A vault already exists at {path}")
    params = validate_params(params or recommended_params())

    salt = new_salt()
    key = KeyMaterial(derive_key(passphrase, salt, params))
    index = Index()
    try:
        handle = VaultHandle(path, key, salt, params, index, {}, max_workers=max_workers)
        handle._commit(index, {}, exclusive=True)
    except BaseException:
        key.destroy()
        raise
    _register(handle)
    logger.info("Created vault %s", path)
    return handle


def unlock(path: Path | str, passphrase: str, *, max_workers: int | None = None) -> VaultHandle:
    """Open an existing vault with ``passphrase``."""

    path = Path(path)
    _check_passphrase(passphrase)
    image = read_container(path)
    key = KeyMaterial(derive_key(passphrase, image.salt, image.kdf_params))
    try:
        index = Index.rebuild(image, bytes(key))
        handle = VaultHandle(
            path,
            key,
            image.salt,
            image.kdf_params,
            index,
            image.entry_map(),
            max_workers=max_workers,
        )
    except BaseException:
        key.destroy()
        raise
    _register(handle)
    logger.info("Unlocked vault %s (%d entries)", path, len(index))
    return handle
