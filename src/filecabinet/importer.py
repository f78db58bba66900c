"""Bulk import of scanned documents from a directory."""
from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Iterable

from filecabinet.entry import MAX_TAG_LEN
from filecabinet.errors import IoFailure
from filecabinet.naming import DocumentName, extension
from filecabinet.vault import NewEntry, ProgressCallback, VaultHandle

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ("pdf", "jpg", "png")
_RE_TAG_UNSAFE = re.compile(r"[\s,\x00]+")


def scan_directory(directory: Path, extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> list[Path]:
    """Regular files in ``directory`` with one of ``extensions``, sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    wanted = {ext.lower().lstrip(".") for ext in extensions}
    try:
        candidates = list(directory.iterdir())
    except OSError as exc:
        raise IoFailure(f"Unable to list {directory}: {exc}") from exc
    return sorted(
        (path for path in candidates if path.is_file() and extension(path) in wanted),
        key=lambda path: path.name,
    )


def document_tags(path: Path) -> list[str]:
    """Tags derived from a document's file name."""
    tags = []
    ext = extension(path)
    if ext:
        tags.append(ext)
    doc = DocumentName.parse(path)
    if doc.is_parseable:
        institution = _RE_TAG_UNSAFE.sub("-", doc.institution.lower()).strip("-")
        if institution and len(institution.encode("utf-8")) <= MAX_TAG_LEN:
            tags.append(institution)
        tags.append(doc.date[:4])
    return tags


def import_directory(
    handle: VaultHandle,
    directory: Path,
    *,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
) -> list[str]:
    """Add every matching document in ``directory`` in one commit.

    Returns the new entry ids in file-name order.
    """
    paths = scan_directory(directory, extensions)
    items = []
    for path in paths:
        try:
            payload = path.read_bytes()
        except OSError as exc:
            raise IoFailure(f"Unable to read {path}: {exc}") from exc
        items.append(NewEntry(name=path.name, tags=tuple(document_tags(path)), payload=payload))

    ids = handle.bulk_add(items, progress=progress, cancel=cancel)
    logger.info("Imported %d documents from %s", len(ids), directory)
    return ids
