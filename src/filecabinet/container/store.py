"""Durable storage of container files.

Writes go to a temporary sibling file which is fsynced and then renamed over
the target with :func:`os.replace`, so a crash leaves either the old or the
new container on disk and never a mix of both. The first write of a new vault
links the staged file into place instead, which fails if the name is taken.
"""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from filecabinet.container.format import ContainerImage, build_container, parse_container
from filecabinet.errors import AlreadyExists, IoFailure, NotFoundError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def container_exists(path: Path) -> bool:
    return Path(path).exists()


def _fsync_directory(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_atomic(path: Path, data: bytes, *, exclusive: bool = False) -> None:
    """Atomically replace ``path`` with ``data``.

    With ``exclusive`` the staged file is hard-linked into place instead, and
    :class:`AlreadyExists` is raised if anything is already at ``path``.
    """

    path = Path(path)
    directory = path.parent
    temp_path: Path | None = None
    try:
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=TEMP_SUFFIX, dir=directory
        )
        temp_path = Path(temp_name)
        with os.fdopen(fd, "wb") as temp_file:
            temp_file.write(data)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        if exclusive:
            # the staged name is unlinked in the finally block
            os.link(temp_path, path)
        else:
            os.replace(temp_path, path)
            temp_path = None
    except FileExistsError as exc:
        raise AlreadyExists(f"A vault already exists at {path}") from exc
    except OSError as exc:
        raise IoFailure(f"Unable to write container {path}: {exc}") from exc
    finally:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)

    try:
        _fsync_directory(directory)
    except OSError as exc:
        # rename is already visible, only its durability is in doubt
        logger.warning("Unable to fsync directory %s: %s", directory, exc)
    logger.debug("Wrote %d bytes to %s", len(data), path)


def read_bytes(path: Path) -> bytes:
    path = Path(path)
    try:
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise NotFoundError(f"No vault at {path}") from exc
    except OSError as exc:
        raise IoFailure(f"Unable to read container {path}: {exc}") from exc


def write_container(path: Path, image: ContainerImage, *, exclusive: bool = False) -> None:
    write_atomic(path, build_container(image), exclusive=exclusive)


def read_container(path: Path) -> ContainerImage:
    data = read_bytes(path)
    logger.debug("Read %d bytes from %s", len(data), path)
    return parse_container(data)
