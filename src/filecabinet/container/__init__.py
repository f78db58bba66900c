"""On-disk container format and atomic storage.

The objects listed in ``__all__`` form the supported public surface of
:mod:`filecabinet.container`. Everything else is internal.
"""
from __future__ import annotations

from filecabinet.container.format import (
    CURRENT_VERSION,
    HEADER_LEN,
    MAGIC,
    ContainerImage,
    build_container,
    parse_container,
)
from filecabinet.container.store import (
    container_exists,
    read_container,
    write_atomic,
    write_container,
)

__all__ = [
    "CURRENT_VERSION",
    "ContainerImage",
    "HEADER_LEN",
    "MAGIC",
    "build_container",
    "container_exists",
    "parse_container",
    "read_container",
    "write_atomic",
    "write_container",
]
