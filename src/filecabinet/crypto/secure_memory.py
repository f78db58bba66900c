"""Process-memory holder for the derived vault key.

The key lives in a bytearray that is mlock'ed where the platform allows it,
so it is not swapped to disk, and is zeroed when the vault is locked.

This is best effort. Argon2 hands back the derived key as immutable ``bytes``
and every cipher call needs a ``bytes`` view of the key, so short-lived
copies exist on the heap until the garbage collector reclaims them. Only the
:class:`KeyMaterial` buffer is guaranteed to be zeroed.
"""
from __future__ import annotations

import ctypes
import ctypes.util
import logging
import platform

from filecabinet.errors import VaultLocked

logger = logging.getLogger(__name__)

_MLOCK_AVAILABLE = False
_libc: ctypes.CDLL | None = None

if platform.system() != "Windows":
    try:
        _libc_name = ctypes.util.find_library("c")
        if _libc_name:
            _libc = ctypes.CDLL(_libc_name, use_errno=True)
            _MLOCK_AVAILABLE = True
    except OSError:
        pass


def mlock_available() -> bool:
    """Return True if mlock is available on this platform."""
    return _MLOCK_AVAILABLE


def secure_zeroize(data: bytearray | None) -> None:
    """Zero a bytearray in place."""
    if data is None:
        return
    for i in range(len(data)):
        data[i] = 0


class KeyMaterial:
    """Derived key bytes that can be destroyed exactly once.

    ``KeyMaterial(key)`` copies ``key`` into a private buffer. Reading the
    key after :meth:`destroy` raises :class:`VaultLocked`.
    """

    def __init__(self, key: bytes) -> None:
        self._buffer: bytearray | None = bytearray(key)
        self._size = len(key)
        self._locked = False

        if _MLOCK_AVAILABLE and _libc is not None and self._size:
            try:
                addr = (ctypes.c_char * self._size).from_buffer(self._buffer)
                if _libc.mlock(ctypes.addressof(addr), self._size) == 0:
                    self._locked = True
                else:
                    logger.debug("mlock failed (errno=%d), proceeding without lock", ctypes.get_errno())
            except (AttributeError, OSError, ValueError):
                logger.debug("mlock unavailable, proceeding without lock")

    @property
    def destroyed(self) -> bool:
        return self._buffer is None

    def __bytes__(self) -> bytes:
        if self._buffer is None:
            raise VaultLocked("Key material has been destroyed")
        return bytes(self._buffer)

    def __len__(self) -> int:
        return self._size

    def destroy(self) -> None:
        """Zero the key and release the memory lock. Safe to call twice."""
        buffer = self._buffer
        if buffer is None:
            return
        secure_zeroize(buffer)
        if self._locked and _libc is not None:
            try:
                addr = (ctypes.c_char * self._size).from_buffer(buffer)
                _libc.munlock(ctypes.addressof(addr), self._size)
            except (AttributeError, OSError, ValueError):
                logger.debug("munlock failed")
            self._locked = False
        self._buffer = None

    def __repr__(self) -> str:
        state = "destroyed" if self._buffer is None else "live"
        return f"<KeyMaterial {state}>"
