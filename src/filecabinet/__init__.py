"""filecabinet: a password-protected store of encrypted documents."""

from importlib.metadata import PackageNotFoundError, version

from filecabinet.errors import (
    AlreadyExists,
    AuthFailure,
    BatchCancelled,
    CorruptContainer,
    FileCabinetError,
    IoFailure,
    NotFoundError,
    ValidationError,
    VaultLocked,
)
from filecabinet.vault import NewEntry, VaultHandle, VaultState, create, unlock

__all__ = [
    "AlreadyExists",
    "AuthFailure",
    "BatchCancelled",
    "CorruptContainer",
    "FileCabinetError",
    "IoFailure",
    "NewEntry",
    "NotFoundError",
    "ValidationError",
    "VaultHandle",
    "VaultLocked",
    "VaultState",
    "__version__",
    "create",
    "unlock",
]

try:
    __version__ = version("filecabinet")
except PackageNotFoundError:  # pragma: no cover - happens only from source checkout
    __version__ = "0.0.0-dev"
