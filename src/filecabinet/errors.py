"""Custom exceptions for filecabinet."""


class FileCabinetError(Exception):
    """Base exception for filecabinet."""


class AuthFailure(FileCabinetError):
    """Wrong passphrase, or sealed data was tampered with.

    The two causes are deliberately not distinguished.
    """


class CorruptContainer(FileCabinetError):
    """Container does not match the expected format."""


class NotFoundError(FileCabinetError):
    """Vault file or entry identifier does not exist."""


class AlreadyExists(FileCabinetError):
    """A vault already exists at the requested path."""


class ValidationError(FileCabinetError):
    """Entry metadata or parameters are invalid."""


class IoFailure(FileCabinetError):
    """Underlying storage read or write failed."""


class VaultLocked(FileCabinetError):
    """Operation requires an unlocked vault."""


class BatchCancelled(FileCabinetError):
    """A bulk operation was cancelled before it committed."""
