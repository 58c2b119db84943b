from __future__ import annotations


class VHealthError(Exception):
    pass


class KeyMaterialMissing(VHealthError):
    """Key pair absent or unusable at startup. Fatal: do not serve requests."""


class DecryptionError(VHealthError):
    """Wrong key pair, corrupted or truncated package."""


class StorageError(VHealthError):
    pass


class IndexWriteConflict(StorageError):
    """Master index count did not advance by exactly one (single-writer violated)."""


class InvalidStatusTransition(VHealthError):
    pass
