"""Exceptions raised by document store backends and repositories."""


class RepositoryError(Exception):
    """Base exception for repository errors.

    Raised for any failure of the underlying store (connectivity, quota,
    permission). Callers see the driver error as ``__cause__``.
    """
    pass


class NotFoundError(RepositoryError):
    """Document not found in the store."""
    pass
