"""
Catalog failure types.

Storage-layer exceptions are re-raised as one of these so callers can tell
"nothing is open" apart from "the transaction was rolled back" and
"a constraint rejected the write".
"""


class CatalogError(RuntimeError):
    """Base class for every catalog failure."""


class CatalogNotOpenError(CatalogError):
    """A write was attempted before a root was opened."""

    def __init__(self, operation: str = "") -> None:
        detail = f" ({operation})" if operation else ""
        super().__init__(f"No catalog is open{detail}")
        self.operation = operation


class CatalogOpenError(CatalogError):
    """The catalog file beneath a root could not be created or opened."""

    def __init__(self, root: str, reason: str) -> None:
        super().__init__(f"Cannot open catalog at {root}: {reason}")
        self.root = root
        self.reason = reason


class TransactionFailedError(CatalogError):
    """An atomic operation failed and was rolled back."""


class ConstraintViolationError(CatalogError):
    """A uniqueness or foreign-key constraint rejected a write."""
