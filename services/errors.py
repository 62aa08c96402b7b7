"""Exception types raised by the order import services."""

from typing import Optional


class OrderImportError(Exception):
    """Base class for order import failures."""


class HeaderMappingError(OrderImportError):
    """
    The operator's header mapping cannot be used.

    Raised while the mapping is validated, before any row is processed or
    any store call is made.
    """


class DataStoreError(OrderImportError):
    """A bulk call against the data store failed."""

    def __init__(self, table: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{table}: {message}")
        self.table = table
        self.message = message
        self.cause = cause
