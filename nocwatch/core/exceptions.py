"""Exception hierarchy for the monitor."""

from __future__ import annotations


class NocwatchError(Exception):
    """Base exception for all monitor errors."""


class StoreError(NocwatchError):
    """A reading store query or connection failed."""


class UnknownTableError(NocwatchError):
    """A table name outside the allow-list was requested."""

    def __init__(self, table: str) -> None:
        super().__init__(f"Unknown table: {table!r}")
        self.table = table


class TransportError(NocwatchError):
    """The push transport failed at the protocol level (not a plain timeout)."""


class HandshakeError(NocwatchError):
    """Opening a push session failed before the first frame arrived."""


class LinkLostError(NocwatchError):
    """An established push session ended unexpectedly."""
