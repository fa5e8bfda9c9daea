"""Application-level exception types.

Convention:
- Per-row and per-record failures (``SchemaError``, ``ColumnTypeError``,
  ``MalformedRecordError``) are contained by the caller: the affected row,
  cell or identity is dropped and logged, the rest of the exchange proceeds.
- Structural failures (``MalformedRequestError``, ``UnsupportedMessageType``,
  ``PermissionDenied``, ``SourceUnavailableError``) abort a single
  transaction. The HTTP transport maps them to 4xx/5xx responses in
  ``contactsync/main.py``.
- ``InternalServerError``: for errors whose details must never reach
  clients. The global handler logs the full message and returns a generic
  500.
"""

from __future__ import annotations


class ContactSyncError(Exception):
    """Base class for all contact synchronization errors."""


class SchemaError(ContactSyncError):
    """A required column is absent from a row."""


class ColumnTypeError(ContactSyncError):
    """A cell carries a native type tag that is not recognized."""


class MalformedRequestError(ContactSyncError):
    """An inbound packet is missing a required field or carries an invalid one."""


class MalformedRecordError(ContactSyncError):
    """A serialized record does not end with exactly one end marker."""


class UnsupportedMessageType(ContactSyncError):
    """No handler is registered for an inbound packet type."""


class PermissionDenied(ContactSyncError):
    """Contacts access was not granted; no query may be attempted."""


class SourceUnavailableError(ContactSyncError):
    """The tabular source cannot be read (missing table, closed connection)."""


class ReconciliationStateError(ContactSyncError):
    """A requester session was driven through an illegal state transition."""


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``contactsync/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """
