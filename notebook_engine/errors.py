"""
Domain exceptions for the notebook engine.

Notes
-----
Engine code avoids raising generic exceptions. Expected failure modes map to a
domain exception with a clear meaning.

Two families exist:

- ``FatalEngineError`` subclasses signal a broken environment or a programmer
  error (corrupt store, malformed query, inconsistent change stream). Callers
  are not expected to recover from them.
- Everything else is recoverable and may be reported to the user or retried.
"""

from __future__ import annotations


class NotebookEngineError(RuntimeError):
    """Base exception for all notebook engine failures."""


class FatalEngineError(NotebookEngineError):
    """Base for failures that must terminate the owning process."""


class StoreInitError(FatalEngineError):
    """Raised when the backing store cannot be opened or its schema created."""


class QueryExecutionError(FatalEngineError):
    """Raised when a query descriptor cannot be executed against the store."""


class ProtocolViolationError(FatalEngineError):
    """Raised when a change-notification sequence breaks the batch protocol."""


class CommitError(NotebookEngineError):
    """Raised when a context cannot commit its pending changes."""


class StoreNotOpenError(NotebookEngineError):
    """Raised when a context is requested before the store finished opening."""


class GatewayError(NotebookEngineError):
    """Raised when the persistence gateway is used out of order."""


class AffinityError(NotebookEngineError):
    """Raised when a context is touched outside its execution affinity."""


class UnknownEntityError(NotebookEngineError):
    """Raised when an object identifier does not resolve to a stored entity."""


class AdapterStateError(NotebookEngineError):
    """Raised when an adapter is used in a state that does not allow the call."""


class PayloadError(NotebookEngineError):
    """Raised when a note payload cannot be encoded, decoded or validated."""
