"""
Reconcile error taxonomy.

Transient store failures surface as kubernetes ``ApiException`` and are not
wrapped. The classes here cover outcomes the reconcilers decide on themselves.
"""


class ReconcileError(Exception):
    """A reconcile pass ended without converging and must be retried."""


class InvalidSpecError(ReconcileError):
    """The custom resource spec cannot be acted on until the user edits it."""


class DeletionBlockedError(ReconcileError):
    """Deletion is refused by a pre-deletion invariant (e.g. bound applications)."""
