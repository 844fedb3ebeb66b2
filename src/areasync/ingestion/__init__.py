"""Ingestion layer.

This package turns store events written by other sessions into updates of
the local remote-session registry.  Only the reconciler is allowed to
mutate registry records.
"""

__all__: list[str] = []
