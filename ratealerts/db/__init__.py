"""Alert persistence."""

from ratealerts.db.store import AlertStore

__all__ = ["AlertStore"]
