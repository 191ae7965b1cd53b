"""Alert evaluation engine."""

from ratealerts.engine.alert_engine import AlertEngine
from ratealerts.engine.conditions import is_satisfied

__all__ = ["AlertEngine", "is_satisfied"]
