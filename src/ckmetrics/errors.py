"""Error taxonomy shared by the model builder, resolver, engines and evaluator."""
from __future__ import annotations


class CKMetricsError(Exception):
    kind = "CKMetricsError"

    def __init__(self, message: str, *, class_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.class_name = class_name

    def as_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class CycleError(CKMetricsError):
    """Inheritance cycle; fatal for DIT/NOC of the affected class only."""

    kind = "CycleError"

    def __init__(self, message: str, *, class_name: str | None = None, cycle: tuple[str, ...] = ()) -> None:
        super().__init__(message, class_name=class_name)
        self.cycle = cycle


class NotFoundError(CKMetricsError, LookupError):
    kind = "NotFoundError"


class ConfigError(CKMetricsError, ValueError):
    """Invalid thresholds or options. Aborts the run before any work starts."""

    kind = "ConfigError"


class ModelError(CKMetricsError, ValueError):
    """Malformed raw entities (or a malformed member of one class)."""

    kind = "ModelError"


class AnalysisCancelled(CKMetricsError):
    kind = "AnalysisCancelled"
