"""
Terminology errors raised by the expansion engine.

All of these are raised at the point of detection and are never retried.
"""

from typing import Any, Dict, Optional, Sequence


class TerminologyError(Exception):
    """Base terminology error with structured details."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class UnknownValueSet(TerminologyError):
    """A referenced value-set URL has no registered definition."""

    def __init__(self, url: Optional[str]):
        super().__init__(f"Unknown ValueSet: {url}", details={"url": url})
        self.url = url


class UnknownCodeSystem(TerminologyError):
    """A system URL resolves to no known source, or to an empty CodeSystem."""

    def __init__(self, system: Optional[str], reason: Optional[str] = None):
        message = f"Unknown CodeSystem: {system}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, details={"system": system, "reason": reason})
        self.system = system


class FilterOperationUnsupported(TerminologyError):
    """A filter uses an operator the engine cannot evaluate."""

    def __init__(self, op: Optional[str], system: Optional[str] = None):
        super().__init__(
            f"Cannot handle filter operation: {op}",
            details={"op": op, "system": system},
        )
        self.op = op


class ImportCycleDetected(TerminologyError):
    """Resolving value-set imports revisits a URL already being resolved."""

    def __init__(self, path: Sequence[str]):
        self.path = list(path)
        super().__init__(
            "ValueSet import cycle: " + " -> ".join(self.path),
            details={"path": self.path},
        )
