"""
Abstract interface for code-system sources.

Every source can enumerate its codes; sources that understand property
filters override filter().
"""

from abc import ABC, abstractmethod
from typing import Set

from ..exceptions import FilterOperationUnsupported
from ..models import Code, ValueSetFilter


class CodeSystemSource(ABC):
    """A resolvable code system."""

    def __init__(self, system: str):
        self.system = system

    @property
    @abstractmethod
    def kind(self) -> str:
        """Short label for logging: static, json, vocabulary."""
        ...

    @abstractmethod
    def list_all(self) -> Set[Code]:
        """Every code in the system."""
        ...

    def filter(self, spec: ValueSetFilter) -> Set[Code]:
        """Codes matching one {property, op, value} filter."""
        raise FilterOperationUnsupported(spec.op, system=self.system)

    def check_filter(self, spec: ValueSetFilter) -> None:
        """
        Reject incomplete `=`, `in` and `is-a` filters.

        `=` and `in` need a property and a value; `is-a` needs a root code.
        """
        if spec.value is None:
            raise FilterOperationUnsupported(spec.op, system=self.system)
        if spec.op in ("=", "in") and not spec.property:
            raise FilterOperationUnsupported(spec.op, system=self.system)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(system={self.system!r})"
