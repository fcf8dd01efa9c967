"""
Data model for value-set expansion.

- Code / CodeSet: the atomic (system, code) element and sets of it
- pydantic models for the FHIR ValueSet document shape (compose/expansion)
- ValueSetDefinition: a loaded ValueSet with its lazily memoized CodeSet
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

TOO_COSTLY_URL = "http://hl7.org/fhir/StructureDefinition/valueset-toocostly"
UNCLOSED_URL = "http://hl7.org/fhir/StructureDefinition/valueset-unclosed"

ENGINE_FILTER_OPS = ("=", "in", "is-a")


@dataclass(frozen=True, order=True)
class Code:
    """A single coded value; equal by (system, code)."""
    system: str
    code: str

    @property
    def key(self) -> str:
        """Canonical string key used by membership indexes."""
        return f"{self.system}|{self.code}"

    def to_dict(self) -> Dict[str, str]:
        return {"system": self.system, "code": self.code}


CodeSet = Set[Code]


def code_set(system: str, codes: Iterable[str]) -> Set[Code]:
    """Build a CodeSet for one system from bare code strings."""
    return {Code(system, code) for code in codes}


# ---------------------------------------------------------------------------
# FHIR ValueSet document shape
# ---------------------------------------------------------------------------

class ValueSetConcept(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str
    display: Optional[str] = None


class ValueSetFilter(BaseModel):
    model_config = ConfigDict(extra="allow")

    property: Optional[str] = None
    op: Optional[str] = None
    value: Optional[str] = None

    def values(self) -> List[str]:
        """Split an `in` filter value into its literals."""
        if self.value is None:
            return []
        return [v.strip() for v in self.value.split(",") if v.strip()]


class ComposeClause(BaseModel):
    """A compose.include or compose.exclude entry."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    system: Optional[str] = None
    version: Optional[str] = None
    concept: List[ValueSetConcept] = Field(default_factory=list)
    filter: List[ValueSetFilter] = Field(default_factory=list)
    value_set: List[str] = Field(default_factory=list, alias="valueSet")

    @model_validator(mode="after")
    def check_concept_or_filter(self) -> "ComposeClause":
        if self.concept and self.filter:
            raise ValueError(
                "Only one of 'concept' or 'filter' can be present, not both."
            )
        if (self.concept or self.filter) and not self.system:
            raise ValueError("'concept' and 'filter' require a 'system'.")
        return self


class ValueSetCompose(BaseModel):
    model_config = ConfigDict(extra="allow")

    include: List[ComposeClause] = Field(default_factory=list)
    exclude: List[ComposeClause] = Field(default_factory=list)


class Extension(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    url: str
    value_boolean: Optional[bool] = Field(default=None, alias="valueBoolean")


class ExpansionContains(BaseModel):
    model_config = ConfigDict(extra="allow")

    system: Optional[str] = None
    code: Optional[str] = None
    display: Optional[str] = None
    contains: List["ExpansionContains"] = Field(default_factory=list)


ExpansionContains.model_rebuild()


class ValueSetExpansion(BaseModel):
    model_config = ConfigDict(extra="allow")

    timestamp: Optional[str] = None
    total: Optional[int] = None
    extension: List[Extension] = Field(default_factory=list)
    contains: Optional[List[ExpansionContains]] = None

    def _flag(self, url: str) -> bool:
        for ext in self.extension:
            if ext.url == url:
                return bool(ext.value_boolean)
        return False

    @property
    def too_costly(self) -> bool:
        return self._flag(TOO_COSTLY_URL)

    @property
    def unclosed(self) -> bool:
        return self._flag(UNCLOSED_URL)

    def codes(self) -> Set[Code]:
        """Flatten contains (including nested contains) into a CodeSet."""
        result: Set[Code] = set()
        stack = list(self.contains or [])
        while stack:
            entry = stack.pop()
            if entry.system and entry.code:
                result.add(Code(entry.system, entry.code))
            stack.extend(entry.contains)
        return result


class ValueSetDocument(BaseModel):
    """The subset of a FHIR ValueSet resource the engine reads."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    resource_type: str = Field(default="ValueSet", alias="resourceType")
    url: str
    name: Optional[str] = None
    version: Optional[str] = None
    status: Optional[str] = None
    compose: ValueSetCompose = Field(default_factory=ValueSetCompose)
    expansion: Optional[ValueSetExpansion] = None

    @field_validator("resource_type")
    @classmethod
    def validate_resource_type(cls, resource_type: str) -> str:
        if resource_type != "ValueSet":
            raise ValueError(f"Expected a ValueSet resource, got {resource_type}")
        return resource_type


# ---------------------------------------------------------------------------
# Loaded definition
# ---------------------------------------------------------------------------

class ValueSetDefinition:
    """
    A registered ValueSet.

    The parsed document is treated as immutable. The expanded CodeSet is
    computed on first request and memoized for the lifetime of the object;
    concurrent callers block until the single computation finishes and then
    all observe the same frozen result.
    """

    def __init__(self, document: ValueSetDocument, binding_strength: Optional[str] = None):
        self.document = document
        self.binding_strength = binding_strength
        self._code_set: Optional[FrozenSet[Code]] = None
        self._lock = threading.Lock()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], binding_strength: Optional[str] = None) -> "ValueSetDefinition":
        return cls(ValueSetDocument.model_validate(data), binding_strength=binding_strength)

    @classmethod
    def from_file(cls, filename: Union[str, Path], binding_strength: Optional[str] = None) -> "ValueSetDefinition":
        """Read a ValueSet definition from a JSON file."""
        with open(filename, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data, binding_strength=binding_strength)

    @property
    def url(self) -> str:
        return self.document.url

    @property
    def includes(self) -> List[ComposeClause]:
        return self.document.compose.include

    @property
    def excludes(self) -> List[ComposeClause]:
        return self.document.compose.exclude

    @property
    def expansion(self) -> Optional[ValueSetExpansion]:
        return self.document.expansion

    def expansion_present(self) -> bool:
        return self.expansion is not None and self.expansion.contains is not None

    def too_costly(self) -> bool:
        return bool(self.expansion and self.expansion.too_costly)

    def unclosed(self) -> bool:
        return bool(self.expansion and self.expansion.unclosed)

    def has_trusted_expansion(self) -> bool:
        """An attached expansion that is complete enough for containment checks."""
        return self.expansion_present() and not (self.too_costly() or self.unclosed())

    def imported_urls(self) -> List[str]:
        """All valueSet references across includes and excludes, in order."""
        urls: List[str] = []
        for clause in self.includes + self.excludes:
            urls.extend(clause.value_set)
        return urls

    def included_code_systems(self) -> List[str]:
        seen: List[str] = []
        for clause in self.includes:
            if clause.system and clause.system not in seen:
                seen.append(clause.system)
        return seen

    @property
    def is_expanded(self) -> bool:
        return self._code_set is not None

    def memoized_code_set(self, compute: Callable[[], Set[Code]]) -> FrozenSet[Code]:
        """Return the cached CodeSet, computing it at most once."""
        cached = self._code_set
        if cached is not None:
            return cached
        with self._lock:
            if self._code_set is None:
                self._code_set = frozenset(compute())
                logger.debug(f"Memoized {len(self._code_set)} codes for {self.url}")
            return self._code_set

    def __repr__(self) -> str:
        return f"ValueSetDefinition(url={self.url!r}, expanded={self.is_expanded})"
