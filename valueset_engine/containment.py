"""
Containment API

Query surface over one expanded ValueSet, plus the binding-check boundary
used by validators.

contains() is authoritative: it checks the finalized CodeSet. A membership
index, when attached, only short-circuits definite misses in front of it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from .composition import CompositionEvaluator
from .config import DEFAULT_FALSE_POSITIVE_RATE
from .exceptions import UnknownCodeSystem, UnknownValueSet
from .membership import MembershipIndex
from .models import Code, ValueSetDefinition

logger = logging.getLogger(__name__)


class ExpandedValueSet:
    """A ValueSetDefinition bound to the evaluator that expands it."""

    def __init__(
        self,
        definition: ValueSetDefinition,
        evaluator: CompositionEvaluator,
        index: Optional[MembershipIndex] = None,
    ):
        self.definition = definition
        self.evaluator = evaluator
        self.index = index

    @property
    def url(self) -> str:
        return self.definition.url

    @property
    def code_set(self) -> FrozenSet[Code]:
        return self.evaluator.code_set(self.definition)

    def contains(self, code: Code) -> bool:
        """Whether (system, code) is a member of the expanded ValueSet."""
        if self.index is not None and not self.index.might_contain(code):
            return False
        return code in self.code_set

    def count(self) -> int:
        return len(self.code_set)

    def included_code_systems(self) -> List[str]:
        return self.definition.included_code_systems()

    def build_index(self, false_positive_rate: float = DEFAULT_FALSE_POSITIVE_RATE) -> MembershipIndex:
        self.index = MembershipIndex.from_codes(self.code_set, false_positive_rate)
        return self.index

    def expansion_as_fhir_value_set(self, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
        """
        A copy of the ValueSet document with a populated expansion.

        The registered definition is left untouched.
        """
        timestamp = timestamp or datetime.now().astimezone()
        contains = [code.to_dict() for code in sorted(self.code_set)]
        document = self.definition.document.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude_defaults=True,
        )
        document.pop("resourceType", None)
        document.pop("expansion", None)
        return {
            "resourceType": "ValueSet",
            **document,
            "expansion": {
                "timestamp": timestamp.isoformat(timespec="seconds"),
                "total": len(contains),
                "contains": contains,
            },
        }


@dataclass
class BindingCheckOutcome:
    """
    Result of checking one coded element against its bound ValueSet.

    status is "ok", "warning" (the binding could not be evaluated, e.g.
    unknown ValueSet or CodeSystem) or "error" (the code is not a member).
    """
    status: str
    message: Optional[str] = None
    value_set_url: Optional[str] = None

    @classmethod
    def ok(cls, value_set_url: str) -> "BindingCheckOutcome":
        return cls("ok", value_set_url=value_set_url)

    @classmethod
    def warning(cls, message: str, value_set_url: str) -> "BindingCheckOutcome":
        return cls("warning", message, value_set_url)

    @classmethod
    def error(cls, message: str, value_set_url: str) -> "BindingCheckOutcome":
        return cls("error", message, value_set_url)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    @property
    def is_fatal(self) -> bool:
        return self.status == "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "message": self.message, "valueSet": self.value_set_url}


def check_binding(value_set: Optional[ExpandedValueSet], code: Code, value_set_url: str) -> BindingCheckOutcome:
    """Validate one coding; pass value_set=None when the URL did not resolve."""
    if value_set is None:
        return BindingCheckOutcome.warning(f"Unknown ValueSet: {value_set_url}", value_set_url)
    try:
        contained = value_set.contains(code)
    except (UnknownValueSet, UnknownCodeSystem) as e:
        logger.warning(f"{e} while checking binding to {value_set_url}")
        return BindingCheckOutcome.warning(str(e), value_set_url)
    if contained:
        return BindingCheckOutcome.ok(value_set_url)
    return BindingCheckOutcome.error(
        f"Code {code.system}|{code.code} is not in ValueSet {value_set_url}", value_set_url
    )
