"""
ValueSet Engine

Expands FHIR ValueSets (compose includes/excludes, filters, imports and
pre-computed expansions) into flat sets of (system, code) pairs, answers
membership queries, and builds membership indexes for validators.

Usage:
    from valueset_engine import TerminologyContext, Code, load_value_sets

    context = TerminologyContext.from_settings()
    load_value_sets(context, "resources/terminology/value_sets")
    context.ready()

    context.contains("http://hl7.org/fhir/us/core/ValueSet/us-core-usps-state",
                     Code("https://www.usps.com/", "CA"))
"""

from .containment import BindingCheckOutcome, ExpandedValueSet, check_binding
from .context import TerminologyContext
from .exceptions import (
    FilterOperationUnsupported,
    ImportCycleDetected,
    TerminologyError,
    UnknownCodeSystem,
    UnknownValueSet,
)
from .loader import attach_indexes_from_manifest, build_validators, load_value_sets
from .membership import MembershipIndex
from .models import Code, ValueSetDefinition
from .repository import ValueSetRepository

__all__ = [
    # Core
    "Code",
    "ValueSetDefinition",
    "ValueSetRepository",
    "TerminologyContext",
    # Containment
    "ExpandedValueSet",
    "BindingCheckOutcome",
    "check_binding",
    "MembershipIndex",
    # Loading
    "load_value_sets",
    "build_validators",
    "attach_indexes_from_manifest",
    # Errors
    "TerminologyError",
    "UnknownValueSet",
    "UnknownCodeSystem",
    "FilterOperationUnsupported",
    "ImportCycleDetected",
]
