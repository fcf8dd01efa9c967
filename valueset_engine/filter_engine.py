"""
Filter Engine

Evaluates compose filters against a code-system source:
- `=`     exact match on a property
- `in`    match any of a comma-delimited list, as one batched predicate
- `is-a`  reflexive-transitive closure of the child-of relation

Several filters inside one include/exclude clause intersect.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .models import Code, ValueSetFilter

logger = logging.getLogger(__name__)


def build_adjacency(pairs: Iterable[Tuple[str, str]]) -> Dict[str, List[str]]:
    """Group (parent, child) rows into a parent -> children map."""
    children: Dict[str, List[str]] = defaultdict(list)
    for parent, child in pairs:
        children[parent].append(child)
    return dict(children)


def subsumption_closure(children: Mapping[str, Iterable[str]], root: str) -> Set[str]:
    """
    Codes subsumed by root, root included.

    Depth-first over an explicit stack; a code already visited is never
    expanded again, so cycles in the relation terminate.
    """
    visited: Set[str] = set()
    stack = [root]
    while stack:
        code = stack.pop()
        if code in visited:
            continue
        visited.add(code)
        for child in children.get(code, ()):
            if child not in visited:
                stack.append(child)
    return visited


class FilterEngine:
    """Evaluates filters by delegating to the resolved code-system source."""

    def __init__(self, code_systems):
        self.code_systems = code_systems

    def evaluate(self, system: str, filters: Optional[Sequence[ValueSetFilter]] = None) -> Set[Code]:
        """
        Codes in system matching every filter.

        With no filters the whole system is enumerated.
        """
        if not filters:
            source = self.code_systems.resolve(system)
            logger.debug(f"Loading all {system} codes from {source.kind} source")
            return set(source.list_all())

        result: Optional[Set[Code]] = None
        for spec in filters:
            matched = self.evaluate_one(system, spec)
            result = matched if result is None else result & matched
        return result if result is not None else set()

    def evaluate_one(self, system: str, spec: ValueSetFilter) -> Set[Code]:
        source = self.code_systems.resolve(system, spec)
        logger.debug(
            f"Filtering {system} ({source.kind}): {spec.property} {spec.op} {spec.value}"
        )
        return set(source.filter(spec))
