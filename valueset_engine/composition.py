"""
Composition Evaluator

Turns a ValueSet's compose element into a CodeSet:

    result = (include_1 | include_2 | ...) - (exclude_1 | exclude_2 | ...)

Within one clause the parts intersect: an explicit concept list, or the
intersection of its filters, or the whole system; further intersected with
every imported ValueSet the clause references.

A pre-computed expansion is used as-is unless it is flagged too costly or
unclosed, in which case it is incomplete and the compose is evaluated.
"""

import logging
from typing import FrozenSet, Iterator, List, Optional, Set

from .exceptions import ImportCycleDetected
from .filter_engine import FilterEngine
from .models import Code, ComposeClause, ValueSetDefinition
from .repository import ValueSetRepository

logger = logging.getLogger(__name__)


class CompositionEvaluator:
    """Expands ValueSetDefinitions, memoizing the result on each definition."""

    def __init__(
        self,
        repository: ValueSetRepository,
        filter_engine: FilterEngine,
        use_expansions: bool = True,
    ):
        self.repository = repository
        self.filter_engine = filter_engine
        self.use_expansions = use_expansions

    def code_set(self, definition: ValueSetDefinition) -> FrozenSet[Code]:
        """The CodeSet of definition, computed once per definition."""
        if not definition.is_expanded:
            cycle = self.find_import_cycle(definition)
            if cycle:
                raise ImportCycleDetected(cycle)
        return definition.memoized_code_set(lambda: self._evaluate(definition))

    def expand_url(self, url: str) -> FrozenSet[Code]:
        return self.code_set(self.repository.find(url))

    def _evaluate(self, definition: ValueSetDefinition) -> Set[Code]:
        if self.use_expansions and definition.expansion_present():
            if definition.too_costly() or definition.unclosed():
                logger.debug(f"ValueSet too costly or unclosed: {definition.url}")
                return self.compose(definition)
            logger.debug(f"Processing expanded valueset: {definition.url}")
            return definition.expansion.codes()
        logger.debug(f"Processing composed valueset: {definition.url}")
        return self.compose(definition)

    def compose(self, definition: ValueSetDefinition) -> Set[Code]:
        """Union of includes minus excludes, ignoring any attached expansion."""
        result: Set[Code] = set()
        for include in definition.includes:
            result |= self.clause_set(include)
        for exclude in definition.excludes:
            result -= self.clause_set(exclude)
        logger.debug(f"Composed {len(result)} codes for {definition.url}")
        return result

    def clause_set(self, clause: ComposeClause) -> Set[Code]:
        """The codes selected by a single include or exclude clause."""
        result: Optional[Set[Code]] = None

        if clause.concept:
            result = {Code(clause.system, concept.code) for concept in clause.concept}
        elif clause.filter:
            result = self.filter_engine.evaluate(clause.system, clause.filter)
        elif clause.system:
            result = self.filter_engine.evaluate(clause.system)

        if clause.value_set:
            imported: Optional[Set[Code]] = None
            for url in clause.value_set:
                codes = self.expand_url(url)
                imported = set(codes) if imported is None else imported & codes
            result = imported if result is None else result & imported

        return result if result is not None else set()

    # ------------------------------------------------------------------
    # Import cycle detection
    # ------------------------------------------------------------------

    def _pending_imports(self, definition: ValueSetDefinition) -> List[str]:
        """
        Imports that evaluating definition would actually resolve.

        Besides valueSet references this includes the ValueSet behind any
        system that is enumerated from one (IHE format codes), since listing
        such a system expands that ValueSet.
        """
        if definition.is_expanded:
            return []
        if self.use_expansions and definition.has_trusted_expansion():
            return []
        urls = definition.imported_urls()
        for clause in definition.includes + definition.excludes:
            if clause.concept:
                continue
            backing = self.filter_engine.code_systems.backing_value_set(clause.system)
            if backing is not None and backing not in urls:
                urls.append(backing)
        return urls

    def find_import_cycle(self, root: ValueSetDefinition) -> Optional[List[str]]:
        """
        Walk the import graph from root without expanding anything.

        Returns the cycle as a list of URLs (first == last) or None. Unknown
        URLs are skipped here; resolving them raises UnknownValueSet later.
        """
        path = [root.url]
        on_path = {root.url}
        finished: Set[str] = set()
        stack: List[Iterator[str]] = [iter(self._pending_imports(root))]

        while stack:
            url = next(stack[-1], None)
            if url is None:
                stack.pop()
                done = path.pop()
                on_path.discard(done)
                finished.add(done)
                continue
            if url in on_path:
                return path[path.index(url):] + [url]
            if url in finished or url not in self.repository:
                continue
            path.append(url)
            on_path.add(url)
            stack.append(iter(self._pending_imports(self.repository.find(url))))
        return None
