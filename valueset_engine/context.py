"""
Terminology context

Holds everything an expansion needs (ValueSet repository, code-system
registry, filter engine, evaluator) and is passed around explicitly.

Lifecycle: construct, register ValueSets (bulk load), call ready(); from then
on the context only serves reads. All state is derived and can be rebuilt.
"""

import logging
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional, Union

from .code_systems import CodeSystemRegistry
from .composition import CompositionEvaluator
from .config import DEFAULT_FALSE_POSITIVE_RATE, Settings, get_settings
from .containment import BindingCheckOutcome, ExpandedValueSet, check_binding
from .exceptions import UnknownValueSet
from .filter_engine import FilterEngine
from .membership import MembershipIndex
from .models import Code, ValueSetDefinition
from .repository import ValueSetRepository
from .vocabulary_db import VocabularyDatabase

logger = logging.getLogger(__name__)


class TerminologyContext:
    """Explicit, injectable terminology state."""

    def __init__(
        self,
        vocabulary: Optional[VocabularyDatabase] = None,
        code_system_dir: Union[str, Path, None] = None,
        bcp47_registry_path: Union[str, Path, None] = None,
        use_expansions: bool = True,
        false_positive_rate: float = DEFAULT_FALSE_POSITIVE_RATE,
        repository: Optional[ValueSetRepository] = None,
    ):
        self.repository = repository or ValueSetRepository()
        self.vocabulary = vocabulary
        self.false_positive_rate = false_positive_rate
        self.code_systems = CodeSystemRegistry(
            vocabulary=vocabulary,
            code_system_dir=code_system_dir,
            bcp47_registry_path=bcp47_registry_path,
            value_set_expander=self.expand,
        )
        self.filter_engine = FilterEngine(self.code_systems)
        self.evaluator = CompositionEvaluator(self.repository, self.filter_engine, use_expansions)
        self._indexes: Dict[str, MembershipIndex] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TerminologyContext":
        settings = settings or get_settings()
        vocabulary = VocabularyDatabase(settings.vocabulary_database_url, echo=settings.debug)
        return cls(
            vocabulary=vocabulary,
            code_system_dir=settings.code_system_dir,
            bcp47_registry_path=settings.bcp47_registry_path,
            use_expansions=settings.use_expansions,
            false_positive_rate=settings.bloom_false_positive_rate,
        )

    # ------------------------------------------------------------------
    # Load phase
    # ------------------------------------------------------------------

    def register(self, definition: ValueSetDefinition) -> None:
        self.repository.register(definition)

    def register_all(self, definitions: Iterable[ValueSetDefinition]) -> int:
        return self.repository.register_all(definitions)

    def ready(self) -> "TerminologyContext":
        self.repository.freeze()
        return self

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def value_set(self, url: str) -> ExpandedValueSet:
        definition = self.repository.find(url)
        return ExpandedValueSet(definition, self.evaluator, index=self._indexes.get(url))

    def expand(self, url: str) -> FrozenSet[Code]:
        return self.evaluator.expand_url(url)

    def contains(self, url: str, code: Code) -> bool:
        return self.value_set(url).contains(code)

    def expansion_document(self, url: str) -> dict:
        return self.value_set(url).expansion_as_fhir_value_set()

    def attach_index(self, url: str, index: MembershipIndex) -> None:
        """Put a membership index in front of containment checks for url."""
        self._indexes[url] = index

    def build_index(self, url: str) -> MembershipIndex:
        index = self.value_set(url).build_index(self.false_positive_rate)
        self.attach_index(url, index)
        return index

    def check_binding(self, code: Code, value_set_url: str) -> BindingCheckOutcome:
        try:
            value_set = self.value_set(value_set_url)
        except UnknownValueSet:
            value_set = None
        return check_binding(value_set, code, value_set_url)
