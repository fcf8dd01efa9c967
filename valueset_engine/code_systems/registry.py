"""
Code-System Source Registry

Resolves a system URL to exactly one source, in fixed priority:
1. a statically registered enumeration
2. a JSON CodeSystem file, when the system has no vocabulary-database mapping
3. the vocabulary database, when the system maps to a source abbreviation
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Union

from ..exceptions import FilterOperationUnsupported, UnknownCodeSystem
from ..models import ENGINE_FILTER_OPS, Code, ValueSetFilter
from ..vocabulary_db import VocabularyDatabase
from .base import CodeSystemSource
from .json_defined import JsonCodeSystemSource, code_system_path
from .static import (
    FORMAT_CODES_VALUE_SET,
    IHE_FORMAT_CODE_SYSTEM,
    LanguageTagSource,
    MimeTypeSource,
    ValueSetBackedSource,
    usps_source,
)
from .vocabulary import (
    SourceAbbreviationResolver,
    VocabularyDatabaseSource,
    has_source_abbreviation,
)

logger = logging.getLogger(__name__)


class CodeSystemRegistry:
    """Maps system URLs to CodeSystemSources."""

    def __init__(
        self,
        vocabulary: Optional[VocabularyDatabase] = None,
        code_system_dir: Union[str, Path, None] = None,
        bcp47_registry_path: Union[str, Path, None] = None,
        value_set_expander: Optional[Callable[[str], Iterable[Code]]] = None,
    ):
        self.vocabulary = vocabulary
        self.code_system_dir = Path(code_system_dir) if code_system_dir else None
        self.abbreviations = SourceAbbreviationResolver(vocabulary)
        self._static: Dict[str, CodeSystemSource] = {}
        self._json_sources: Dict[str, JsonCodeSystemSource] = {}
        self._vocabulary_sources: Dict[str, VocabularyDatabaseSource] = {}
        self._lock = threading.Lock()

        self.register_static(MimeTypeSource())
        self.register_static(LanguageTagSource(bcp47_registry_path))
        self.register_static(usps_source())
        if value_set_expander is not None:
            self.register_static(
                ValueSetBackedSource(IHE_FORMAT_CODE_SYSTEM, FORMAT_CODES_VALUE_SET, value_set_expander)
            )

    def register_static(self, source: CodeSystemSource) -> None:
        self._static[source.system] = source

    def backing_value_set(self, system: Optional[str]) -> Optional[str]:
        """URL of the ValueSet a system is enumerated from, if any."""
        source = self._static.get(system)
        if isinstance(source, ValueSetBackedSource):
            return source.value_set_url
        return None

    def resolve(self, system: Optional[str], spec: Optional[ValueSetFilter] = None) -> CodeSystemSource:
        """
        The source responsible for system.

        Static sources accept their own filter operators; the JSON and
        database paths only =, in and is-a.
        """
        if system in self._static:
            return self._static[system]

        if not has_source_abbreviation(system):
            json_source = self._json_source(system)
            if json_source is not None:
                return json_source

        if spec is not None and spec.op not in ENGINE_FILTER_OPS:
            raise FilterOperationUnsupported(spec.op, system=system)
        if not has_source_abbreviation(system):
            raise UnknownCodeSystem(system)
        return self._vocabulary_source(system)

    def _json_source(self, system: Optional[str]) -> Optional[JsonCodeSystemSource]:
        if system is None or self.code_system_dir is None:
            return None
        if system in self._json_sources:
            return self._json_sources[system]
        path = code_system_path(self.code_system_dir, system)
        if not path.exists():
            return None
        source = JsonCodeSystemSource.from_file(path)
        with self._lock:
            self._json_sources.setdefault(system, source)
        return self._json_sources[system]

    def _vocabulary_source(self, system: str) -> VocabularyDatabaseSource:
        if self.vocabulary is None:
            raise UnknownCodeSystem(system, "no vocabulary database configured")
        with self._lock:
            source = self._vocabulary_sources.get(system)
            if source is None:
                source = VocabularyDatabaseSource(system, self.vocabulary, self.abbreviations)
                self._vocabulary_sources[system] = source
            return source
