"""
In-memory registry of known ValueSets keyed by canonical URL.

Writes happen during the bulk-load phase only; once frozen the repository
is read-only.
"""

import logging
from typing import Dict, Iterable, Iterator, List

from .exceptions import UnknownValueSet
from .models import ValueSetDefinition

logger = logging.getLogger(__name__)


class ValueSetRepository:
    """Registry of ValueSetDefinitions."""

    def __init__(self):
        self._by_url: Dict[str, ValueSetDefinition] = {}
        self._frozen = False

    def register(self, definition: ValueSetDefinition) -> None:
        if self._frozen:
            raise RuntimeError(f"Repository is frozen; cannot register {definition.url}")
        if definition.url in self._by_url:
            logger.debug(f"Replacing registered ValueSet {definition.url}")
        self._by_url[definition.url] = definition

    def register_all(self, definitions: Iterable[ValueSetDefinition]) -> int:
        count = 0
        for definition in definitions:
            self.register(definition)
            count += 1
        return count

    def freeze(self) -> None:
        """End the load phase."""
        self._frozen = True
        logger.info(f"ValueSet repository ready with {len(self._by_url)} definitions")

    @property
    def frozen(self) -> bool:
        return self._frozen

    def find(self, url: str) -> ValueSetDefinition:
        definition = self._by_url.get(url)
        if definition is None:
            raise UnknownValueSet(url)
        return definition

    def select_by_urls(self, urls: Iterable[str]) -> Dict[str, ValueSetDefinition]:
        """Definitions for the given URLs; unknown URLs are simply left out."""
        return {url: self._by_url[url] for url in urls if url in self._by_url}

    def select_by_binding_strength(self, strengths: Iterable[str]) -> List[ValueSetDefinition]:
        wanted = set(strengths)
        return [vs for vs in self._by_url.values() if vs.binding_strength in wanted]

    def all(self) -> List[ValueSetDefinition]:
        return list(self._by_url.values())

    def __contains__(self, url: object) -> bool:
        return url in self._by_url

    def __len__(self) -> int:
        return len(self._by_url)

    def __iter__(self) -> Iterator[ValueSetDefinition]:
        return iter(list(self._by_url.values()))
