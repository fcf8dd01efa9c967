"""
Code systems defined by FHIR CodeSystem JSON files.

Files live in a configured directory, named by the CRC-32 of the system URL
so that a system can be located without an index.
"""

import json
import logging
import zlib
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from ..exceptions import FilterOperationUnsupported, UnknownCodeSystem
from ..filter_engine import subsumption_closure
from ..models import Code, ValueSetFilter
from .base import CodeSystemSource

logger = logging.getLogger(__name__)

# Properties that address the concept code itself rather than a concept property
CODE_PROPERTIES = ("concept", "code")


def encode_name(url: str) -> str:
    """Deterministic file stem for a canonical URL."""
    return str(zlib.crc32(url.encode("utf-8")))


def code_system_path(directory: Union[str, Path], system: str) -> Path:
    return Path(directory) / f"{encode_name(system)}.json"


def _property_value(prop: Dict[str, Any]) -> Optional[str]:
    """String form of a concept property's value[x]."""
    for key, value in prop.items():
        if key.startswith("value"):
            if isinstance(value, bool):
                return "true" if value else "false"
            if isinstance(value, dict):
                return value.get("code")
            return str(value)
    return None


class JsonCodeSystemSource(CodeSystemSource):
    """
    A CodeSystem resource held in memory.

    The hierarchy comes from nested `concept` arrays and from `parent`
    concept properties; `child` properties are honoured as well.
    """

    def __init__(self, resource: Dict[str, Any]):
        system = resource.get("url")
        super().__init__(system)
        self.resource = resource
        self.concepts: Dict[str, Dict[str, Any]] = {}
        self.children: Dict[str, List[str]] = defaultdict(list)
        self._index(resource.get("concept") or [])
        if not self.concepts:
            raise UnknownCodeSystem(system, "CodeSystem has no concepts")

    @classmethod
    def from_file(cls, filename: Union[str, Path]) -> "JsonCodeSystemSource":
        with open(filename, "r", encoding="utf-8") as f:
            resource = json.load(f)
        logger.debug(f"Loaded CodeSystem {resource.get('url')} from {filename}")
        return cls(resource)

    @property
    def kind(self) -> str:
        return "json"

    def _index(self, top_level: List[Dict[str, Any]]) -> None:
        stack = [(concept, None) for concept in reversed(top_level)]
        while stack:
            concept, parent = stack.pop()
            code = concept.get("code")
            if not code:
                continue
            self.concepts[code] = concept
            if parent is not None:
                self.children[parent].append(code)
            for prop in concept.get("property") or []:
                value = _property_value(prop)
                if value is None:
                    continue
                if prop.get("code") == "parent":
                    self.children[value].append(code)
                elif prop.get("code") == "child":
                    self.children[code].append(value)
            for child in reversed(concept.get("concept") or []):
                stack.append((child, code))

    def list_all(self) -> Set[Code]:
        return {Code(self.system, code) for code in self.concepts}

    def _matches(self, concept: Dict[str, Any], prop: str, values: Set[str]) -> bool:
        if prop in CODE_PROPERTIES:
            return concept.get("code") in values
        if prop == "display":
            return concept.get("display") in values
        for entry in concept.get("property") or []:
            if entry.get("code") == prop and _property_value(entry) in values:
                return True
        return False

    def filter(self, spec: ValueSetFilter) -> Set[Code]:
        self.check_filter(spec)
        if spec.op == "is-a":
            if spec.value not in self.concepts:
                logger.warning(f"is-a root {spec.value} is not a concept of {self.system}")
                return set()
            codes = subsumption_closure(self.children, spec.value)
            return {Code(self.system, code) for code in codes if code in self.concepts}
        if spec.op in ("=", "in"):
            values = set(spec.values()) if spec.op == "in" else {spec.value}
            prop = spec.property
            return {
                Code(self.system, code)
                for code, concept in self.concepts.items()
                if self._matches(concept, prop, values)
            }
        raise FilterOperationUnsupported(spec.op, system=self.system)
