"""
Statically registered code systems.

Small, well-known vocabularies that are not in the vocabulary store:
- urn:ietf:bcp:13  MIME media types
- urn:ietf:bcp:47  language tags from the IANA language subtag registry
- https://www.usps.com/  state and territory codes
- IHE format codes, resolved through the ValueSet repository
"""

import logging
import mimetypes
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from ..exceptions import FilterOperationUnsupported, UnknownCodeSystem
from ..models import Code, ValueSetFilter
from .base import CodeSystemSource

logger = logging.getLogger(__name__)

BCP13_SYSTEM = "urn:ietf:bcp:13"
BCP47_SYSTEM = "urn:ietf:bcp:47"
USPS_SYSTEM = "https://www.usps.com/"
IHE_FORMAT_CODE_SYSTEM = "http://ihe.net/fhir/ValueSet/IHE.FormatCode.codesystem"
FORMAT_CODES_VALUE_SET = "http://hl7.org/fhir/ValueSet/formatcodes"

# 50 states, DC, five inhabited territories, three freely associated states
USPS_CODES = (
    "AL", "AK", "AS", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FM",
    "FL", "GA", "GU", "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA",
    "ME", "MH", "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV",
    "NH", "NJ", "NM", "NY", "NC", "ND", "MP", "OH", "OK", "OR", "PW",
    "PA", "PR", "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VI", "VA",
    "WA", "WV", "WI", "WY",
)


def normalize_mime_type(code: Optional[str]) -> Optional[str]:
    """Drop optional parameters after ';' and lowercase."""
    if code is None:
        return None
    return code.split(";")[0].strip().lower()


class MimeTypeSource(CodeSystemSource):
    """BCP-13 media types from Python's built-in mimetypes table, identical on every host."""

    def __init__(self, extra_types: Iterable[str] = ()):
        super().__init__(BCP13_SYSTEM)
        self._extra_types = list(extra_types)
        self._codes: Optional[Set[Code]] = None

    @property
    def kind(self) -> str:
        return "static"

    def list_all(self) -> Set[Code]:
        if self._codes is None:
            # Built-in table only; host files such as /etc/mime.types are not read
            table = mimetypes.MimeTypes(filenames=())
            types = set(table.types_map[True].values())
            types.update(table.types_map[False].values())
            types.update(self._extra_types)
            self._codes = {Code(self.system, normalize_mime_type(t)) for t in types if t}
        return set(self._codes)


def parse_subtag_registry(text: str) -> List[Dict[str, str]]:
    """
    Parse the IANA language-subtag-registry record-jar format.

    Records are separated by '%%' lines; continuation lines start with
    whitespace. Repeated fields (Description, Prefix) keep the first value.
    """
    records: List[Dict[str, str]] = []
    current: Dict[str, str] = {}
    last_field: Optional[str] = None
    for line in text.splitlines():
        if line.strip() == "%%":
            if current:
                records.append(current)
            current, last_field = {}, None
            continue
        if line[:1].isspace() and last_field:
            current[last_field] = f"{current[last_field]} {line.strip()}"
            continue
        if ":" not in line:
            continue
        field, value = line.split(":", 1)
        field, value = field.strip(), value.strip()
        if field not in current:
            current[field] = value
        last_field = field
    if current:
        records.append(current)
    return records


class LanguageTagSource(CodeSystemSource):
    """
    BCP-47 language tags.

    Unfiltered, the system is every primary language subtag. An `exists`
    filter on a sub-tag property narrows or widens it:
    `ext-lang`, `script`, `variant`, `region` with value true yield tags of
    that sub-tag type (prefixed where the registry gives a prefix), with
    value false the plain language subtags; `private-use` selects records
    scoped private-use.
    """

    SUBTAG_TYPES = {
        "ext-lang": "extlang",
        "script": "script",
        "variant": "variant",
        "region": "region",
    }

    def __init__(self, registry: Union[str, Path, None] = None, records: Optional[List[Dict[str, str]]] = None):
        super().__init__(BCP47_SYSTEM)
        self.registry_path = Path(registry) if registry else None
        self._records = records

    @property
    def kind(self) -> str:
        return "static"

    @property
    def records(self) -> List[Dict[str, str]]:
        if self._records is None:
            if self.registry_path is None or not self.registry_path.exists():
                raise UnknownCodeSystem(self.system, f"language subtag registry not found: {self.registry_path}")
            self._records = parse_subtag_registry(self.registry_path.read_text(encoding="utf-8"))
            logger.info(f"Loaded {len(self._records)} language subtag records")
        return self._records

    def _tags(self, subtag_type: str) -> Set[Code]:
        tags = set()
        for record in self.records:
            subtag = record.get("Subtag")
            if record.get("Type") != subtag_type or not subtag or ".." in subtag:
                continue
            prefix = record.get("Prefix")
            tags.add(Code(self.system, f"{prefix}-{subtag}" if prefix else subtag))
        return tags

    def list_all(self) -> Set[Code]:
        return self._tags("language")

    def filter(self, spec: ValueSetFilter) -> Set[Code]:
        if spec.op != "exists":
            raise FilterOperationUnsupported(spec.op, system=self.system)
        wanted = str(spec.value).lower() == "true"
        if spec.property == "private-use":
            private = {
                Code(self.system, r["Subtag"]) for r in self.records
                if r.get("Scope") == "private-use" and r.get("Subtag")
            }
            return private if wanted else self.list_all() - private
        subtag_type = self.SUBTAG_TYPES.get(spec.property or "")
        if subtag_type is None:
            raise FilterOperationUnsupported(spec.op, system=self.system)
        return self._tags(subtag_type) if wanted else self.list_all()


class EnumeratedSource(CodeSystemSource):
    """A fixed list of codes."""

    def __init__(self, system: str, codes: Iterable[str]):
        super().__init__(system)
        self._codes = tuple(codes)

    @property
    def kind(self) -> str:
        return "static"

    def list_all(self) -> Set[Code]:
        return {Code(self.system, code) for code in self._codes}


def usps_source() -> EnumeratedSource:
    return EnumeratedSource(USPS_SYSTEM, USPS_CODES)


class ValueSetBackedSource(CodeSystemSource):
    """A code system whose content is the expansion of a registered ValueSet."""

    def __init__(self, system: str, value_set_url: str, expand: Callable[[str], Iterable[Code]]):
        super().__init__(system)
        self.value_set_url = value_set_url
        self._expand = expand

    @property
    def kind(self) -> str:
        return "static"

    def list_all(self) -> Set[Code]:
        return set(self._expand(self.value_set_url))
