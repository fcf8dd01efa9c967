"""
Vocabulary-database backed code systems (UMLS).

Large standard code systems are read from the vocabulary store, scoped by
their UMLS source abbreviation (SAB). All queries are built as SQLAlchemy
expressions, so property names and values are always bound parameters.

UMLS vocabulary list: https://www.nlm.nih.gov/research/umls/sourcereleasedocs/index.html
Attribute names: https://www.nlm.nih.gov/research/umls/knowledge_sources/metathesaurus/release/attribute_names.html
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from ..exceptions import FilterOperationUnsupported, UnknownCodeSystem
from ..filter_engine import build_adjacency, subsumption_closure
from ..models import Code, ValueSetFilter
from ..vocabulary_db import (
    CONCEPT_FILTER_COLUMNS,
    ConceptAttribute,
    ConceptRow,
    Relationship,
    VocabularyDatabase,
)
from .base import CodeSystemSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceAbbreviation:
    abbreviation: str
    name: str


NUCC_SYSTEM = "http://nucc.org/provider-taxonomy"

SOURCE_ABBREVIATIONS: Dict[str, SourceAbbreviation] = {
    "http://www.nlm.nih.gov/research/umls/rxnorm": SourceAbbreviation(
        "RXNORM", "RxNorm Vocabulary"),
    "http://loinc.org": SourceAbbreviation(
        "LNC", "Logical Observation Identifiers Names and Codes terminology (LOINC)"),
    "http://snomed.info/sct": SourceAbbreviation(
        "SNOMEDCT_US", "Systematized Nomenclature of Medicine-Clinical Terms (SNOMED CT), US Edition"),
    "http://www.cms.gov/Medicare/Coding/ICD10": SourceAbbreviation(
        "ICD10PCS", "ICD-10 Procedure Coding System (ICD-10-PCS)"),
    "http://hl7.org/fhir/sid/cvx": SourceAbbreviation(
        "CVX", "Vaccines Administered (CVX)"),
    "http://hl7.org/fhir/sid/icd-10-cm": SourceAbbreviation(
        "ICD10CM", "International Classification of Diseases, Tenth Revision, Clinical Modification (ICD-10-CM)"),
    "http://hl7.org/fhir/sid/icd-9-cm": SourceAbbreviation(
        "ICD9CM", "International Classification of Diseases, Ninth Revision, Clinical Modification (ICD-9-CM)"),
    "http://unitsofmeasure.org": SourceAbbreviation(
        "NCI_UCUM", "Unified Code for Units of Measure (UCUM)"),
    NUCC_SYSTEM: SourceAbbreviation(
        "NUCCHCPT", "National Uniform Claim Committee - Health Care Provider Taxonomy (NUCCHCPT)"),
    "http://www.ama-assn.org/go/cpt": SourceAbbreviation(
        "CPT", "Current Procedural Terminology (CPT)"),
    "http://www.cms.gov/Medicare/Coding/HCPCSReleaseCodeSets": SourceAbbreviation(
        "HCPCS", "Healthcare Common Procedure Coding System (HCPCS)"),
    "urn:oid:2.16.840.1.113883.6.285": SourceAbbreviation(
        "HCPCS", "Healthcare Common Procedure Coding System (HCPCS)"),
    "urn:oid:2.16.840.1.113883.6.13": SourceAbbreviation(
        "CDT", "Code on Dental Procedures and Nomenclature (CDT)"),
    "http://ada.org/cdt": SourceAbbreviation(
        "CDT", "Code on Dental Procedures and Nomenclature (CDT)"),
}

# FHIR-level property name -> UMLS attribute name
FILTER_PROPERTIES: Dict[str, str] = {
    "CLASSTYPE": "LCN",
    "DOC": "Doc",
    "SCALE_TYP": "LOINC_SCALE_TYP",
}

# Provider taxonomy term types that make up the code system proper
NUCC_TERM_TYPES = ("PT", "OP")

CHILD_RELATION = "CHD"


def has_source_abbreviation(system: Optional[str]) -> bool:
    return system in SOURCE_ABBREVIATIONS


def filter_property(prop: Optional[str]) -> Optional[str]:
    """The mapped attribute name, or the property itself when unmapped."""
    if prop is None:
        return None
    return FILTER_PROPERTIES.get(prop, prop)


class SourceAbbreviationResolver:
    """
    Maps system URLs to UMLS source abbreviations.

    Provider taxonomy ships as NUCCPT in some UMLS releases and NUCCHCPT in
    others; the answer needs a database round trip and is memoized.
    """

    def __init__(self, database: Optional[VocabularyDatabase]):
        self.database = database
        self._nucc_abbreviation: Optional[str] = None
        self._lock = threading.Lock()

    def abbreviation(self, system: Optional[str]) -> Optional[str]:
        if system != NUCC_SYSTEM:
            entry = SOURCE_ABBREVIATIONS.get(system)
            return entry.abbreviation if entry else None
        return self._nucc()

    def _nucc(self) -> str:
        if self._nucc_abbreviation is not None:
            return self._nucc_abbreviation
        with self._lock:
            if self._nucc_abbreviation is None:
                if self.database is None:
                    raise UnknownCodeSystem(NUCC_SYSTEM, "no vocabulary database configured")
                with self.database.session_scope() as session:
                    count = session.execute(
                        select(func.count()).select_from(ConceptRow).where(ConceptRow.sab == "NUCCPT")
                    ).scalar_one()
                self._nucc_abbreviation = "NUCCPT" if count > 0 else "NUCCHCPT"
                logger.debug(f"Provider taxonomy resolved to {self._nucc_abbreviation}")
            return self._nucc_abbreviation


class VocabularyDatabaseSource(CodeSystemSource):
    """A code system read from the vocabulary store."""

    def __init__(self, system: str, database: VocabularyDatabase, resolver: SourceAbbreviationResolver):
        super().__init__(system)
        self.database = database
        self.resolver = resolver

    @property
    def kind(self) -> str:
        return "vocabulary"

    @property
    def abbreviation(self) -> str:
        sab = self.resolver.abbreviation(self.system)
        if sab is None:
            raise UnknownCodeSystem(self.system)
        return sab

    def _codes(self, stmt) -> Set[Code]:
        with self.database.session_scope() as session:
            rows = session.execute(stmt).scalars().all()
        return {Code(self.system, code) for code in rows}

    def list_all(self) -> Set[Code]:
        stmt = select(ConceptRow.code).where(ConceptRow.sab == self.abbreviation)
        if self.system == NUCC_SYSTEM:
            stmt = stmt.where(ConceptRow.tty.in_(NUCC_TERM_TYPES))
        return self._codes(stmt.distinct())

    def filter(self, spec: ValueSetFilter) -> Set[Code]:
        self.check_filter(spec)
        if spec.op in ("=", "in"):
            return self._property_filter(spec)
        if spec.op == "is-a":
            return self._is_a(spec.value)
        raise FilterOperationUnsupported(spec.op, system=self.system)

    def _filter_values(self, spec: ValueSetFilter) -> List[str]:
        if spec.op == "in":
            return spec.values()
        return [spec.value] if spec.value is not None else []

    def _property_filter(self, spec: ValueSetFilter) -> Set[Code]:
        """
        `=` and `in` filters.

        Concept-row columns (TTY, STR, ...) are matched on mrconso; every other
        property is matched as an attribute in mrsat.
        """
        values = self._filter_values(spec)
        if not values:
            return set()
        sab = self.abbreviation
        prop = spec.property

        if prop not in FILTER_PROPERTIES and prop.upper() in CONCEPT_FILTER_COLUMNS:
            column = CONCEPT_FILTER_COLUMNS[prop.upper()]
            stmt = select(ConceptRow.code).where(ConceptRow.sab == sab)
            stmt = stmt.where(column == values[0]) if len(values) == 1 else stmt.where(column.in_(values))
        else:
            stmt = select(ConceptAttribute.code).where(
                ConceptAttribute.sab == sab,
                ConceptAttribute.atn == filter_property(prop),
            )
            if len(values) == 1:
                stmt = stmt.where(ConceptAttribute.atv == values[0])
            else:
                stmt = stmt.where(ConceptAttribute.atv.in_(values))
        return self._codes(stmt.distinct())

    def child_adjacency(self) -> Dict[str, List[str]]:
        """
        Every parent -> children edge for this source, from one bulk query.

        Loading the whole relation once is cheaper than a round trip per level
        of the hierarchy.
        """
        parent = aliased(ConceptRow)
        child = aliased(ConceptRow)
        stmt = (
            select(parent.code, child.code)
            .select_from(Relationship)
            .join(parent, parent.aui == Relationship.aui1)
            .join(child, child.aui == Relationship.aui2)
            .where(Relationship.rel == CHILD_RELATION, Relationship.sab == self.abbreviation)
        )
        with self.database.session_scope() as session:
            rows = session.execute(stmt).all()
        logger.debug(f"Loaded {len(rows)} {CHILD_RELATION} rows for {self.abbreviation}")
        return build_adjacency((row[0], row[1]) for row in rows)

    def _is_a(self, root: str) -> Set[Code]:
        codes = subsumption_closure(self.child_adjacency(), root)
        return {Code(self.system, code) for code in codes}
