"""
Shared fixtures: an in-memory vocabulary store and a terminology context.

Vocabulary content:
- SNOMEDCT_US hierarchy 100 > 200 > 300, an unrelated 400, and a 500 <-> 600
  cycle in the child relation
- LNC codes with TTY on mrconso and scale/class attributes in mrsat
- NUCCHCPT provider taxonomy codes with PT/OP and one other term type
"""

import pytest

from valueset_engine.context import TerminologyContext
from valueset_engine.vocabulary_db import (
    ConceptAttribute,
    ConceptRow,
    Relationship,
    VocabularyDatabase,
)

SNOMED = "http://snomed.info/sct"
LOINC = "http://loinc.org"
NUCC = "http://nucc.org/provider-taxonomy"
USPS = "https://www.usps.com/"


# =============================================================================
# Vocabulary rows
# =============================================================================

CONCEPTS = [
    # aui, code, sab, tty
    ("A100", "100", "SNOMEDCT_US", "PT"),
    ("A200", "200", "SNOMEDCT_US", "PT"),
    ("A300", "300", "SNOMEDCT_US", "PT"),
    ("A400", "400", "SNOMEDCT_US", "PT"),
    ("A500", "500", "SNOMEDCT_US", "PT"),
    ("A600", "600", "SNOMEDCT_US", "PT"),
    ("L1", "1-1", "LNC", "LN"),
    ("L2", "2-2", "LNC", "LN"),
    ("L3", "3-3", "LNC", "LC"),
    ("N1", "101Y00000X", "NUCCHCPT", "PT"),
    ("N2", "102L00000X", "NUCCHCPT", "OP"),
    ("N3", "103G00000X", "NUCCHCPT", "XX"),
]

ATTRIBUTES = [
    # code, sab, atn, atv
    ("1-1", "LNC", "LOINC_SCALE_TYP", "Qn"),
    ("2-2", "LNC", "LOINC_SCALE_TYP", "Ord"),
    ("3-3", "LNC", "LOINC_SCALE_TYP", "Nom"),
    ("1-1", "LNC", "LCN", "1"),
    ("2-2", "LNC", "LCN", "2"),
    ("3-3", "LNC", "LCN", "1"),
]

CHILD_EDGES = [
    # parent aui, child aui
    ("A100", "A200"),
    ("A200", "A300"),
    ("A500", "A600"),
    ("A600", "A500"),
]


def populate(database: VocabularyDatabase) -> None:
    with database.session_scope() as session:
        for aui, code, sab, tty in CONCEPTS:
            session.add(ConceptRow(aui=aui, code=code, sab=sab, tty=tty, name=f"Concept {code}"))
        for code, sab, atn, atv in ATTRIBUTES:
            session.add(ConceptAttribute(code=code, sab=sab, atn=atn, atv=atv))
        for aui1, aui2 in CHILD_EDGES:
            session.add(Relationship(aui1=aui1, aui2=aui2, rel="CHD", sab="SNOMEDCT_US"))
        session.commit()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def vocabulary() -> VocabularyDatabase:
    """In-memory vocabulary store with the rows above."""
    database = VocabularyDatabase("sqlite://")
    database.init_schema()
    populate(database)
    yield database
    database.dispose()


@pytest.fixture
def context(vocabulary, tmp_path) -> TerminologyContext:
    """A context in its load phase, backed by the in-memory store."""
    return TerminologyContext(vocabulary=vocabulary, code_system_dir=tmp_path / "code_systems")


def value_set(url, include=None, exclude=None, expansion=None, **extra):
    """Minimal FHIR ValueSet dict."""
    document = {"resourceType": "ValueSet", "url": url, **extra}
    compose = {}
    if include is not None:
        compose["include"] = include
    if exclude is not None:
        compose["exclude"] = exclude
    if compose:
        document["compose"] = compose
    if expansion is not None:
        document["expansion"] = expansion
    return document
