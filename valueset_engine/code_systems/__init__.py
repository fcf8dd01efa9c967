"""
Code-system sources and their registry.

Sources:
- static: MIME types, BCP-47 language tags, USPS codes, IHE format codes
- json_defined: FHIR CodeSystem files
- vocabulary: UMLS-backed systems (SNOMED CT, LOINC, RxNorm, ICD, CPT, ...)
"""

from .base import CodeSystemSource
from .json_defined import JsonCodeSystemSource, code_system_path, encode_name
from .registry import CodeSystemRegistry
from .static import (
    BCP13_SYSTEM,
    BCP47_SYSTEM,
    USPS_SYSTEM,
    USPS_CODES,
    EnumeratedSource,
    LanguageTagSource,
    MimeTypeSource,
    normalize_mime_type,
)
from .vocabulary import (
    FILTER_PROPERTIES,
    NUCC_SYSTEM,
    SOURCE_ABBREVIATIONS,
    SourceAbbreviationResolver,
    VocabularyDatabaseSource,
)

__all__ = [
    "CodeSystemSource",
    "CodeSystemRegistry",
    # JSON-defined
    "JsonCodeSystemSource",
    "code_system_path",
    "encode_name",
    # Static
    "BCP13_SYSTEM",
    "BCP47_SYSTEM",
    "USPS_SYSTEM",
    "USPS_CODES",
    "EnumeratedSource",
    "LanguageTagSource",
    "MimeTypeSource",
    "normalize_mime_type",
    # Vocabulary database
    "FILTER_PROPERTIES",
    "NUCC_SYSTEM",
    "SOURCE_ABBREVIATIONS",
    "SourceAbbreviationResolver",
    "VocabularyDatabaseSource",
]
