"""
Tests for compose evaluation: includes, excludes, imports and expansions.
"""

import threading

import pytest

from valueset_engine.code_systems.static import FORMAT_CODES_VALUE_SET, IHE_FORMAT_CODE_SYSTEM
from valueset_engine.context import TerminologyContext
from valueset_engine.exceptions import ImportCycleDetected, UnknownCodeSystem, UnknownValueSet
from valueset_engine.models import TOO_COSTLY_URL, UNCLOSED_URL, Code, ValueSetDefinition, code_set

from .conftest import LOINC, SNOMED, USPS, value_set


def register(context, *documents, **kwargs):
    for document in documents:
        context.register(ValueSetDefinition.from_dict(document, **kwargs))
    return context.ready()


class TestLiteralCompose:
    """Concept lists, system includes and excludes."""

    def test_literal_union(self, context):
        register(context, value_set("http://example.org/vs/literal", include=[
            {"system": SNOMED, "concept": [{"code": "100"}, {"code": "200"}]},
            {"system": LOINC, "concept": [{"code": "1-1"}]},
        ]))
        assert context.expand("http://example.org/vs/literal") == {
            Code(SNOMED, "100"), Code(SNOMED, "200"), Code(LOINC, "1-1"),
        }

    def test_literal_codes_not_checked_against_system(self, context):
        register(context, value_set("http://example.org/vs/unchecked", include=[
            {"system": "http://example.org/not-a-known-system", "concept": [{"code": "x"}]},
        ]))
        assert context.expand("http://example.org/vs/unchecked") == {
            Code("http://example.org/not-a-known-system", "x")
        }

    def test_include_minus_exclude(self, context):
        register(context, value_set(
            "http://example.org/vs/a-minus-b",
            include=[{"system": SNOMED, "filter": [{"property": "concept", "op": "is-a", "value": "100"}]}],
            exclude=[{"system": SNOMED, "concept": [{"code": "200"}]}],
        ))
        assert context.expand("http://example.org/vs/a-minus-b") == code_set(SNOMED, ["100", "300"])

    def test_excluding_absent_code_changes_nothing(self, context):
        register(
            context,
            value_set(
                "http://example.org/vs/exclude-absent",
                include=[{"system": SNOMED, "filter": [{"property": "concept", "op": "is-a", "value": "100"}]}],
                exclude=[
                    {"system": SNOMED, "concept": [{"code": "400"}]},
                    {"system": LOINC, "concept": [{"code": "100"}]},
                ],
            ),
            value_set(
                "http://example.org/vs/include-only",
                include=[{"system": SNOMED, "filter": [{"property": "concept", "op": "is-a", "value": "100"}]}],
            ),
        )
        assert context.expand("http://example.org/vs/exclude-absent") == context.expand(
            "http://example.org/vs/include-only"
        )
        assert context.expand("http://example.org/vs/exclude-absent") == code_set(SNOMED, ["100", "200", "300"])

    def test_usps_state_scenario(self, context):
        register(context, value_set("http://example.org/vs/usps", include=[{"system": USPS}]))
        codes = context.expand("http://example.org/vs/usps")
        assert len(codes) == 59
        assert context.contains("http://example.org/vs/usps", Code(USPS, "CA"))
        assert not context.contains("http://example.org/vs/usps", Code(USPS, "ZZ"))

    def test_empty_compose(self, context):
        register(context, value_set("http://example.org/vs/empty"))
        assert context.expand("http://example.org/vs/empty") == frozenset()

    def test_unknown_system_propagates(self, context):
        register(context, value_set("http://example.org/vs/unknown-system", include=[
            {"system": "http://example.org/unmapped", "filter": [{"property": "DOC", "op": "=", "value": "X"}]},
        ]))
        with pytest.raises(UnknownCodeSystem):
            context.expand("http://example.org/vs/unknown-system")


class TestExpansions:
    """Use of pre-computed expansions."""

    def test_trusted_expansion_used(self, context):
        register(context, value_set(
            "http://example.org/vs/expanded",
            include=[{"system": SNOMED}],
            expansion={"contains": [{"system": SNOMED, "code": "400"}]},
        ))
        assert context.expand("http://example.org/vs/expanded") == code_set(SNOMED, ["400"])

    @pytest.mark.parametrize("flag", [TOO_COSTLY_URL, UNCLOSED_URL])
    def test_incomplete_expansion_falls_back_to_compose(self, context, flag):
        register(context, value_set(
            "http://example.org/vs/costly",
            include=[{"system": SNOMED, "concept": [{"code": "100"}, {"code": "200"}]}],
            expansion={
                "extension": [{"url": flag, "valueBoolean": True}],
                "contains": [{"system": SNOMED, "code": "100"}],
            },
        ))
        assert context.expand("http://example.org/vs/costly") == code_set(SNOMED, ["100", "200"])

    def test_expansions_ignored_when_disabled(self, vocabulary):
        context = TerminologyContext(vocabulary=vocabulary, use_expansions=False)
        register(context, value_set(
            "http://example.org/vs/ignored",
            include=[{"system": SNOMED, "concept": [{"code": "100"}]}],
            expansion={"contains": [{"system": SNOMED, "code": "400"}]},
        ))
        assert context.expand("http://example.org/vs/ignored") == code_set(SNOMED, ["100"])


class TestImports:
    """compose.include.valueSet references."""

    def test_import_only_clause(self, context):
        register(
            context,
            value_set("http://example.org/vs/base", include=[{"system": SNOMED, "concept": [{"code": "100"}]}]),
            value_set("http://example.org/vs/importer", include=[{"valueSet": ["http://example.org/vs/base"]}]),
        )
        assert context.expand("http://example.org/vs/importer") == code_set(SNOMED, ["100"])

    def test_imports_intersect_with_each_other_and_system(self, context):
        register(
            context,
            value_set("http://example.org/vs/x", include=[
                {"system": SNOMED, "concept": [{"code": "100"}, {"code": "200"}, {"code": "300"}]},
            ]),
            value_set("http://example.org/vs/y", include=[
                {"system": SNOMED, "concept": [{"code": "200"}, {"code": "300"}, {"code": "400"}]},
            ]),
            value_set("http://example.org/vs/z", include=[{
                "system": SNOMED,
                "filter": [{"property": "concept", "op": "is-a", "value": "200"}],
                "valueSet": ["http://example.org/vs/x", "http://example.org/vs/y"],
            }]),
        )
        assert context.expand("http://example.org/vs/z") == code_set(SNOMED, ["200", "300"])

    def test_unknown_import_raises(self, context):
        register(context, value_set(
            "http://example.org/vs/dangling", include=[{"valueSet": ["http://example.org/vs/missing"]}],
        ))
        with pytest.raises(UnknownValueSet):
            context.expand("http://example.org/vs/dangling")

    def test_import_cycle_detected(self, context):
        register(
            context,
            value_set("http://example.org/vs/p", include=[{"valueSet": ["http://example.org/vs/q"]}]),
            value_set("http://example.org/vs/q", include=[{"valueSet": ["http://example.org/vs/p"]}]),
        )
        with pytest.raises(ImportCycleDetected) as exc_info:
            context.expand("http://example.org/vs/p")
        assert exc_info.value.path == [
            "http://example.org/vs/p", "http://example.org/vs/q", "http://example.org/vs/p",
        ]

    def test_self_import_detected(self, context):
        register(context, value_set(
            "http://example.org/vs/self", include=[{"valueSet": ["http://example.org/vs/self"]}],
        ))
        with pytest.raises(ImportCycleDetected):
            context.expand("http://example.org/vs/self")

    def test_trusted_expansion_breaks_cycle(self, context):
        register(
            context,
            value_set(
                "http://example.org/vs/r",
                include=[{"valueSet": ["http://example.org/vs/s"]}],
                expansion={"contains": [{"system": SNOMED, "code": "100"}]},
            ),
            value_set("http://example.org/vs/s", include=[{"valueSet": ["http://example.org/vs/r"]}]),
        )
        assert context.expand("http://example.org/vs/s") == code_set(SNOMED, ["100"])


class TestValueSetBackedSystem:

    def test_format_codes_system_expands_value_set(self, context):
        register(
            context,
            value_set(FORMAT_CODES_VALUE_SET, include=[{
                "system": IHE_FORMAT_CODE_SYSTEM,
                "concept": [{"code": "urn:ihe:pcc:xphr:2007"}, {"code": "urn:ihe:iti:xds:2017:mimeTypeSufficient"}],
            }]),
            value_set("http://example.org/vs/formats", include=[{"system": IHE_FORMAT_CODE_SYSTEM}]),
        )
        assert context.expand("http://example.org/vs/formats") == code_set(
            IHE_FORMAT_CODE_SYSTEM, ["urn:ihe:pcc:xphr:2007", "urn:ihe:iti:xds:2017:mimeTypeSufficient"]
        )


def expand_with_timeout(context, url, timeout=5):
    """Run context.expand in a worker thread; returns (finished, result or exception)."""
    outcome = {}

    def run():
        try:
            outcome["result"] = context.expand(url)
        except Exception as e:
            outcome["error"] = e

    worker = threading.Thread(target=run, daemon=True)
    worker.start()
    worker.join(timeout)
    return not worker.is_alive(), outcome


class TestSelfReferentialFormatCodes:
    """The format-code system is enumerated from the formatcodes ValueSet."""

    def test_format_codes_composed_from_own_system_is_a_cycle(self, context):
        register(context, value_set(FORMAT_CODES_VALUE_SET, include=[{"system": IHE_FORMAT_CODE_SYSTEM}]))

        finished, outcome = expand_with_timeout(context, FORMAT_CODES_VALUE_SET)

        assert finished
        assert isinstance(outcome.get("error"), ImportCycleDetected)
        assert outcome["error"].path == [FORMAT_CODES_VALUE_SET, FORMAT_CODES_VALUE_SET]

    def test_cycle_through_untrusted_expansion(self, context):
        register(context, value_set(
            FORMAT_CODES_VALUE_SET,
            include=[{"system": IHE_FORMAT_CODE_SYSTEM}],
            expansion={
                "extension": [{"url": TOO_COSTLY_URL, "valueBoolean": True}],
                "contains": [{"system": IHE_FORMAT_CODE_SYSTEM, "code": "urn:ihe:pcc:xphr:2007"}],
            },
        ))

        finished, outcome = expand_with_timeout(context, FORMAT_CODES_VALUE_SET)

        assert finished
        assert isinstance(outcome.get("error"), ImportCycleDetected)

    def test_indirect_cycle_via_other_value_set(self, vocabulary):
        context = TerminologyContext(vocabulary=vocabulary, use_expansions=False)
        register(
            context,
            value_set(FORMAT_CODES_VALUE_SET, include=[{"valueSet": ["http://example.org/vs/documents"]}]),
            value_set("http://example.org/vs/documents", include=[{"system": IHE_FORMAT_CODE_SYSTEM}]),
        )

        finished, outcome = expand_with_timeout(context, "http://example.org/vs/documents")

        assert finished
        assert outcome["error"].path == [
            "http://example.org/vs/documents", FORMAT_CODES_VALUE_SET, "http://example.org/vs/documents",
        ]

    def test_trusted_expansion_has_no_cycle(self, context):
        register(context, value_set(
            FORMAT_CODES_VALUE_SET,
            include=[{"system": IHE_FORMAT_CODE_SYSTEM}],
            expansion={"contains": [{"system": IHE_FORMAT_CODE_SYSTEM, "code": "urn:ihe:pcc:xphr:2007"}]},
        ))
        assert context.expand(FORMAT_CODES_VALUE_SET) == code_set(IHE_FORMAT_CODE_SYSTEM, ["urn:ihe:pcc:xphr:2007"])


class TestMemoization:

    def test_expansion_memoized(self, context):
        register(context, value_set("http://example.org/vs/memo", include=[{"system": SNOMED}]))
        first = context.expand("http://example.org/vs/memo")
        assert context.repository.find("http://example.org/vs/memo").is_expanded
        assert context.expand("http://example.org/vs/memo") is first

    def test_unknown_url(self, context):
        context.ready()
        with pytest.raises(UnknownValueSet):
            context.expand("http://example.org/vs/nowhere")
