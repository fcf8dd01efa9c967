"""
Tests for bulk loading and validator builds.
"""

import json

import pytest
from pydantic import ValidationError

from valueset_engine.code_systems import code_system_path
from valueset_engine.loader import (
    attach_indexes_from_manifest,
    build_validators,
    install_code_systems,
    load_manifest,
    load_value_sets,
    strengths_at_or_above,
)
from valueset_engine.membership import MembershipIndex, load_csv
from valueset_engine.models import Code

from .conftest import SNOMED, USPS, value_set

STATES = "http://example.org/vs/states"
HIERARCHY = "http://example.org/vs/hierarchy"
CYCLE_A = "http://example.org/vs/cycle-a"
CYCLE_B = "http://example.org/vs/cycle-b"


def write_json(path, resource):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(resource), encoding="utf-8")


@pytest.fixture
def value_set_dir(tmp_path):
    directory = tmp_path / "value_sets"
    write_json(directory / "states.json", value_set(STATES, include=[{"system": USPS}]))
    write_json(directory / "nested" / "hierarchy.json", value_set(HIERARCHY, include=[
        {"system": SNOMED, "filter": [{"property": "concept", "op": "is-a", "value": "200"}]},
    ]))
    write_json(directory / "cycle-a.json", value_set(CYCLE_A, include=[{"valueSet": [CYCLE_B]}]))
    write_json(directory / "cycle-b.json", value_set(CYCLE_B, include=[{"valueSet": [CYCLE_A]}]))
    write_json(directory / "code-system.json", {"resourceType": "CodeSystem", "url": "http://example.org/cs"})
    (directory / "broken.json").write_text("{not json", encoding="utf-8")
    return directory


class TestLoadValueSets:

    def test_loads_recursively_and_skips_other_resources(self, context, value_set_dir):
        count = load_value_sets(context, value_set_dir, binding_strengths={STATES: "required"})
        assert count == 4
        assert context.repository.find(STATES).binding_strength == "required"
        assert context.repository.find(HIERARCHY).binding_strength is None

    def test_missing_directory(self, context, tmp_path):
        assert load_value_sets(context, tmp_path / "absent") == 0

    def test_invalid_value_set_raises(self, context, tmp_path):
        write_json(tmp_path / "bad" / "vs.json", {"resourceType": "ValueSet"})
        with pytest.raises(ValidationError):
            load_value_sets(context, tmp_path / "bad")


class TestInstallCodeSystems:

    def test_copies_under_encoded_name(self, tmp_path):
        source_dir = tmp_path / "source"
        write_json(source_dir / "cs.json", {
            "resourceType": "CodeSystem", "url": "http://example.org/cs", "concept": [{"code": "a"}],
        })
        write_json(source_dir / "empty.json", {"resourceType": "CodeSystem", "url": "http://example.org/empty"})
        target_dir = tmp_path / "installed"

        assert install_code_systems(source_dir, target_dir) == 1
        assert code_system_path(target_dir, "http://example.org/cs").exists()


class TestBuildValidators:
    """Validator files and manifest."""

    def test_builds_files_and_reports_skips(self, context, value_set_dir, tmp_path):
        load_value_sets(context, value_set_dir)
        context.ready()
        output_dir = tmp_path / "validators"

        report = build_validators(context, output_dir)

        assert report.built_count == 2
        assert {entry["url"] for entry in report.skipped} == {CYCLE_A, CYCLE_B}
        manifest = load_manifest(report.manifest_path)
        assert len(manifest) == 4
        states_csv = [e for e in manifest if e["url"] == STATES and e["type"] == "csv"][0]
        assert states_csv["count"] == 59
        assert states_csv["code_systems"] == [USPS]
        assert len(load_csv(output_dir / states_csv["file"])) == 59

    def test_min_size_and_types(self, context, value_set_dir, tmp_path):
        load_value_sets(context, value_set_dir)
        context.ready()

        report = build_validators(context, tmp_path / "validators", validator_types=["bloom"], min_size=10)

        assert [entry["url"] for entry in report.entries] == [STATES]
        assert report.entries[0]["file"].endswith(".bloom")
        index = MembershipIndex.load(tmp_path / "validators" / report.entries[0]["file"])
        assert Code(USPS, "NY") in index

    def test_binding_strength_selection(self, context, value_set_dir, tmp_path):
        load_value_sets(context, value_set_dir, binding_strengths={HIERARCHY: "extensible", STATES: "example"})
        context.ready()

        report = build_validators(context, tmp_path / "validators", minimum_binding_strength="extensible")

        assert {entry["url"] for entry in report.entries} == {HIERARCHY}
        assert report.skipped == []

    def test_unknown_validator_type(self, context, tmp_path):
        context.ready()
        with pytest.raises(ValueError):
            build_validators(context, tmp_path, validator_types=["parquet"])

    def test_attach_indexes_from_manifest(self, context, value_set_dir, tmp_path):
        load_value_sets(context, value_set_dir)
        context.ready()
        report = build_validators(context, tmp_path / "validators", validator_types=["bloom"])

        assert attach_indexes_from_manifest(context, report.manifest_path) == 2
        assert context.contains(HIERARCHY, Code(SNOMED, "300"))
        assert not context.contains(HIERARCHY, Code(SNOMED, "100"))


class TestBindingStrengths:

    def test_strengths_at_or_above(self):
        assert strengths_at_or_above("required") == ("required",)
        assert strengths_at_or_above("preferred") == ("required", "extensible", "preferred")

    def test_unknown_strength(self):
        with pytest.raises(ValueError):
            strengths_at_or_above("mandatory")
