"""
Terminology loader and validator builder.

- load_value_sets: bulk-register FHIR ValueSet JSON documents
- install_code_systems: copy CodeSystem JSON files under their encoded names
- build_validators: expand ValueSets and write membership indexes, CSV
  exports and a manifest.yml describing them
"""

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import yaml
from pydantic import ValidationError

from .code_systems import code_system_path
from .config import Settings, get_settings
from .context import TerminologyContext
from .exceptions import FilterOperationUnsupported, ImportCycleDetected, UnknownCodeSystem, UnknownValueSet
from .membership import MembershipIndex, default_bloom_path, default_csv_path, save_csv
from .models import ValueSetDefinition

logger = logging.getLogger(__name__)

# Strongest first
BINDING_STRENGTHS = ("required", "extensible", "preferred", "example")

VALIDATOR_TYPES = ("bloom", "csv")


def strengths_at_or_above(minimum: str) -> Tuple[str, ...]:
    """Binding strengths at least as strict as minimum."""
    if minimum not in BINDING_STRENGTHS:
        raise ValueError(f"Unknown binding strength: {minimum}. Allowed values are {list(BINDING_STRENGTHS)}")
    return BINDING_STRENGTHS[: BINDING_STRENGTHS.index(minimum) + 1]


def iter_resources(directory: Union[str, Path], resource_type: str) -> Iterator[Tuple[Path, Dict[str, Any]]]:
    """(path, resource) for every JSON file of the given resourceType under directory."""
    directory = Path(directory)
    if not directory.exists():
        logger.warning(f"Terminology directory not found: {directory}")
        return
    for path in sorted(directory.rglob("*.json")):
        try:
            with open(path, "r", encoding="utf-8") as f:
                resource = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable JSON {path}: {e}")
            continue
        if isinstance(resource, dict) and resource.get("resourceType") == resource_type:
            yield path, resource


def load_value_sets(
    context: TerminologyContext,
    directory: Union[str, Path],
    binding_strengths: Optional[Mapping[str, str]] = None,
) -> int:
    """
    Register every ValueSet found under directory.

    Args:
        context: Context in its load phase.
        directory: Directory (searched recursively) of FHIR JSON files.
        binding_strengths: Optional ValueSet URL -> binding strength.

    Returns:
        Number of ValueSets registered.
    """
    binding_strengths = binding_strengths or {}
    count = 0
    for path, resource in iter_resources(directory, "ValueSet"):
        try:
            definition = ValueSetDefinition.from_dict(
                resource, binding_strength=binding_strengths.get(resource.get("url"))
            )
        except ValidationError as e:
            logger.error(f"Invalid ValueSet in {path}: {e}")
            raise
        context.register(definition)
        count += 1
    logger.info(f"Loaded {count} ValueSets from {directory}")
    return count


def load_context(settings: Optional[Settings] = None) -> TerminologyContext:
    """
    A ready context built from settings.

    Registers every ValueSet under VALUE_SET_DIR and attaches the bloom
    validators listed in the manifest when one has been built.
    """
    settings = settings or get_settings()
    context = TerminologyContext.from_settings(settings)
    load_value_sets(context, settings.value_set_dir)
    if settings.manifest_path.exists():
        attach_indexes_from_manifest(context, settings.manifest_path)
    return context.ready()


def install_code_systems(source_dir: Union[str, Path], code_system_dir: Union[str, Path]) -> int:
    """
    Copy CodeSystem files that carry concepts into code_system_dir.

    Files are named by the encoded system URL so the registry can find them.
    """
    count = 0
    for path, resource in iter_resources(source_dir, "CodeSystem"):
        url = resource.get("url")
        if not url or not resource.get("concept"):
            logger.debug(f"Skipping CodeSystem without concepts: {url or path}")
            continue
        target = code_system_path(code_system_dir, url)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(path, target)
        count += 1
    logger.info(f"Installed {count} CodeSystems into {code_system_dir}")
    return count


@dataclass
class BuildReport:
    """Outcome of a validator build run."""
    entries: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)
    manifest_path: Optional[Path] = None

    @property
    def built_count(self) -> int:
        return len({entry["url"] for entry in self.entries})


def _select_definitions(context: TerminologyContext, minimum_binding_strength: Optional[str]) -> List[ValueSetDefinition]:
    if minimum_binding_strength is None:
        return context.repository.all()
    return context.repository.select_by_binding_strength(strengths_at_or_above(minimum_binding_strength))


def build_validators(
    context: TerminologyContext,
    output_dir: Union[str, Path],
    validator_types: Sequence[str] = VALIDATOR_TYPES,
    minimum_binding_strength: Optional[str] = None,
    min_size: int = 0,
) -> BuildReport:
    """
    Expand ValueSets and write their validator files plus manifest.yml.

    A ValueSet that cannot be expanded (unknown ValueSet/CodeSystem,
    unsupported filter, import cycle) is logged and reported as skipped so
    one bad definition does not stop the batch.

    Args:
        context: Ready terminology context.
        output_dir: Root directory; files go to bloom/ and csv/ beneath it.
        validator_types: Any of "bloom", "csv".
        minimum_binding_strength: Only ValueSets bound at least this strictly;
            None builds every registered ValueSet.
        min_size: Skip expansions with fewer codes than this.
    """
    unknown = set(validator_types) - set(VALIDATOR_TYPES)
    if unknown:
        raise ValueError(f"Unknown validator types: {sorted(unknown)}")

    output_dir = Path(output_dir)
    report = BuildReport()

    for definition in _select_definitions(context, minimum_binding_strength):
        value_set = context.value_set(definition.url)
        try:
            codes = value_set.code_set
        except (UnknownValueSet, UnknownCodeSystem, FilterOperationUnsupported, ImportCycleDetected) as e:
            logger.warning(f"{e} for ValueSet: {definition.url}")
            report.skipped.append({"url": definition.url, "reason": str(e)})
            continue

        if len(codes) < min_size:
            logger.debug(f"Skipping {definition.url}: {len(codes)} codes below minimum {min_size}")
            continue

        code_systems = sorted({code.system for code in codes})
        for validator_type in validator_types:
            if validator_type == "bloom":
                index = MembershipIndex.from_codes(codes, context.false_positive_rate)
                path = index.save(default_bloom_path(output_dir / "bloom", definition.url))
            else:
                path = save_csv(codes, default_csv_path(output_dir / "csv", definition.url))
            report.entries.append({
                "url": definition.url,
                "file": str(path.relative_to(output_dir)),
                "count": len(codes),
                "type": validator_type,
                "code_systems": code_systems,
            })
        logger.info(f"Built validators for {definition.url} ({len(codes)} codes)")

    report.manifest_path = write_manifest(report.entries, output_dir / "manifest.yml")
    logger.info(f"Built {report.built_count} ValueSet validators, skipped {len(report.skipped)}")
    return report


def write_manifest(entries: List[Dict[str, Any]], filename: Union[str, Path]) -> Path:
    path = Path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(entries, f, sort_keys=False)
    return path


def load_manifest(filename: Union[str, Path]) -> List[Dict[str, Any]]:
    with open(filename, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or []


def attach_indexes_from_manifest(context: TerminologyContext, manifest: Union[str, Path]) -> int:
    """Load every bloom validator listed in manifest and attach it to context."""
    manifest = Path(manifest)
    attached = 0
    for entry in load_manifest(manifest):
        if entry.get("type") != "bloom" or entry.get("url") not in context.repository:
            continue
        context.attach_index(entry["url"], MembershipIndex.load(manifest.parent / entry["file"]))
        attached += 1
    logger.info(f"Attached {attached} membership indexes from {manifest}")
    return attached
