#!/usr/bin/env python3
"""
Command-line entry point for the value-set engine.

Usage:
    python -m valueset_engine.cli expand URL [--output FILE]
    python -m valueset_engine.cli contains URL SYSTEM CODE
    python -m valueset_engine.cli build-validators [--min-size N] [--types bloom csv]
                                                   [--binding-strength required]

Paths (vocabulary database, ValueSet and CodeSystem directories, output
directory) come from the environment or a .env file, see config.py.

Options (all subcommands):
    --log-level LEVEL   Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .config import get_settings
from .context import TerminologyContext
from .exceptions import TerminologyError
from . import loader
from .loader import BINDING_STRENGTHS, VALIDATOR_TYPES, build_validators
from .models import Code


def setup_logging(level: str = "INFO"):
    """Configure logging with specified level."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )
    return logging.getLogger(__name__)


def load_context() -> TerminologyContext:
    """Context with every ValueSet from the configured directory registered."""
    return loader.load_context(get_settings())


def cmd_expand(args, logger: logging.Logger) -> int:
    context = load_context()
    document = context.expansion_document(args.url)
    text = json.dumps(document, indent=2)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        logger.info(f"Wrote {document['expansion']['total']} codes to {args.output}")
    else:
        print(text)
    return 0


def cmd_contains(args, logger: logging.Logger) -> int:
    context = load_context()
    contained = context.contains(args.url, Code(args.system, args.code))
    print("true" if contained else "false")
    return 0 if contained else 1


def cmd_build_validators(args, logger: logging.Logger) -> int:
    settings = get_settings()
    context = load_context()
    output_dir = Path(args.output) if args.output else settings.validator_output_dir
    report = build_validators(
        context,
        output_dir,
        validator_types=args.types,
        minimum_binding_strength=args.binding_strength,
        min_size=args.min_size,
    )
    print(f"Built validators for {report.built_count} ValueSets")
    print(f"  Manifest: {report.manifest_path}")
    if report.skipped:
        print(f"  Skipped: {len(report.skipped)}")
        for entry in report.skipped:
            print(f"    {entry['url']}: {entry['reason']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", default=argparse.SUPPRESS, help="Logging level (default: LOG_LEVEL setting)")

    parser = argparse.ArgumentParser(
        description="FHIR ValueSet expansion and containment",
        parents=[common],
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    expand = subparsers.add_parser("expand", parents=[common], help="Expand a ValueSet")
    expand.add_argument("url", help="Canonical URL of the ValueSet")
    expand.add_argument("--output", default=None, help="Write the expanded ValueSet to this file")
    expand.set_defaults(handler=cmd_expand)

    contains = subparsers.add_parser("contains", parents=[common], help="Check membership of one code")
    contains.add_argument("url", help="Canonical URL of the ValueSet")
    contains.add_argument("system", help="Code system URL")
    contains.add_argument("code", help="Code")
    contains.set_defaults(handler=cmd_contains)

    build = subparsers.add_parser("build-validators", parents=[common], help="Write membership indexes")
    build.add_argument("--min-size", type=int, default=0, help="Skip expansions with fewer codes")
    build.add_argument("--types", nargs="+", choices=VALIDATOR_TYPES, default=list(VALIDATOR_TYPES))
    build.add_argument("--binding-strength", choices=BINDING_STRENGTHS, default=None,
                       help="Only ValueSets bound at least this strictly")
    build.add_argument("--output", default=None, help="Output directory (default: VALIDATOR_OUTPUT_DIR)")
    build.set_defaults(handler=cmd_build_validators)

    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logger = setup_logging(getattr(args, "log_level", None) or get_settings().log_level)

    try:
        return args.handler(args, logger)
    except TerminologyError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nCancelled by user.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
