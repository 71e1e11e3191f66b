#!/usr/bin/env python3
"""Stage 1 validation: check a Stage 1 document against its declared stage.

Checks, in this order (diagnostics come out in the same order):
  1. Essential fields: film_id, current_step, film_metadata, timestamp
  2. Story rules for the stage (logline/synopsis, treatment, scenario)
  3. Visual rules for the stage (visual_blocks and its three collections)
  4. Type rules for optional typed fields (JSON Schema)
  5. Unknown top-level fields (informational)

What is required depends only on current_step, looked up in
stage_policy.STAGE_POLICY. A document that has no scenario yet is fine while
its stage predates scenario development.

Usage:
  python -m stage1.validate_stage1 film.json \\
    [--config stage1.yaml] [--report report.json] [--write-repaired fixed.json]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from jsonschema import Draft202012Validator

from stage1.config import ConfigError, configure_logging, load_config
from stage1.diagnostics import Category, Diagnostic, Severity, ValidationResult
from stage1.lenient_parser import parse
from stage1.stage_policy import (
    ASSET_COLLECTIONS,
    LEGACY_STEP_REPLACEMENTS,
    as_object,
    is_truthy,
    parse_step,
    requirements_for,
)

logger = logging.getLogger(__name__)

KNOWN_ROOT_KEYS = (
    "film_id", "current_step", "timestamp",
    "film_metadata", "current_work", "visual_blocks",
)

# Type spot-checks. Only fields that are present are checked; presence and
# stage requirements are handled by the rule functions below.
TYPE_SCHEMA = {
    "type": "object",
    "properties": {
        "film_metadata": {
            "type": ["object", "null"],
            "properties": {
                "duration_minutes": {"type": "number"},
                "artist": {"type": ["string", "null"]},
            },
        },
        "current_work": {
            "type": ["object", "null"],
            "properties": {
                "logline": {"type": ["string", "null"]},
                "synopsis": {"type": ["string", "null"]},
                "treatment": {
                    "type": ["object", "null"],
                    "properties": {
                        "sequences": {"type": "array"},
                    },
                },
            },
        },
        "visual_blocks": {"type": ["object", "null"]},
    },
}

_TYPE_VALIDATOR = Draft202012Validator(TYPE_SCHEMA)

_TYPE_WORDS = {
    "object": "an object",
    "array": "an array",
    "string": "a string",
    "number": "a number",
    "integer": "an integer",
    "boolean": "a boolean",
    "null": "null",
}


def _diag(severity: Severity, category: Category, path: str, message: str,
          suggestion: str | None = None) -> Diagnostic:
    return Diagnostic(severity=severity, category=category, path=path,
                      message=message, suggestion=suggestion)


# ---------------------------------------------------------------------------
# Rule groups
# ---------------------------------------------------------------------------

def check_essential_fields(doc: dict) -> list[Diagnostic]:
    out = []
    film_id = doc.get("film_id")
    if not is_truthy(film_id):
        out.append(_diag(Severity.ERROR, Category.ESSENTIAL, "film_id",
                         "film_id is missing or empty."))
    elif not isinstance(film_id, str):
        out.append(_diag(Severity.ERROR, Category.SCHEMA, "film_id",
                         f"film_id must be a string, got {type(film_id).__name__}."))

    step = doc.get("current_step")
    if not is_truthy(step):
        out.append(_diag(Severity.ERROR, Category.ESSENTIAL, "current_step",
                         "current_step is missing."))
    elif parse_step(step) is None:
        replacement = LEGACY_STEP_REPLACEMENTS.get(step) if isinstance(step, str) else None
        message = f"Invalid current_step: {step!r}."
        if replacement is not None:
            message += f" '{step}' is a retired stage name; use '{replacement.value}'."
        out.append(_diag(Severity.ERROR, Category.SCHEMA, "current_step", message,
                         suggestion=replacement.value if replacement else None))

    if not is_truthy(doc.get("film_metadata")):
        out.append(_diag(Severity.ERROR, Category.ESSENTIAL, "film_metadata",
                         "film_metadata is missing."))
    if not is_truthy(doc.get("timestamp")):
        out.append(_diag(Severity.ERROR, Category.ESSENTIAL, "timestamp",
                         "timestamp is missing."))
    return out


def check_story(doc: dict) -> list[Diagnostic]:
    req = requirements_for(parse_step(doc.get("current_step")))
    work = as_object(doc.get("current_work"))
    out = []

    if req.needs_logline_synopsis:
        if not is_truthy(work.get("logline")):
            out.append(_diag(Severity.WARNING, Category.STORY, "current_work.logline",
                             "logline is missing."))
        if not is_truthy(work.get("synopsis")):
            out.append(_diag(Severity.WARNING, Category.STORY, "current_work.synopsis",
                             "synopsis is missing."))

    if req.needs_treatment:
        treatment = work.get("treatment")
        if not is_truthy(treatment):
            out.append(_diag(Severity.WARNING, Category.STORY, "current_work.treatment",
                             "treatment object is missing."))
        elif not is_truthy(as_object(treatment).get("treatment_title")):
            out.append(_diag(Severity.WARNING, Category.STORY,
                             "current_work.treatment.treatment_title",
                             "treatment_title is missing."))

    if req.needs_scenario:
        scenario = work.get("scenario")
        if not is_truthy(scenario):
            out.append(_diag(Severity.ERROR, Category.STORY, "current_work.scenario",
                             "scenario object is missing."))
        else:
            scenario = as_object(scenario)
            if not is_truthy(scenario.get("scenario_title")):
                out.append(_diag(Severity.WARNING, Category.STORY,
                                 "current_work.scenario.scenario_title",
                                 "scenario_title is missing."))
            scenes = scenario.get("scenes")
            if not isinstance(scenes, list) or not scenes:
                out.append(_diag(Severity.WARNING, Category.STORY,
                                 "current_work.scenario.scenes",
                                 "scenes array is empty or missing."))
    return out


def check_visual(doc: dict) -> list[Diagnostic]:
    req = requirements_for(parse_step(doc.get("current_step")))
    if not req.needs_visual_blocks:
        return []
    blocks = doc.get("visual_blocks")
    if not is_truthy(blocks):
        return [_diag(Severity.ERROR, Category.VISUAL, "visual_blocks",
                      "visual_blocks object is missing at the top level.")]
    blocks = as_object(blocks)
    out = []
    for key in ASSET_COLLECTIONS:
        collection = blocks.get(key)
        if not isinstance(collection, list):
            out.append(_diag(Severity.ERROR, Category.VISUAL, f"visual_blocks.{key}",
                             f"{key} array is missing."))
        elif not collection:
            out.append(_diag(Severity.WARNING, Category.VISUAL, f"visual_blocks.{key}",
                             f"{key} list is empty."))
    return out


def _describe_type(expected) -> str:
    if isinstance(expected, list):
        return " or ".join(_TYPE_WORDS.get(t, t) for t in expected)
    return _TYPE_WORDS.get(expected, str(expected))


def check_types(doc: dict) -> list[Diagnostic]:
    errors = sorted(
        _TYPE_VALIDATOR.iter_errors(doc),
        key=lambda e: [str(p) for p in e.absolute_path],
    )
    out = []
    for err in errors:
        path = ".".join(str(p) for p in err.absolute_path)
        if err.validator == "type":
            actual = type(err.instance).__name__ if err.instance is not None else "null"
            message = f"{path} must be {_describe_type(err.validator_value)}, got {actual}."
        else:
            message = f"{path}: {err.message}"
        out.append(_diag(Severity.ERROR, Category.SCHEMA, path, message))
    return out


def check_unknown_fields(doc: dict) -> list[Diagnostic]:
    return [
        _diag(Severity.INFO, Category.OTHER, key, f"Unknown top-level field: {key}")
        for key in doc
        if key not in KNOWN_ROOT_KEYS
    ]


def validate(document: dict) -> list[Diagnostic]:
    """Run every rule group over a parsed document. Never raises."""
    if not isinstance(document, dict):
        return [_diag(Severity.ERROR, Category.SCHEMA, "",
                      "Document must be a JSON object.")]
    diagnostics = []
    diagnostics.extend(check_essential_fields(document))
    diagnostics.extend(check_story(document))
    diagnostics.extend(check_visual(document))
    diagnostics.extend(check_types(document))
    diagnostics.extend(check_unknown_fields(document))
    logger.debug("Validated %s: %d diagnostic(s)", document.get("film_id"), len(diagnostics))
    return diagnostics


def check_text(raw_text, auto_repair: bool = True) -> ValidationResult:
    """Parse raw text and, if it is structurally valid, validate it.

    Parser diagnostics (repairs) come first, semantic ones after. A parse
    failure stops here without semantic checks.
    """
    result = parse(raw_text, auto_repair=auto_repair)
    if result.is_valid:
        result.extend(validate(result.document))
    return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate a Stage 1 JSON document.")
    parser.add_argument("file", help="Path to the Stage 1 JSON document")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--fail-on", choices=("error", "warning"),
                        help="Lowest severity that makes the run fail (overrides config)")
    parser.add_argument("--report", help="Write a JSON validation report to this path")
    parser.add_argument("--write-repaired", help="Write the auto-repaired text to this path")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    if args.fail_on:
        cfg.fail_on = args.fail_on
    configure_logging(cfg.log_level)

    try:
        raw = Path(args.file).read_bytes()
    except OSError as e:
        print(f"ERROR: cannot read {args.file}: {e}", file=sys.stderr)
        return 2

    print(f"Validating: {args.file}")
    result = check_text(raw, auto_repair=cfg.auto_repair)
    print()
    print(result.summary())

    if args.report:
        report = result.to_report()
        report["file"] = args.file
        with open(args.report, "w", encoding="utf-8") as f:
            json.dump(report, f, ensure_ascii=False, indent=2)
        print(f"\nReport written to {args.report}")

    if args.write_repaired and result.repaired_text is not None:
        with open(args.write_repaired, "w", encoding="utf-8") as f:
            f.write(result.repaired_text)
        print(f"Repaired text written to {args.write_repaired}")

    if not result.is_valid or result.has_at_least(cfg.fail_severity):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
