#!/usr/bin/env python3
"""Stage 1 merge: combine a narrative document with asset documents.

All inputs must share one film_id; any mismatch fails the whole merge and
names every offending file in a single error. The base ("main") document is
the first input at scenario_development or carrying a scenario, otherwise the
first input. A deep copy of the base seeds the result, so inputs are never
modified.

Asset records (characters, locations, props) from the other inputs are then
appended in input order, keyed by id. The base's own records win, then the
earliest file; later duplicates are dropped with a warning. If the merged
document holds any asset record, its current_step is advanced to
concept_art_blocks_completed (never moved backwards).

Usage:
  python -m stage1.merge_stage1 scenario.json characters.json props.json \\
    [--output merged.json] [--report merge_report.json] [--config stage1.yaml]
"""

from __future__ import annotations

import argparse
import copy
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from stage1.config import ConfigError, configure_logging, load_config
from stage1.lenient_parser import export_filename, format_json, parse
from stage1.stage_policy import (
    ASSET_COLLECTIONS,
    ASSETS_COMPLETED_STEP,
    Step,
    advance_step,
    as_object,
    classify_document,
    is_truthy,
    parse_step,
)
from stage1.validate_stage1 import check_text

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "UNKNOWN"


@dataclass
class MergeInput:
    name: str
    document: dict
    kind: str = "unknown"  # 'main' | 'asset' | 'unknown'
    identity: str = UNKNOWN_IDENTITY

    @classmethod
    def from_document(cls, name: str, document: dict) -> "MergeInput":
        film_id = document.get("film_id")
        identity = film_id if is_truthy(film_id) else UNKNOWN_IDENTITY
        return cls(name=name, document=document,
                   kind=classify_document(document), identity=identity)


@dataclass
class MergeResult:
    success: bool
    document: dict | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_report(self) -> dict:
        return {
            "success": self.success,
            "film_id": (self.document or {}).get("film_id"),
            "current_step": (self.document or {}).get("current_step"),
            "errors": self.errors,
            "warnings": self.warnings,
        }


def _is_main_candidate(doc: dict) -> bool:
    work = as_object(doc.get("current_work"))
    return (parse_step(doc.get("current_step")) is Step.SCENARIO_DEVELOPMENT
            or is_truthy(work.get("scenario")))


def select_base(inputs: list[MergeInput]) -> MergeInput:
    for item in inputs:
        if _is_main_candidate(item.document):
            return item
    return inputs[0]


def _seed_collections(merged: dict) -> dict:
    blocks = merged.get("visual_blocks")
    if not isinstance(blocks, dict):
        blocks = {}
        merged["visual_blocks"] = blocks
    for key in ASSET_COLLECTIONS:
        if not isinstance(blocks.get(key), list):
            blocks[key] = []
    return blocks


def _id_key(rid) -> str:
    """Hashable identity for a record id of any JSON type."""
    return json.dumps(rid, sort_keys=True, ensure_ascii=False, default=repr)


def _absorb(name: str, key: str, records: list, kept: list, seen: set, warnings: list) -> None:
    """Append records whose id is not yet in `seen`; warn about the rest."""
    for record in records:
        if not isinstance(record, dict):
            warnings.append(f"[{name}] non-object {key} entry ignored: {record!r}")
            continue
        rid = record.get("id")
        rkey = _id_key(rid)
        if rkey in seen:
            warnings.append(f"[{name}] duplicate {key} id ignored: {rid} ({record.get('name')})")
            continue
        kept.append(copy.deepcopy(record))
        seen.add(rkey)


def merge(inputs: list[MergeInput]) -> MergeResult:
    """Merge Stage 1 documents that share a film_id into a new document."""
    result = MergeResult(success=False)
    if not inputs:
        result.errors.append("No files to merge.")
        return result

    expected = inputs[0].identity
    mismatched = [item.name for item in inputs if item.identity != expected]
    if mismatched:
        result.errors.append(
            f"All files must share the same film_id "
            f"(expected: {expected}, mismatched: {', '.join(mismatched)})"
        )
        return result

    base = select_base(inputs)
    logger.debug("Merge base: %s (%s)", base.name, base.kind)
    merged = copy.deepcopy(base.document)
    blocks = _seed_collections(merged)
    seen: dict[str, set] = {key: set() for key in ASSET_COLLECTIONS}
    for key in ASSET_COLLECTIONS:
        base_records, blocks[key] = blocks[key], []
        _absorb(base.name, key, base_records, blocks[key], seen[key], result.warnings)

    for item in inputs:
        if item is base:
            continue
        source = as_object(item.document.get("visual_blocks"))
        for key in ASSET_COLLECTIONS:
            records = source.get(key)
            if isinstance(records, list):
                _absorb(item.name, key, records, blocks[key], seen[key], result.warnings)

    if any(blocks[key] for key in ASSET_COLLECTIONS):
        before = merged.get("current_step")
        merged["current_step"] = advance_step(before, ASSETS_COMPLETED_STEP)
        if merged["current_step"] != before:
            logger.debug("current_step advanced: %s -> %s", before, merged["current_step"])

    result.success = True
    result.document = merged
    return result


def load_merge_inputs(paths: list[str], auto_repair: bool = True) -> tuple[list[MergeInput], list[str]]:
    """Read and parse files for a merge. Unusable files are reported and skipped."""
    inputs: list[MergeInput] = []
    errors: list[str] = []
    for path in paths:
        name = Path(path).name
        try:
            raw = Path(path).read_bytes()
        except OSError as e:
            errors.append(f"[{name}] cannot read file: {e}")
            continue
        parsed = parse(raw, auto_repair=auto_repair)
        if not parsed.is_valid:
            detail = "; ".join(str(d) for d in parsed.errors)
            errors.append(f"[{name}] failed to parse: {detail}")
            continue
        inputs.append(MergeInput.from_document(name, parsed.document))
    return inputs, errors


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Merge Stage 1 JSON documents sharing a film_id.")
    parser.add_argument("files", nargs="+", help="Stage 1 JSON documents (main and asset files)")
    parser.add_argument("--output", help="Merged document path (default: <film_id>_stage1_<version>.json)")
    parser.add_argument("--report", help="Write a JSON merge report to this path")
    parser.add_argument("--config", help="YAML config file")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    configure_logging(cfg.log_level)

    inputs, load_errors = load_merge_inputs(args.files, auto_repair=cfg.auto_repair)
    for msg in load_errors:
        print(f"ERROR: {msg}", file=sys.stderr)
    if not inputs:
        print("ERROR: no valid JSON files to merge", file=sys.stderr)
        return 2

    print(f"Merging {len(inputs)} file(s):")
    for item in inputs:
        print(f"  - {item.name} [{item.kind}] film_id={item.identity}")

    result = merge(inputs)
    report = result.to_report()

    if not result.success:
        print("\nMERGE FAILED:")
        for e in result.errors:
            print(f"  ✗ {e}")
        exit_code = 1
    else:
        if result.warnings:
            print(f"\nWARNINGS ({len(result.warnings)}):")
            for w in result.warnings:
                print(f"  ⚠ {w}")
        text = format_json(result.document, indent=cfg.indent)
        validation = check_text(text, auto_repair=False)
        print()
        print(validation.summary())
        report["validation"] = validation.to_report()

        output = args.output or export_filename(result.document, cfg.export_version)
        with open(output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"\nMerged document written to {output}")
        report["output"] = output
        exit_code = 1 if validation.has_at_least(cfg.fail_severity) else 0

    if args.report:
        with open(args.report, "w", encoding="utf-8") as f:
            json.dump(report, f, ensure_ascii=False, indent=2)
        print(f"Report written to {args.report}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
