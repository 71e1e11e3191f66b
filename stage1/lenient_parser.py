"""Lenient JSON parser for Stage 1 documents.

Raw text is parsed strictly first. If that fails, a short ordered list of
repair heuristics is tried. Each heuristic is a pure text -> text function;
they are applied cumulatively and the strict parser is re-run after every one
that changed the text. The first candidate that parses wins and every applied
heuristic is reported as a diagnostic. If none succeeds, the original syntax
error is reported with its line, column and a best-effort document path.

Repairs cover the usual damage in hand-edited or model-generated JSON:
  1. Markdown code fences around the payload
  2. Trailing commas before a closing bracket
  3. Missing commas between members split over lines
  4. Truncated output (unterminated string, unclosed brackets)
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, NamedTuple

from stage1.diagnostics import Category, Diagnostic, Severity, ValidationResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tokenizer (string-aware, tolerant of broken input)
# ---------------------------------------------------------------------------

class _Token(NamedTuple):
    kind: str  # one of '{', '}', '[', ']', ',', ':', 'string', 'open_string', 'literal'
    start: int
    end: int


_WHITESPACE = " \t\r\n"
_DELIMITERS = _WHITESPACE + '"{}[],:'

_VALUE_END = ("string", "literal", "}", "]")
_VALUE_START = ("string", "open_string", "literal", "{", "[")


def _tokenize(text: str) -> list[_Token]:
    tokens = []
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch in _WHITESPACE:
            i += 1
            continue
        if ch == '"':
            j = i + 1
            while j < n:
                if text[j] == "\\":
                    j += 2
                    continue
                if text[j] == '"':
                    break
                j += 1
            if j >= n:
                tokens.append(_Token("open_string", i, n))
                break
            tokens.append(_Token("string", i, j + 1))
            i = j + 1
            continue
        if ch in "{}[],:":
            tokens.append(_Token(ch, i, i + 1))
            i += 1
            continue
        j = i
        while j < n and text[j] not in _DELIMITERS:
            j += 1
        tokens.append(_Token("literal", i, j))
        i = j
    return tokens


# ---------------------------------------------------------------------------
# Repair heuristics
# ---------------------------------------------------------------------------

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_-]*")


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences wrapped around the payload."""
    stripped = text.strip()
    if not (stripped.startswith("```") or stripped.endswith("```")):
        return text
    if stripped.startswith("```"):
        stripped = _FENCE_OPEN_RE.sub("", stripped, count=1)
    if stripped.endswith("```"):
        stripped = stripped[:-3]
    return stripped.strip()


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing '}' or ']'."""
    tokens = _tokenize(text)
    drop = [
        tok.start for tok, nxt in zip(tokens, tokens[1:])
        if tok.kind == "," and nxt.kind in ("}", "]")
    ]
    if not drop:
        return text
    out = []
    prev = 0
    for pos in drop:
        out.append(text[prev:pos])
        prev = pos + 1
    out.append(text[prev:])
    return "".join(out)


def insert_missing_commas(text: str) -> str:
    """Add a comma between two values separated only by a line break."""
    tokens = _tokenize(text)
    inserts = [
        tok.end for tok, nxt in zip(tokens, tokens[1:])
        if tok.kind in _VALUE_END and nxt.kind in _VALUE_START
        and "\n" in text[tok.end:nxt.start]
    ]
    if not inserts:
        return text
    out = []
    prev = 0
    for pos in inserts:
        out.append(text[prev:pos])
        out.append(",")
        prev = pos
    out.append(text[prev:])
    return "".join(out)


def close_open_structures(text: str) -> str:
    """Terminate a truncated document: close the open string, then brackets."""
    tokens = _tokenize(text)
    if not tokens:
        return text
    repaired = text.rstrip()
    last = tokens[-1]
    if last.kind == "open_string":
        # An odd run of trailing backslashes would escape our closing quote.
        trailing = len(repaired) - len(repaired.rstrip("\\"))
        if trailing % 2 == 1:
            repaired = repaired[:-1]
        repaired += '"'

    stack = []
    for tok in tokens:
        if tok.kind in ("{", "["):
            stack.append(tok.kind)
        elif tok.kind in ("}", "]") and stack:
            if (stack[-1], tok.kind) in (("{", "}"), ("[", "]")):
                stack.pop()
    if not stack:
        return repaired if last.kind == "open_string" else text

    # A dangling separator cannot be closed directly.
    significant = [t for t in tokens if t.kind != "open_string"]
    if last.kind != "open_string" and significant:
        tail = significant[-1]
        if tail.kind == ",":
            repaired = repaired[:tail.start].rstrip()
        elif tail.kind == ":":
            repaired += " null"

    closers = {"{": "}", "[": "]"}
    return repaired + "".join(closers[b] for b in reversed(stack))


class Repair(NamedTuple):
    name: str
    fix: Callable[[str], str]
    severity: Severity
    description: str


REPAIRS: tuple[Repair, ...] = (
    Repair("strip_code_fences", strip_code_fences, Severity.INFO,
           "Removed Markdown code fences around the JSON payload."),
    Repair("remove_trailing_commas", remove_trailing_commas, Severity.WARNING,
           "Removed trailing comma(s) before a closing bracket."),
    Repair("insert_missing_commas", insert_missing_commas, Severity.WARNING,
           "Inserted missing comma(s) between values on separate lines."),
    Repair("close_open_structures", close_open_structures, Severity.WARNING,
           "Closed an unterminated string and/or unclosed brackets at the end of the input."),
)


# ---------------------------------------------------------------------------
# Error location
# ---------------------------------------------------------------------------

def _path_at(text: str, pos: int) -> str:
    """Best-effort dotted path of the member being parsed at `pos`."""
    frames: list[dict] = []
    for tok in _tokenize(text[:pos]):
        if tok.kind == "{":
            frames.append({"kind": "object", "key": None, "expect_key": True})
        elif tok.kind == "[":
            frames.append({"kind": "array", "index": 0})
        elif tok.kind in ("}", "]"):
            if frames:
                frames.pop()
        elif tok.kind == ",":
            if frames and frames[-1]["kind"] == "object":
                frames[-1]["key"] = None
                frames[-1]["expect_key"] = True
            elif frames:
                frames[-1]["index"] += 1
        elif tok.kind in ("string", "open_string"):
            top = frames[-1] if frames else None
            if top and top["kind"] == "object" and top["expect_key"]:
                raw = text[tok.start + 1:tok.end - 1] if tok.kind == "string" else text[tok.start + 1:tok.end]
                top["key"] = raw
                top["expect_key"] = False

    path = ""
    for frame in frames:
        if frame["kind"] == "array":
            path += f"[{frame['index']}]"
        else:
            if frame["key"] is None:
                break
            path = f"{path}.{frame['key']}" if path else frame["key"]
    return path


def _line_col(text: str, pos: int) -> tuple[int, int]:
    line = text.count("\n", 0, pos) + 1
    col = pos - (text.rfind("\n", 0, pos) + 1) + 1
    return line, col


def _changed_snippet(before: str, after: str, width: int = 30) -> tuple[int, str]:
    """Position of the first change in `before` and a snippet of `after` around it."""
    i = 0
    limit = min(len(before), len(after))
    while i < limit and before[i] == after[i]:
        i += 1
    start = max(0, i - width)
    return i, after[start:i + width].strip()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _reject_constant(name: str):
    raise ValueError(f"Invalid literal '{name}' (NaN/Infinity are not JSON)")


def strict_parse(text: str):
    """Standard JSON parse; rejects NaN/Infinity like browsers do."""
    return json.loads(text, parse_constant=_reject_constant)


def _try_parse(text: str):
    try:
        return strict_parse(text), None
    # JSONDecodeError is a ValueError; deep nesting overflows the decoder.
    except (ValueError, RecursionError) as e:
        return None, e


def _syntax_diagnostic(text: str, err: Exception) -> Diagnostic:
    if isinstance(err, json.JSONDecodeError):
        return Diagnostic(
            severity=Severity.ERROR,
            category=Category.SCHEMA,
            path=_path_at(text, err.pos),
            message=f"Invalid JSON: {err.msg}",
            line=err.lineno,
            column=err.colno,
        )
    if isinstance(err, RecursionError):
        return Diagnostic(
            severity=Severity.ERROR,
            category=Category.SCHEMA,
            path="",
            message="Invalid JSON: nesting too deep to parse",
        )
    return Diagnostic(
        severity=Severity.ERROR,
        category=Category.SCHEMA,
        path="",
        message=f"Invalid JSON: {err}",
    )


def _not_an_object(value) -> Diagnostic:
    return Diagnostic(
        severity=Severity.ERROR,
        category=Category.SCHEMA,
        path="",
        message=f"Top-level JSON value must be an object, got {type(value).__name__}",
    )


def _decode(raw: bytes) -> tuple[str, Diagnostic | None]:
    try:
        return raw.decode("utf-8-sig"), None
    except UnicodeDecodeError:
        text = raw.decode("utf-8-sig", errors="replace")
    replaced = text.count("\ufffd") - raw.count(b"\xef\xbf\xbd")
    return text, Diagnostic(
        severity=Severity.WARNING,
        category=Category.SCHEMA,
        path="",
        message=(f"Input is not valid UTF-8; {replaced} undecodable byte sequence(s) "
                 "replaced with U+FFFD"),
    )


def parse(raw_text, auto_repair: bool = True) -> ValidationResult:
    """Parse raw text into a Stage 1 document, repairing it if necessary.

    Bytes are decoded as UTF-8 (a BOM is dropped); undecodable sequences are
    replaced and reported as a warning ahead of the other diagnostics.
    Never raises for bad input; all problems are reported in the result.
    """
    if isinstance(raw_text, (bytes, bytearray)):
        text, decode_warning = _decode(bytes(raw_text))
    else:
        text, decode_warning = raw_text or "", None

    result = _parse_text(text, auto_repair)
    if decode_warning is not None:
        result.diagnostics.insert(0, decode_warning)
    return result


def _parse_text(text: str, auto_repair: bool) -> ValidationResult:
    if not text.strip():
        return ValidationResult(
            is_valid=False,
            diagnostics=[Diagnostic(Severity.ERROR, Category.SCHEMA, "", "Input is empty")],
        )

    document, err = _try_parse(text)
    if err is None:
        if not isinstance(document, dict):
            return ValidationResult(is_valid=False, diagnostics=[_not_an_object(document)])
        return ValidationResult(is_valid=True, document=document)

    logger.debug("Strict parse failed: %s", err)
    if auto_repair:
        candidate = text
        applied: list[Diagnostic] = []
        for repair in REPAIRS:
            fixed = repair.fix(candidate)
            if fixed == candidate:
                continue
            pos, snippet = _changed_snippet(candidate, fixed)
            line, col = _line_col(candidate, pos)
            applied.append(Diagnostic(
                severity=repair.severity,
                category=Category.SCHEMA,
                path=_path_at(candidate, pos),
                message=f"Auto-fix ({repair.name}): {repair.description}",
                suggestion=snippet or None,
                line=line,
                column=col,
            ))
            candidate = fixed
            document, retry_err = _try_parse(candidate)
            logger.debug("Repair %s applied; reparse %s", repair.name,
                         "succeeded" if retry_err is None else f"failed: {retry_err}")
            if retry_err is None:
                if not isinstance(document, dict):
                    return ValidationResult(is_valid=False, diagnostics=[_not_an_object(document)])
                return ValidationResult(
                    is_valid=True,
                    diagnostics=applied,
                    repaired_text=candidate,
                    repair_count=len(applied),
                    document=document,
                )

    return ValidationResult(is_valid=False, diagnostics=[_syntax_diagnostic(text, err)])


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def format_json(document, indent: int = 2) -> str:
    return json.dumps(document, ensure_ascii=False, indent=indent)


_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]+")


def export_filename(document: dict, version: str = "v1.1") -> str:
    film_id = document.get("film_id")
    if not isinstance(film_id, str) or not film_id:
        film_id = "UNKNOWN"
    return f"{_UNSAFE_FILENAME_CHARS.sub('_', film_id)}_stage1_{version}.json"
