"""Diagnostic records shared by the parser, validator and merger.

A Diagnostic is one reported issue: severity, category, dotted path into the
document, a message, and optionally a suggested replacement snippet. Syntax
diagnostics also carry a 1-based line/column.

ValidationResult bundles the outcome of a parse (plus any semantic checks
appended afterwards). `is_valid` reflects structural parsing only; semantic
errors are reported but never flip it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Category(str, Enum):
    ESSENTIAL = "essential"
    SCHEMA = "schema"
    STORY = "story"
    VISUAL = "visual"
    OTHER = "other"


# Higher number = more serious. Used for --fail-on thresholds.
SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
}


@dataclass
class Diagnostic:
    severity: Severity
    category: Category
    path: str
    message: str
    suggestion: str | None = None
    line: int | None = None
    column: int | None = None

    def to_dict(self) -> dict:
        out = {
            "severity": self.severity.value,
            "category": self.category.value,
            "path": self.path,
            "message": self.message,
        }
        if self.suggestion is not None:
            out["suggestion"] = self.suggestion
        if self.line is not None:
            out["line"] = self.line
            out["column"] = self.column
        return out

    def __str__(self) -> str:
        where = self.path or "(root)"
        if self.line is not None:
            where = f"{where} @ line {self.line}, column {self.column}"
        text = f"[{self.category.value}] {where}: {self.message}"
        if self.suggestion:
            text += f" (suggestion: {self.suggestion})"
        return text


@dataclass
class ValidationResult:
    is_valid: bool
    diagnostics: list[Diagnostic] = field(default_factory=list)
    repaired_text: str | None = None
    repair_count: int = 0
    document: dict | None = None

    def extend(self, diagnostics) -> None:
        self.diagnostics.extend(diagnostics)

    def by_severity(self, severity: Severity) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == severity]

    @property
    def errors(self) -> list[Diagnostic]:
        return self.by_severity(Severity.ERROR)

    @property
    def warnings(self) -> list[Diagnostic]:
        return self.by_severity(Severity.WARNING)

    @property
    def infos(self) -> list[Diagnostic]:
        return self.by_severity(Severity.INFO)

    def has_at_least(self, severity: Severity) -> bool:
        """True if any diagnostic is at or above the given severity."""
        threshold = SEVERITY_RANK[severity]
        return any(SEVERITY_RANK[d.severity] >= threshold for d in self.diagnostics)

    def summary(self) -> str:
        lines = []
        if not self.is_valid:
            lines.append("SYNTAX: invalid JSON (no semantic checks run)")
        elif self.repair_count:
            lines.append(f"SYNTAX: repaired ({self.repair_count} fix(es) applied)")
        else:
            lines.append("SYNTAX: ok")
        errors, warnings, infos = self.errors, self.warnings, self.infos
        if errors:
            lines.append(f"ERRORS ({len(errors)}):")
            for d in errors:
                lines.append(f"  ✗ {d}")
        if warnings:
            lines.append(f"WARNINGS ({len(warnings)}):")
            for d in warnings:
                lines.append(f"  ⚠ {d}")
        if infos:
            lines.append(f"INFO ({len(infos)}):")
            for d in infos:
                lines.append(f"  · {d}")
        if not self.diagnostics:
            lines.append("✓ All checks passed")
        elif not errors:
            lines.append(f"✓ No errors ({len(warnings)} warnings)")
        return "\n".join(lines)

    def to_report(self) -> dict:
        return {
            "valid": self.is_valid,
            "repair_count": self.repair_count,
            "repaired": self.repaired_text is not None,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "info_count": len(self.infos),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
