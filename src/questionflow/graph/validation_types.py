"""Result types for whole-graph invariant audits."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Literal

Severity = Literal["pass", "warn", "fail"]


@dataclass
class ValidationCheck:
    """Outcome of one invariant check.

    ``node_ids`` names the offending nodes for warnings and failures so the
    editor can highlight them; passing checks leave it empty.
    """

    name: str
    severity: Severity
    message: str = ""
    node_ids: list[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    """All checks from one audit, in the order they ran."""

    checks: list[ValidationCheck] = field(default_factory=list)

    def with_severity(self, severity: Severity) -> list[ValidationCheck]:
        return [c for c in self.checks if c.severity == severity]

    def failed(self) -> list[ValidationCheck]:
        return self.with_severity("fail")

    @property
    def has_failures(self) -> bool:
        return bool(self.failed())

    @property
    def has_warnings(self) -> bool:
        return bool(self.with_severity("warn"))

    @property
    def summary(self) -> str:
        """One line such as ``"1 failed, 6 passed"``; empty checks stay silent."""
        counts = Counter(c.severity for c in self.checks)
        labels = (("fail", "failed"), ("warn", "warnings"), ("pass", "passed"))
        return ", ".join(f"{counts[sev]} {label}" for sev, label in labels if counts[sev])
