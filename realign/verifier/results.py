"""Verification results.

Pydantic v2 models for the outcome of each verification step and the run as
a whole, plus a parser that pulls pass/fail counts out of Jest and pytest
summary lines.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field


# ---------------------------------------------------------------------------
# Test counts
# ---------------------------------------------------------------------------

class TestCounts(BaseModel):
    """Pass/fail counts read from a test runner's summary output."""

    __test__ = False  # keep pytest from collecting this model

    runner: str = Field(default="", description="'jest' or 'pytest'")
    total: int = Field(default=0, ge=0)
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)


# Tests:       1 failed, 2 skipped, 10 passed, 13 total
_JEST_RE = re.compile(r"^\s*Tests:\s+(?P<body>.*\d+\s+total)\s*$", re.MULTILINE)
# ===== 3 passed, 1 failed, 2 skipped in 0.12s =====
_PYTEST_RE = re.compile(
    r"^=+\s+(?P<body>(?:\d+\s+\w+(?:,\s+)?)+)\s+in\s+[\d.]+s.*=+\s*$", re.MULTILINE
)
_COUNT_RE = re.compile(r"(?P<n>\d+)\s+(?P<label>\w+)")


def parse_test_counts(output: str) -> Optional[TestCounts]:
    """Extract counts from Jest or pytest output.

    The last summary line wins, so workspaces that run several suites report
    the final one.  Returns ``None`` when no summary line is found.
    """
    jest = list(_JEST_RE.finditer(output))
    if jest:
        counts = _counts(jest[-1].group("body"))
        return TestCounts(
            runner="jest",
            total=counts.get("total", 0),
            passed=counts.get("passed", 0),
            failed=counts.get("failed", 0),
            skipped=counts.get("skipped", 0) + counts.get("todo", 0),
        )

    pytest_lines = list(_PYTEST_RE.finditer(output))
    if pytest_lines:
        counts = _counts(pytest_lines[-1].group("body"))
        passed = counts.get("passed", 0)
        failed = counts.get("failed", 0) + counts.get("error", 0) + counts.get("errors", 0)
        skipped = counts.get("skipped", 0) + counts.get("xfailed", 0)
        return TestCounts(
            runner="pytest",
            total=passed + failed + skipped + counts.get("xpassed", 0),
            passed=passed + counts.get("xpassed", 0),
            failed=failed,
            skipped=skipped,
        )
    return None


def _counts(body: str) -> dict[str, int]:
    return {m.group("label"): int(m.group("n")) for m in _COUNT_RE.finditer(body)}


# ---------------------------------------------------------------------------
# Step and run results
# ---------------------------------------------------------------------------

class StepResult(BaseModel):
    """One external command run by the verifier."""

    step: str = Field(..., description="install / build / synth / test")
    command: str = Field(default="")
    skipped: bool = Field(default=False, description="True when the command was empty")
    returncode: Optional[int] = Field(default=None)
    timed_out: bool = Field(default=False)
    stdout: str = Field(default="")
    stderr: str = Field(default="")
    duration_seconds: float = Field(default=0.0, ge=0.0)
    counts: Optional[TestCounts] = Field(default=None)

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> bool:
        return self.skipped or (self.returncode == 0 and not self.timed_out)

    @property
    def output(self) -> str:
        """Combined stdout and stderr as shown to the operator."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class VerificationReport(BaseModel):
    """All steps of one verification run, in execution order."""

    steps: list[StepResult] = Field(default_factory=list)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="ISO-8601 timestamp of when the run started",
    )

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> bool:
        return all(step.passed for step in self.steps)

    @computed_field  # type: ignore[misc]
    @property
    def failed_step(self) -> Optional[str]:
        for step in self.steps:
            if not step.passed:
                return step.step
        return None

    # -- Serialisation helpers -----------------------------------------------

    def save(self, path: Path) -> None:
        """Persist the report as JSON, creating parent directories as needed."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "VerificationReport":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def summary_dict(self) -> dict[str, Any]:
        """Return a condensed summary suitable for the state file."""
        summary: dict[str, Any] = {
            "passed": self.passed,
            "failed_step": self.failed_step,
            "steps": {
                step.step: ("skipped" if step.skipped else "passed" if step.passed else "failed")
                for step in self.steps
            },
        }
        for step in self.steps:
            if step.counts is not None:
                summary["tests"] = step.counts.model_dump()
        return summary
