"""Verification runner.

Runs the project's own tooling after a restructure, in a fixed order:

- **install** -- dependency installation
- **build** -- compile
- **synth** -- infrastructure synthesis
- **test** -- the test suite

The first failing step stops the run; there are no retries.
"""

from __future__ import annotations

import time
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from realign.config import VerificationConfig
from realign.errors import VerificationError
from realign.utils import format_duration, run_command
from realign.verifier.results import StepResult, VerificationReport, parse_test_counts

console = Console()

_TAIL_LINES = 40


class VerificationRunner:
    """Runs the verification steps for a project root.

    Parameters
    ----------
    root:
        Directory every command runs in.
    config:
        Commands and per-step timeout.  Defaults to the npm/CDK commands.
    """

    def __init__(self, root: str | Path, config: VerificationConfig | None = None) -> None:
        self.root = Path(root)
        self.config = config or VerificationConfig()

    async def run(self) -> VerificationReport:
        """Run every configured step and return the report.

        Raises:
            VerificationError: A step exited non-zero or timed out.  The
                partial report is available as ``exc.report``.
        """
        console.print(Panel(f"[bold]Verifying {self.root}[/bold]", style="blue"))
        report = VerificationReport()

        for step, command in self.config.steps():
            result = await self.run_step(step, command)
            report.steps.append(result)
            if not result.passed:
                reason = (
                    f"timed out after {self.config.step_timeout}s"
                    if result.timed_out
                    else f"exited with code {result.returncode}"
                )
                raise VerificationError(
                    step,
                    f"verification step '{step}' ({command}) {reason}",
                    output=_tail(result.output),
                    report=report,
                )

        return report

    async def run_step(self, step: str, command: str) -> StepResult:
        """Run a single step.  An empty command is recorded as skipped."""
        if not command.strip():
            console.print(f"  [dim]-[/dim] {step}: skipped")
            return StepResult(step=step, skipped=True)

        console.print(f"  [cyan]>[/cyan] {step}: {command}")
        start = time.monotonic()
        returncode, stdout, stderr = await run_command(
            command, cwd=self.root, timeout=self.config.step_timeout
        )
        elapsed = time.monotonic() - start

        timed_out = returncode == -1 and stderr.startswith("Command timed out")
        result = StepResult(
            step=step,
            command=command,
            returncode=returncode,
            timed_out=timed_out,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=elapsed,
        )
        if step == "test":
            result.counts = parse_test_counts(f"{stdout}\n{stderr}")

        if result.passed:
            detail = ""
            if result.counts is not None:
                detail = f", {result.counts.passed}/{result.counts.total} tests passed"
            console.print(
                f"    [green]ok[/green] ({format_duration(elapsed)}{detail})"
            )
        else:
            console.print(f"    [red]failed[/red] ({format_duration(elapsed)})")
        return result


def _tail(output: str, lines: int = _TAIL_LINES) -> str:
    return "\n".join(output.splitlines()[-lines:])
