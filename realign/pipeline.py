"""realign pipeline orchestrator.

Implements the 5-phase restructuring pipeline:

Phase 1: DOCUMENT    -- Render prerequisite, network and contribution guides.
Phase 2: MATERIALIZE -- Create the target directories and placeholder files.
Phase 3: CONFIGURE   -- Regenerate the typed environment config and helpers.
Phase 4: RELOCATE    -- Move code and rewrite every reference to it.
Phase 5: VERIFY      -- Run install, build, synth and test.

Usage::

    python -m realign.pipeline restructure.yaml --root ./my-app
    python -m realign.pipeline restructure.yaml --phases 1,2 --dry-run
"""

from __future__ import annotations

import asyncio
import sys
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from rich.panel import Panel

from realign.config import Settings, VerificationConfig
from realign.environments import ConfigurationRecord, load_configuration
from realign.errors import ConfigError, RealignError, VerificationError
from realign.plan import RestructurePlan, load_plan
from realign.relocator import CodeRelocator, find_boundary_violations
from realign.scaffolder import (
    ConfigurationRewriter,
    DirectoryMaterializer,
    DocumentGenerator,
    TemplateRenderer,
    build_context,
    targets_from_plan,
)
from realign.utils import (
    PHASE_NAMES,
    confirm_checkpoint,
    console,
    format_duration,
    load_json,
    print_error,
    print_phase_header,
    print_success,
    print_summary_table,
    print_warning,
    save_json,
)
from realign.verifier import VerificationReport, VerificationRunner


class Pipeline:
    """realign pipeline orchestrator.

    Drives the five restructuring phases in order, persisting state after
    every phase so that a halted run can be resumed once the operator has
    fixed the problem.

    Attributes:
        settings: Run configuration.
        state: Mutable dictionary that accumulates results from each phase.
        plan: The restructure plan, loaded by :meth:`run`.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.renderer = TemplateRenderer()
        self.plan: RestructurePlan | None = None
        self.state: dict[str, Any] = {
            "started_at": datetime.now(timezone.utc).isoformat(),
            "phases_completed": [],
            "phases_failed": [],
            "success": False,
        }

    # ------------------------------------------------------------------
    # State persistence
    # ------------------------------------------------------------------

    async def _save_state(self) -> None:
        """Persist the current state to ``.realign/state.json``."""
        if self.settings.dry_run:
            return
        self.state["updated_at"] = datetime.now(timezone.utc).isoformat()
        await save_json(self.state, self.settings.state_file)

    async def _load_state(self) -> None:
        """Restore state from a previous run, if available."""
        if not self.settings.state_file.exists():
            return
        try:
            previous = load_json(self.settings.state_file)
        except (OSError, ValueError) as exc:
            print_warning(f"Ignoring unreadable state file {self.settings.state_file}: {exc}")
            return
        self.state.update(previous)
        self.state["started_at"] = datetime.now(timezone.utc).isoformat()
        self.state.pop("error", None)
        # Phases about to run again are neither completed nor failed yet.
        selected = set(self.settings.phases)
        for key in ("phases_completed", "phases_failed"):
            self.state[key] = [p for p in self.state.get(key, []) if p not in selected]

    # ------------------------------------------------------------------
    # Phase dispatch
    # ------------------------------------------------------------------

    _PHASE_METHODS: dict[int, str] = {
        1: "phase1_document",
        2: "phase2_materialize",
        3: "phase3_configure",
        4: "phase4_relocate",
        5: "phase5_verify",
    }

    async def run(self, plan_path: str | Path) -> dict[str, Any]:
        """Execute the pipeline (or the selected subset of phases).

        Args:
            plan_path: Path to the YAML restructure plan.

        Returns:
            The final state dictionary, including a top-level ``success``
            boolean and, on failure, an ``error`` entry with the error kind
            and offending path or name.
        """
        pipeline_start = time.monotonic()

        console.print(
            Panel(
                f"[bold bright_cyan]realign[/bold bright_cyan]\n"
                f"Plan    : {plan_path}\n"
                f"Root    : {self.settings.root.resolve()}\n"
                f"Phases  : {', '.join(str(p) for p in self.settings.phases)}"
                + ("\nMode    : dry run" if self.settings.dry_run else ""),
                title="[bold]Restructure Start[/bold]",
                border_style="bright_cyan",
            )
        )

        if not self.settings.dry_run:
            self.settings.ensure_directories()
        await self._load_state()
        self.state["plan_path"] = str(Path(plan_path).resolve())
        self.state["dry_run"] = self.settings.dry_run

        all_success = True
        try:
            self.plan = load_plan(plan_path)
        except ConfigError as exc:
            self._record_failure(0, exc)
            all_success = False

        for phase_num in sorted(self.settings.phases) if all_success else []:
            method_name = self._PHASE_METHODS.get(phase_num)
            if method_name is None:
                print_warning(f"Unknown phase {phase_num} -- skipping.")
                continue

            phase_name = PHASE_NAMES.get(phase_num, "UNKNOWN")
            if self.settings.checkpoint and not confirm_checkpoint(phase_num, phase_name):
                print_warning(f"Run aborted by operator before phase {phase_num}.")
                self.state["aborted_before"] = phase_num
                all_success = False
                break

            print_phase_header(phase_num, phase_name)
            phase_start = time.monotonic()
            try:
                result = await getattr(self, method_name)()

                elapsed = time.monotonic() - phase_start
                self.state[f"phase{phase_num}"] = result
                self.state["phases_completed"].append(phase_num)
                print_success(
                    f"Phase {phase_num} ({phase_name}) completed in {format_duration(elapsed)}"
                )

            except RealignError as exc:
                all_success = False
                self._record_failure(phase_num, exc, time.monotonic() - phase_start)
                # Later phases depend on earlier ones.
                break

            except Exception as exc:
                all_success = False
                tb = traceback.format_exc()
                self._record_failure(phase_num, exc, time.monotonic() - phase_start)
                self.state["error"]["traceback"] = tb
                console.print(f"[dim]{tb}[/dim]")
                break

            finally:
                await self._save_state()

        total_elapsed = time.monotonic() - pipeline_start
        self.state["success"] = all_success
        self.state["total_duration"] = format_duration(total_elapsed)
        self.state["finished_at"] = datetime.now(timezone.utc).isoformat()
        await self._save_state()

        self._print_final_summary(total_elapsed)
        return self.state

    def _record_failure(self, phase: int, exc: Exception, elapsed: float = 0.0) -> None:
        phase_name = PHASE_NAMES.get(phase, "PLAN")
        if isinstance(exc, RealignError):
            error = exc.as_dict()
        else:
            error = {"kind": "internal", "message": str(exc), "path": None}
        error["phase"] = phase
        self.state["error"] = error
        if phase:
            self.state["phases_failed"].append(phase)

        print_error(
            f"Phase {phase} ({phase_name}) FAILED after {format_duration(elapsed)}: "
            f"[{error['kind']}] {exc}"
        )
        for location in error.get("locations", []) or []:
            console.print(f"    [red]-[/red] {location}")
        if isinstance(exc, VerificationError) and exc.output:
            console.print(Panel(exc.output, title=f"{exc.step} output", border_style="red"))

    # ------------------------------------------------------------------
    # Shared inputs
    # ------------------------------------------------------------------

    def _require_plan(self) -> RestructurePlan:
        if self.plan is None:
            raise ConfigError("no restructure plan loaded")
        return self.plan

    def _load_record(self, *, required: bool) -> ConfigurationRecord | None:
        plan = self._require_plan()
        if not plan.environments_file:
            if required:
                raise ConfigError("the plan does not name an environments file")
            return None
        path = self.settings.root / plan.environments_file
        if not path.is_file() and not required:
            print_warning(f"  {plan.environments_file} not found; documents list no environments")
            return None
        return load_configuration(path)

    def _verification_config(self) -> VerificationConfig:
        """Settings commands overlaid with the plan's per-step overrides."""
        plan = self._require_plan()
        return self.settings.verification.model_copy(update=plan.verification)

    # ------------------------------------------------------------------
    # Phase 1: DOCUMENT
    # ------------------------------------------------------------------

    async def phase1_document(self) -> dict[str, Any]:
        """Render the root guides and per-directory architecture notes."""
        plan = self._require_plan()
        record = self._load_record(required=False)
        context = build_context(plan, record, self._verification_config().steps())

        generator = DocumentGenerator(
            self.settings.root, self.renderer, overwrite=self.settings.overwrite_documents
        )
        result = await generator.generate(plan, context, dry_run=self.settings.dry_run)

        for path in result.written:
            console.print(f"  [green]+[/green] {path}")
        for path in result.skipped:
            console.print(f"  [dim]=[/dim] {path} (exists)")
        return result.model_dump()

    # ------------------------------------------------------------------
    # Phase 2: MATERIALIZE
    # ------------------------------------------------------------------

    async def phase2_materialize(self) -> dict[str, Any]:
        """Create every directory and placeholder file the plan names."""
        plan = self._require_plan()
        materializer = DirectoryMaterializer(self.settings.root)
        result = await materializer.materialize(
            targets_from_plan(plan), dry_run=self.settings.dry_run
        )

        for path in result.created:
            console.print(f"  [green]+[/green] {path}")
        console.print(
            f"  {len(result.created)} created, {len(result.existing)} already present"
        )
        return result.model_dump()

    # ------------------------------------------------------------------
    # Phase 3: CONFIGURE
    # ------------------------------------------------------------------

    async def phase3_configure(self) -> dict[str, Any]:
        """Regenerate the typed environment config and helper boilerplate."""
        plan = self._require_plan()
        record = self._load_record(required=True)
        assert record is not None

        rewriter = ConfigurationRewriter(self.settings.root, self.renderer)
        result = await rewriter.write(record, plan, dry_run=self.settings.dry_run)

        for path in [result.config_path, *result.helpers]:
            if path not in result.unchanged:
                console.print(f"  [green]+[/green] {path}")
        for path in result.unchanged:
            console.print(f"  [dim]=[/dim] {path} (unchanged)")
        console.print(f"  Environments: {', '.join(result.environments)}")
        return result.model_dump()

    # ------------------------------------------------------------------
    # Phase 4: RELOCATE
    # ------------------------------------------------------------------

    async def phase4_relocate(self) -> dict[str, Any]:
        """Apply every move in order, then check unit boundaries.

        A move whose source is gone and whose destination exists was already
        made (by an interrupted run or by hand); its remaining references are
        rewritten without moving anything.  A dry run plans every move against
        the unchanged tree, so a move whose source only appears once an
        earlier move has run is reported as skipped.
        """
        plan = self._require_plan()
        relocator = CodeRelocator(self.settings.root, use_git=self.settings.use_git)
        root = self.settings.root
        dry_run = self.settings.dry_run

        moves: list[dict[str, Any]] = []
        planned_destinations: list[PurePosixPath] = []
        for move in plan.moves:
            source_exists = (root / move.source).exists()
            destination_exists = (root / move.destination).exists()
            if dry_run and not source_exists and _follows_earlier_move(
                move.source, planned_destinations
            ):
                print_warning(
                    f"  {move.source} -> {move.destination}: skipped, "
                    "its source only exists after an earlier move"
                )
                moves.append(
                    {
                        "source": move.source,
                        "destination": move.destination,
                        "dry_run": True,
                        "skipped": "depends on an earlier move",
                    }
                )
                continue

            if not source_exists and destination_exists:
                console.print(
                    f"  [dim]=[/dim] {move.source} -> {move.destination} "
                    "(already moved, checking references)"
                )
                result = await relocator.resume(move.source, move.destination, dry_run=dry_run)
            else:
                result = await relocator.relocate(move.source, move.destination, dry_run=dry_run)
            moves.append(result.model_dump())
            planned_destinations.append(PurePosixPath(move.destination))

        violations: list[str] = []
        if plan.functions and not dry_run:
            for file, line, text in find_boundary_violations(root, plan.functions_root):
                violations.append(f"{file}:{line}: {text}")
            if violations:
                print_warning(f"  {len(violations)} cross-unit import(s) need manual attention:")
                for violation in violations:
                    console.print(f"    [yellow]-[/yellow] {violation}")

        return {
            "moves": moves,
            "rewrites": sum(len(m.get("rewrites", [])) for m in moves),
            "boundary_violations": violations,
        }

    # ------------------------------------------------------------------
    # Phase 5: VERIFY
    # ------------------------------------------------------------------

    async def phase5_verify(self) -> dict[str, Any]:
        """Run install, build, synth and test; stop at the first failure."""
        if self.settings.dry_run:
            print_warning("  Dry run: verification skipped")
            return {"skipped": True}

        runner = VerificationRunner(self.settings.root, self._verification_config())
        try:
            report = await runner.run()
        except VerificationError as exc:
            if isinstance(exc.report, VerificationReport):
                exc.report.save(self.settings.verification_report_path)
            raise

        report.save(self.settings.verification_report_path)
        summary = report.summary_dict()
        tests = summary.get("tests")
        if tests:
            console.print(
                f"  Tests: {tests['passed']} passed, {tests['failed']} failed, "
                f"{tests['skipped']} skipped ({tests['runner']})"
            )
        summary["report"] = str(self.settings.verification_report_path)
        return summary

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _print_final_summary(self, total_elapsed: float) -> None:
        """Print the final summary panel."""
        phases_ok = self.state.get("phases_completed", [])
        phases_fail = self.state.get("phases_failed", [])

        if self.state.get("success"):
            border_style = "bold green"
            status_text = "[bold green]RESTRUCTURE SUCCEEDED[/bold green]"
        else:
            border_style = "bold red"
            status_text = "[bold red]RESTRUCTURE FAILED[/bold red]"

        detail_lines = [
            status_text,
            "",
            f"Duration  : {format_duration(total_elapsed)}",
            f"Completed : {', '.join(str(p) for p in phases_ok) or 'none'}",
        ]
        if phases_fail:
            detail_lines.append(f"Failed    : {', '.join(str(p) for p in phases_fail)}")

        error = self.state.get("error")
        if error:
            detail_lines.append(f"Error     : [{error['kind']}] {error['message']}")
            if error.get("path"):
                detail_lines.append(f"At        : {error['path']}")

        detail_lines.extend([
            "",
            f"Root      : {self.settings.root.resolve()}",
            f"State     : {self.settings.state_file}",
        ])

        console.print()
        console.print(
            Panel(
                "\n".join(detail_lines),
                title="[bold]Restructure Complete[/bold]",
                border_style=border_style,
            )
        )

        relocate = self.state.get("phase4")
        if isinstance(relocate, dict) and relocate.get("moves"):
            print_summary_table(
                {
                    m["source"]: m["destination"] + _move_note(m)
                    for m in relocate["moves"]
                },
                title="Moves",
            )


def _move_note(move: dict[str, Any]) -> str:
    if move.get("skipped"):
        return f" (skipped: {move['skipped']})"
    if move.get("already_moved"):
        return " (done earlier)"
    return ""


def _follows_earlier_move(source: str, destinations: list[PurePosixPath]) -> bool:
    """Whether *source* lies at or below a destination planned earlier in the run."""
    path = PurePosixPath(source)
    return any(path == dest or dest in path.parents for dest in destinations)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``python -m realign.pipeline`` and ``realign``."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="realign",
        description="realign -- restructure an infrastructure-as-code repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  realign restructure.yaml --root ./my-app\n"
            "  realign restructure.yaml --phases 1,2 --dry-run\n"
            "  realign restructure.yaml --phases 4,5 --checkpoint\n"
        ),
    )

    parser.add_argument("plan", help="Path to the YAML restructure plan")
    parser.add_argument(
        "--root", "-r",
        default=None,
        help="Project root to restructure (default: $REALIGN_ROOT or .)",
    )
    parser.add_argument(
        "--phases",
        default=None,
        help="Comma-separated phases to run (default: 1,2,3,4,5)",
    )
    parser.add_argument(
        "--checkpoint",
        action="store_true",
        help="Ask for confirmation before every phase",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without touching the tree",
    )
    parser.add_argument(
        "--no-git",
        action="store_true",
        help="Move files with a plain rename even inside a git work tree",
    )
    parser.add_argument(
        "--overwrite-docs",
        action="store_true",
        help="Re-render documents that already exist",
    )

    args = parser.parse_args(argv)

    plan_path = Path(args.plan)
    if not plan_path.exists():
        console.print(f"[bold red]Error:[/bold red] Plan file not found: {plan_path}")
        sys.exit(1)

    settings = Settings.from_env()
    if args.phases is not None:
        try:
            phases = [int(p.strip()) for p in args.phases.split(",") if p.strip()]
        except ValueError:
            console.print(f"[bold red]Error:[/bold red] Invalid phases format: {args.phases}")
            sys.exit(1)
        for p in phases:
            if p not in PHASE_NAMES:
                console.print(f"[bold red]Error:[/bold red] Invalid phase number: {p} (must be 1-5)")
                sys.exit(1)
        settings.phases = sorted(set(phases))
    if args.root is not None:
        settings.root = Path(args.root)
    if not settings.root.is_dir():
        console.print(f"[bold red]Error:[/bold red] Project root not found: {settings.root}")
        sys.exit(1)
    settings.checkpoint = args.checkpoint
    settings.dry_run = settings.dry_run or args.dry_run
    settings.use_git = settings.use_git and not args.no_git
    settings.overwrite_documents = args.overwrite_docs

    pipeline = Pipeline(settings)
    result = asyncio.run(pipeline.run(plan_path))

    if result.get("success"):
        console.print("[bold green]Restructure completed successfully![/bold green]")
    else:
        console.print("[bold red]Restructure failed.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
