"""Document generator.

Renders the standard root documents (prerequisites, network and contribution
guides) and one architecture note per added directory.  Documents that
already exist are left alone unless ``overwrite`` is set.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from realign.environments import ConfigurationRecord
from realign.errors import FileSystemError
from realign.plan import RestructurePlan
from realign.scaffolder.templates import TemplateRenderer


DOCUMENT_FILES: dict[str, tuple[str, str]] = {
    "prereqs": ("docs/PREREQS.md.j2", "PREREQS.md"),
    "network": ("docs/NETWORK.md.j2", "NETWORK.md"),
    "contributing": ("docs/CONTRIBUTING.md.j2", "CONTRIBUTING.md"),
}

ARCHITECTURE_NOTE = "ARCHITECTURE.md"

DIRECTORY_PURPOSES: dict[str, str] = {
    "application": (
        "Deployable units. Each subdirectory is self-contained, with its own "
        "`src/`, `tests/` and dependency manifest."
    ),
    "helpers": (
        "Thin constructor functions for shared infrastructure resources "
        "(roles, keys, network constructs). They forward options to the SDK "
        "and hold no logic of their own."
    ),
    "config": "Per-environment accounts, regions and tags, and the accessors that read them.",
    "lib": "Stack and construct definitions.",
    "bin": "The CDK app entry point.",
    "test": "Infrastructure tests (snapshot and assertion tests for the stacks).",
    "docs": "Long-form documentation.",
}


class DocumentResult(BaseModel):
    """Outcome of a document generation run."""

    written: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


def build_context(
    plan: RestructurePlan,
    record: ConfigurationRecord | None = None,
    verification_steps: list[tuple[str, str]] | None = None,
) -> dict[str, Any]:
    """Assemble the template context shared by every document."""
    environments: list[dict[str, Any]] = []
    if record is not None:
        for name, env in sorted(record.environments.items(), key=lambda kv: kv[0].value):
            environments.append(
                {
                    "name": name.value,
                    "region": env.region,
                    "account": env.account,
                    "alert_email": env.alert_email,
                    "tags": {**record.application_tags, **env.tags},
                }
            )

    return {
        "project_name": plan.project_name or "project",
        "description": plan.description,
        "directories": sorted(
            d
            for d in set(plan.directories) | ({plan.functions_root} if plan.functions else set())
            if not plan.under_move_destination(d)
        ),
        "functions": list(plan.functions),
        "functions_root": plan.functions_root,
        "helpers_dir": plan.helpers_dir,
        "environments": environments,
        "environments_file": plan.environments_file or "config/environments.yaml",
        "config_output": plan.config_output,
        "verification_steps": [
            (step, cmd) for step, cmd in (verification_steps or []) if cmd
        ],
    }


class DocumentGenerator:
    """Writes the root documents and per-directory notes into *root*."""

    def __init__(
        self,
        root: str | Path,
        renderer: TemplateRenderer | None = None,
        *,
        overwrite: bool = False,
    ) -> None:
        self.root = Path(root)
        self.renderer = renderer or TemplateRenderer()
        self.overwrite = overwrite

    async def generate(
        self,
        plan: RestructurePlan,
        context: dict[str, Any],
        *,
        dry_run: bool = False,
    ) -> DocumentResult:
        result = DocumentResult()

        for doc in plan.documents:
            template, filename = DOCUMENT_FILES[doc]
            await self._emit(template, self.root / filename, context, result, dry_run)

        for directory in context["directories"]:
            top = directory.split("/", 1)[0]
            note_context = {
                **context,
                "directory": directory,
                "purpose": DIRECTORY_PURPOSES.get(top, f"Holds the `{directory}` part of the project."),
            }
            await self._emit(
                "docs/ARCHITECTURE.md.j2",
                self.root / directory / ARCHITECTURE_NOTE,
                note_context,
                result,
                dry_run,
            )

        return result

    async def _emit(
        self,
        template: str,
        target: Path,
        context: dict[str, Any],
        result: DocumentResult,
        dry_run: bool,
    ) -> None:
        rel = target.relative_to(self.root).as_posix()
        if target.exists() and not target.is_file():
            raise FileSystemError(f"expected a file but found a directory: {rel}", rel)
        if target.exists() and not self.overwrite:
            result.skipped.append(rel)
            return
        if not dry_run:
            try:
                await self.renderer.render_to_file(template, target, context)
            except OSError as exc:
                raise FileSystemError(f"cannot write {rel}: {exc}", rel) from exc
        result.written.append(rel)
