"""Configuration rewriter.

Regenerates the typed environment-config source file from the project's
:class:`ConfigurationRecord`, and renders the ``helpers/`` boilerplate.  The
generated accessor pair mirrors :func:`realign.environments.get_environment_config`
and :func:`realign.environments.get_environment_tags`.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from pydantic import BaseModel, Field

from realign.environments import ConfigurationRecord
from realign.errors import FileSystemError
from realign.plan import RestructurePlan
from realign.scaffolder.templates import TemplateRenderer


HELPER_TEMPLATES: dict[str, str] = {
    "iam-role.ts": "helpers/iam-role.ts.j2",
    "kms-key.ts": "helpers/kms-key.ts.j2",
}


class ConfigWriteResult(BaseModel):
    config_path: str = ""
    environments: list[str] = Field(default_factory=list)
    helpers: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)


class ConfigurationRewriter:
    """Writes ``config_output`` and helper files below *root*."""

    def __init__(self, root: str | Path, renderer: TemplateRenderer | None = None) -> None:
        self.root = Path(root)
        self.renderer = renderer or TemplateRenderer()

    def render_config(self, record: ConfigurationRecord, plan: RestructurePlan) -> str:
        data = record.to_dict()
        return self.renderer.render(
            "config/environment-config.ts.j2",
            {
                "environments_file": plan.environments_file or "config/environments.yaml",
                "environment_names": record.environment_names(),
                "application_tags": data["application_tags"],
                "environments": data["environments"],
            },
        )

    async def write(
        self,
        record: ConfigurationRecord,
        plan: RestructurePlan,
        *,
        dry_run: bool = False,
    ) -> ConfigWriteResult:
        result = ConfigWriteResult(
            config_path=plan.config_output,
            environments=record.environment_names(),
        )
        await asyncio.to_thread(
            self._write_if_changed,
            plan.config_output,
            self.render_config(record, plan),
            result,
            dry_run,
        )

        if plan.helpers:
            context = {"project_name": plan.project_name or "project"}
            for filename, template in HELPER_TEMPLATES.items():
                rel = f"{plan.helpers_dir}/{filename}"
                target = self.root / rel
                if target.is_file():
                    # Helpers are hand-edited after the first render.
                    result.unchanged.append(rel)
                    continue
                await asyncio.to_thread(
                    self._write_if_changed,
                    rel,
                    self.renderer.render(template, context),
                    result,
                    dry_run,
                )
                result.helpers.append(rel)

        return result

    def _write_if_changed(
        self, rel: str, content: str, result: ConfigWriteResult, dry_run: bool
    ) -> None:
        target = self.root / rel
        if target.exists() and not target.is_file():
            raise FileSystemError(f"expected a file but found a directory: {rel}", rel)
        if target.is_file() and target.read_text(encoding="utf-8") == content:
            result.unchanged.append(rel)
            return
        if dry_run:
            return
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise FileSystemError(f"cannot write {rel}: {exc}", rel) from exc
