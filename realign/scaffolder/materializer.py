"""Directory materializer.

Creates the directories and placeholder files a plan asks for, skipping
anything that already exists.  Running it twice leaves the tree exactly as
running it once did.  Any path that exists with the wrong type, escapes the
project root or cannot be written raises :class:`FileSystemError` and stops
the run at that target.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from realign.errors import FileSystemError
from realign.plan import RestructurePlan

GITKEEP = ".gitkeep"


class TargetKind(str, Enum):
    DIRECTORY = "directory"
    FILE = "file"


class MaterializeTarget(BaseModel):
    """A relative path that must exist after materialization."""

    path: str
    kind: TargetKind = TargetKind.DIRECTORY
    content: str = Field(default="", description="Initial content for new files")


class MaterializeResult(BaseModel):
    created: list[str] = Field(default_factory=list)
    existing: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created)


def targets_from_plan(plan: RestructurePlan) -> list[MaterializeTarget]:
    """Translate a plan's directories, units and placeholders into targets.

    Directories come first so that placeholder files land in them.  Paths
    that a move will create are left out.
    """
    targets: list[MaterializeTarget] = []
    seen: set[str] = set()

    def add(target: MaterializeTarget) -> None:
        if plan.under_move_destination(target.path):
            return
        if target.path not in seen:
            seen.add(target.path)
            targets.append(target)

    for directory in plan.directories:
        add(MaterializeTarget(path=directory))
    if plan.helpers:
        add(MaterializeTarget(path=plan.helpers_dir))
    for directory in plan.function_directories():
        add(MaterializeTarget(path=directory))
    for placeholder in [*plan.function_manifests(), *plan.placeholders]:
        add(
            MaterializeTarget(
                path=placeholder.path, kind=TargetKind.FILE, content=placeholder.content
            )
        )
    return targets


class DirectoryMaterializer:
    """Materializes :class:`MaterializeTarget` lists below a project root."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    async def materialize(
        self, targets: list[MaterializeTarget], *, dry_run: bool = False
    ) -> MaterializeResult:
        return await asyncio.to_thread(self._materialize_sync, targets, dry_run)

    # -- Internals ---------------------------------------------------------

    def _materialize_sync(
        self, targets: list[MaterializeTarget], dry_run: bool
    ) -> MaterializeResult:
        if not self.root.is_dir():
            raise FileSystemError(f"project root is not a directory: {self.root}", self.root)

        result = MaterializeResult()
        new_dirs: list[Path] = []

        for target in targets:
            path = self._resolve(target.path)
            self._check_ancestors(path, target.path)

            if target.kind is TargetKind.DIRECTORY:
                if path.is_dir():
                    result.existing.append(target.path)
                    continue
                if path.exists():
                    raise FileSystemError(
                        f"expected a directory but found a file: {target.path}", target.path
                    )
                if not dry_run:
                    self._guard(path.mkdir, target.path, parents=True, exist_ok=True)
                new_dirs.append(path)
                result.created.append(target.path)
            else:
                if path.is_file():
                    result.existing.append(target.path)
                    continue
                if path.exists():
                    raise FileSystemError(
                        f"expected a file but found a directory: {target.path}", target.path
                    )
                if not dry_run:
                    self._guard(path.parent.mkdir, target.path, parents=True, exist_ok=True)
                    self._guard(path.write_text, target.path, target.content, encoding="utf-8")
                result.created.append(target.path)

        if not dry_run:
            for directory in new_dirs:
                if not any(directory.iterdir()):
                    keep = directory / GITKEEP
                    rel = keep.relative_to(self.root).as_posix()
                    self._guard(keep.write_text, rel, "", encoding="utf-8")
                    result.created.append(rel)

        return result

    def _resolve(self, rel: str) -> Path:
        path = self.root / rel
        root = self.root.resolve()
        try:
            path.resolve().relative_to(root)
        except ValueError:
            raise FileSystemError(f"path escapes the project root: {rel}", rel) from None
        return path

    def _check_ancestors(self, path: Path, rel: str) -> None:
        for parent in path.relative_to(self.root).parents:
            if str(parent) == ".":
                continue
            ancestor = self.root / parent
            if ancestor.exists() and not ancestor.is_dir():
                raise FileSystemError(
                    f"expected a directory but found a file: {parent.as_posix()} (needed for {rel})",
                    parent.as_posix(),
                )

    @staticmethod
    def _guard(func, rel: str, *args, **kwargs) -> None:
        try:
            func(*args, **kwargs)
        except OSError as exc:
            raise FileSystemError(f"cannot create {rel}: {exc}", rel) from exc
