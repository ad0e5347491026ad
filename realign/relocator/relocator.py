"""Code relocator.

Moves a file or subtree inside a project and rewrites every reference to the
old location.  The work happens in three steps:

1. **Plan** -- scan every text file against the post-move layout and compute
   its new content.  Any reference that cannot be rewritten unambiguously
   aborts the relocation *before* the tree is touched.
2. **Apply** -- move the path (``git mv`` for tracked paths when the project
   is a git work tree) and write the rewritten files.
3. **Verify** -- rescan the tree; any remaining reference to the old path is
   reported as dangling.

A move that already happened (an interrupted run, or a manual ``git mv``) is
finished with :meth:`CodeRelocator.resume`, which skips step 2's move and
rewrites whatever still points at the old location.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, Field
from rich.console import Console

from realign.errors import FileSystemError, ReferenceRewriteError
from realign.relocator.references import JS_SUFFIXES, PathMove, Problem, Rewrite, scan_file
from realign.utils import iter_text_files, run_command

console = Console()

_MAX_SCAN_BYTES = 2_000_000


class RewriteRecord(BaseModel):
    file: str
    line: int
    old: str
    new: str


class RelocationResult(BaseModel):
    """What a relocation did (or, in dry-run mode, would do)."""

    source: str
    destination: str
    moved_files: list[str] = Field(default_factory=list)
    rewritten_files: list[str] = Field(default_factory=list)
    rewrites: list[RewriteRecord] = Field(default_factory=list)
    used_git: bool = False
    dry_run: bool = False
    already_moved: bool = False


@dataclass
class _PlannedFile:
    before: PurePosixPath
    after: PurePosixPath
    text: str
    rewrites: list[Rewrite]


class CodeRelocator:
    """Relocates paths below *root* and keeps references pointing at them.

    Parameters
    ----------
    root:
        Project root.  Every source and destination is relative to it.
    use_git:
        Move tracked paths with ``git mv`` when *root* is a git work tree.
    """

    def __init__(self, root: str | Path, *, use_git: bool = True) -> None:
        self.root = Path(root).resolve()
        self.use_git = use_git

    # -- Public API ----------------------------------------------------------

    async def relocate(
        self, source: str, destination: str, *, dry_run: bool = False
    ) -> RelocationResult:
        """Move *source* to *destination* and rewrite references.

        Raises:
            FileSystemError: *source* is missing, *destination* exists, or the
                move itself fails.
            ReferenceRewriteError: A reference cannot be rewritten, or one is
                still dangling after the rewrite.
        """
        move = self._validate(source, destination)
        planned = await asyncio.to_thread(self._plan, move)
        result = self._summarise(move, planned, dry_run=dry_run)
        if dry_run:
            return result

        result.used_git = await self._move(move)
        await asyncio.to_thread(self._write, planned)
        await self._check_dangling(move, "relocation")

        console.print(
            f"  [green]+[/green] {move.old.as_posix()} -> {move.new.as_posix()} "
            f"({len(result.moved_files)} file(s) moved, "
            f"{len(result.rewrites)} reference(s) rewritten)"
        )
        return result

    async def resume(
        self, source: str, destination: str, *, dry_run: bool = False
    ) -> RelocationResult:
        """Finish a relocation whose move already happened on disk.

        *source* must be gone and *destination* must exist.  References that
        still point at *source* are rewritten; references that were already
        updated, including relative specifiers in the moved files that
        resolve from their new location, are left alone.

        Raises:
            FileSystemError: *source* still exists or *destination* is missing.
            ReferenceRewriteError: A reference cannot be rewritten, or one is
                still dangling afterwards.
        """
        move = self._validate_moved(source, destination)
        planned = await asyncio.to_thread(self._plan, move, resumed=True)
        result = self._summarise(move, planned, dry_run=dry_run, already_moved=True)
        if dry_run:
            return result

        await asyncio.to_thread(self._write, planned)
        await self._check_dangling(move, "resumed relocation")

        console.print(
            f"  [green]+[/green] {move.old.as_posix()} -> {move.new.as_posix()} "
            f"(already moved, {len(result.rewrites)} reference(s) rewritten)"
        )
        return result

    def find_dangling(self, move: PathMove) -> list[Rewrite]:
        """Return every reference in the current tree that still targets ``move.old``."""
        dangling: list[Rewrite] = []
        for path in iter_text_files(self.root):
            text = _read_text(path)
            if text is None:
                continue
            rel = PurePosixPath(path.relative_to(self.root).as_posix())
            dangling.extend(scan_file(text, rel, rel, move).rewrites)
        return dangling

    # -- Internals -------------------------------------------------------------

    def _summarise(
        self,
        move: PathMove,
        planned: list[_PlannedFile],
        *,
        dry_run: bool,
        already_moved: bool = False,
    ) -> RelocationResult:
        result = RelocationResult(
            source=move.old.as_posix(),
            destination=move.new.as_posix(),
            dry_run=dry_run,
            already_moved=already_moved,
        )
        for item in planned:
            if item.before != item.after and not already_moved:
                result.moved_files.append(item.after.as_posix())
            if item.rewrites:
                result.rewritten_files.append(item.after.as_posix())
                result.rewrites.extend(
                    RewriteRecord(file=r.file, line=r.line, old=r.old, new=r.new)
                    for r in item.rewrites
                )
        return result

    async def _check_dangling(self, move: PathMove, what: str) -> None:
        dangling = await asyncio.to_thread(self.find_dangling, move)
        if dangling:
            raise ReferenceRewriteError(
                f"{len(dangling)} reference(s) to {move.old.as_posix()} remain after {what}",
                move.old.as_posix(),
                locations=[(r.file, r.line, r.old) for r in dangling],
            )

    def _inside_root(self, source: str, destination: str) -> tuple[Path, Path]:
        src = self.root / source
        dst = self.root / destination
        for rel, path in ((source, src), (destination, dst)):
            try:
                path.resolve().relative_to(self.root)
            except ValueError:
                raise FileSystemError(f"path escapes the project root: {rel}", rel) from None
        return src, dst

    def _validate(self, source: str, destination: str) -> PathMove:
        old = PurePosixPath(source)
        new = PurePosixPath(destination)
        src, dst = self._inside_root(source, destination)

        if not src.exists():
            raise FileSystemError(f"relocation source does not exist: {source}", source)
        if dst.exists():
            raise FileSystemError(f"relocation destination already exists: {destination}", destination)
        if src.is_dir() and (old == new or old in new.parents):
            raise FileSystemError(
                f"cannot move {source} into itself ({destination})", destination
            )
        for parent in new.parents:
            ancestor = self.root / parent
            if str(parent) != "." and ancestor.exists() and not ancestor.is_dir():
                raise FileSystemError(
                    f"expected a directory but found a file: {parent.as_posix()}",
                    parent.as_posix(),
                )
        return PathMove(old=old, new=new, is_dir=src.is_dir())

    def _validate_moved(self, source: str, destination: str) -> PathMove:
        src, dst = self._inside_root(source, destination)
        if src.exists():
            raise FileSystemError(f"relocation source still exists: {source}", source)
        if not dst.exists():
            raise FileSystemError(
                f"relocation destination does not exist: {destination}", destination
            )
        return PathMove(
            old=PurePosixPath(source), new=PurePosixPath(destination), is_dir=dst.is_dir()
        )

    def _plan(self, move: PathMove, *, resumed: bool = False) -> list[_PlannedFile]:
        planned: list[_PlannedFile] = []
        problems: list[Problem] = []
        exists = self._module_exists if resumed else None

        for path in iter_text_files(self.root):
            rel = PurePosixPath(path.relative_to(self.root).as_posix())
            if resumed:
                before, after = move.unmap(rel), rel
            else:
                before = rel
                after = (move.map(rel) if move.contains_old(rel) else None) or rel
            text = _read_text(path)
            if text is None:
                planned.append(_PlannedFile(before, after, "", []))
                continue
            scan = scan_file(text, after, before, move, exists)
            problems.extend(scan.problems)
            planned.append(
                _PlannedFile(before, after, scan.text if scan.changed else text, scan.rewrites)
            )

        if problems:
            raise ReferenceRewriteError(
                f"{len(problems)} reference(s) to {move.old.as_posix()} cannot be rewritten "
                "automatically",
                move.old.as_posix(),
                locations=[(p.file, p.line, f"{p.text} ({p.reason})") for p in problems],
            )
        return planned

    def _module_exists(self, rel: PurePosixPath) -> bool:
        """Whether *rel* names an existing path, or one once a JS suffix is added."""
        path = self.root / rel
        return path.exists() or any(
            path.with_name(path.name + suffix).exists() for suffix in JS_SUFFIXES
        )

    async def _move(self, move: PathMove) -> bool:
        """Perform the move; returns ``True`` when git did it."""
        src = self.root / move.old
        dst = self.root / move.new
        try:
            await asyncio.to_thread(dst.parent.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise FileSystemError(
                f"cannot create {move.new.parent.as_posix()}: {exc}", move.new.parent.as_posix()
            ) from exc

        if self.use_git and await self._is_tracked(move.old):
            code, _, stderr = await run_command(
                ["git", "mv", move.old.as_posix(), move.new.as_posix()], cwd=self.root
            )
            if code != 0:
                raise FileSystemError(
                    f"git mv {move.old.as_posix()} {move.new.as_posix()} failed: {stderr}",
                    move.old.as_posix(),
                )
            return True

        try:
            await asyncio.to_thread(shutil.move, str(src), str(dst))
        except OSError as exc:
            raise FileSystemError(
                f"cannot move {move.old.as_posix()}: {exc}", move.old.as_posix()
            ) from exc
        return False

    async def _is_tracked(self, rel: PurePosixPath) -> bool:
        if not (self.root / ".git").exists():
            return False
        code, stdout, _ = await run_command(
            ["git", "ls-files", "--", rel.as_posix()], cwd=self.root
        )
        return code == 0 and bool(stdout.strip())

    def _write(self, planned: list[_PlannedFile]) -> None:
        for item in planned:
            if not item.rewrites:
                continue
            target = self.root / item.after
            try:
                target.write_text(item.text, encoding="utf-8")
            except OSError as exc:
                raise FileSystemError(
                    f"cannot write {item.after.as_posix()}: {exc}", item.after.as_posix()
                ) from exc


def _read_text(path: Path) -> str | None:
    """Return the file's text, or ``None`` for binary and oversized files."""
    try:
        if path.stat().st_size > _MAX_SCAN_BYTES:
            return None
        raw = path.read_bytes()
    except OSError:
        return None
    if b"\0" in raw:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None
