"""Tests for the directory materializer (realign.scaffolder.materializer).

Covers:
- targets_from_plan ordering, dedupe and move-destination exclusion
- Creation of directories, placeholders and .gitkeep markers
- Idempotence: a second run changes nothing
- Wrong-type paths, root escapes and permission failures
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from realign.errors import FileSystemError
from realign.plan import RestructurePlan, parse_plan
from realign.scaffolder.materializer import (
    DirectoryMaterializer,
    MaterializeTarget,
    TargetKind,
    targets_from_plan,
)

pytestmark = pytest.mark.unit


def _snapshot(root: Path) -> dict[str, str | None]:
    """Map every path below *root* to its content (``None`` for directories)."""
    return {
        p.relative_to(root).as_posix(): (None if p.is_dir() else p.read_text())
        for p in sorted(root.rglob("*"))
    }


class TestTargetsFromPlan:
    def test_directories_before_files(self, sample_plan: RestructurePlan):
        targets = targets_from_plan(sample_plan)
        paths = [t.path for t in targets]
        assert paths == [
            "application",
            "helpers",
            "config",
            "application/orders/tests",
            "application/orders/package.json",
            "config/README.md",
        ]
        kinds = {t.path: t.kind for t in targets}
        assert kinds["config/README.md"] is TargetKind.FILE
        assert kinds["application"] is TargetKind.DIRECTORY

    def test_move_destination_left_to_the_move(self, sample_plan: RestructurePlan):
        paths = [t.path for t in targets_from_plan(sample_plan)]
        assert "application/orders/src" not in paths

    def test_helpers_dir_added_when_enabled(self):
        plan = parse_plan({"helpers": True, "helpers_dir": "lib/helpers"})
        assert [t.path for t in targets_from_plan(plan)] == ["lib/helpers"]

    def test_no_helpers(self):
        plan = parse_plan({"helpers": False, "directories": ["docs"]})
        assert [t.path for t in targets_from_plan(plan)] == ["docs"]


class TestMaterialize:
    async def test_creates_tree(self, tmp_path: Path, sample_plan: RestructurePlan):
        result = await DirectoryMaterializer(tmp_path).materialize(targets_from_plan(sample_plan))

        assert (tmp_path / "application" / "orders" / "tests").is_dir()
        assert (tmp_path / "config" / "README.md").read_text() == "# Config\n"
        assert (tmp_path / "application" / "orders" / "package.json").is_file()
        assert (tmp_path / "helpers" / ".gitkeep").is_file()
        assert (tmp_path / "application" / "orders" / "tests" / ".gitkeep").is_file()
        # config/ received a placeholder, so it needs no marker
        assert not (tmp_path / "config" / ".gitkeep").exists()
        assert "helpers/.gitkeep" in result.created
        assert result.changed

    async def test_idempotent(self, tmp_path: Path, sample_plan: RestructurePlan):
        materializer = DirectoryMaterializer(tmp_path)
        targets = targets_from_plan(sample_plan)

        await materializer.materialize(targets)
        before = _snapshot(tmp_path)
        second = await materializer.materialize(targets)

        assert _snapshot(tmp_path) == before
        assert second.created == []
        assert second.existing == [t.path for t in targets]
        assert not second.changed

    async def test_existing_file_content_untouched(self, tmp_path: Path):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "README.md").write_text("mine\n")
        result = await DirectoryMaterializer(tmp_path).materialize(
            [MaterializeTarget(path="config/README.md", kind=TargetKind.FILE, content="theirs\n")]
        )
        assert result.existing == ["config/README.md"]
        assert (tmp_path / "config" / "README.md").read_text() == "mine\n"

    async def test_dry_run_creates_nothing(self, tmp_path: Path, sample_plan: RestructurePlan):
        result = await DirectoryMaterializer(tmp_path).materialize(
            targets_from_plan(sample_plan), dry_run=True
        )
        assert "application" in result.created
        assert list(tmp_path.iterdir()) == []


class TestMaterializeFailures:
    async def test_file_where_directory_expected(self, tmp_path: Path):
        (tmp_path / "helpers").write_text("oops")
        with pytest.raises(FileSystemError, match="expected a directory") as exc_info:
            await DirectoryMaterializer(tmp_path).materialize([MaterializeTarget(path="helpers")])
        assert exc_info.value.kind == "io"
        assert exc_info.value.path == "helpers"

    async def test_directory_where_file_expected(self, tmp_path: Path):
        (tmp_path / "README.md").mkdir()
        with pytest.raises(FileSystemError, match="expected a file"):
            await DirectoryMaterializer(tmp_path).materialize(
                [MaterializeTarget(path="README.md", kind=TargetKind.FILE)]
            )

    async def test_file_blocking_an_ancestor(self, tmp_path: Path):
        (tmp_path / "application").write_text("not a dir")
        with pytest.raises(FileSystemError) as exc_info:
            await DirectoryMaterializer(tmp_path).materialize(
                [MaterializeTarget(path="application/orders/src")]
            )
        assert exc_info.value.path == "application"

    async def test_escape_from_root(self, tmp_path: Path):
        root = tmp_path / "project"
        root.mkdir()
        with pytest.raises(FileSystemError, match="escapes"):
            await DirectoryMaterializer(root).materialize([MaterializeTarget(path="../elsewhere")])
        assert not (tmp_path / "elsewhere").exists()

    async def test_missing_root(self, tmp_path: Path):
        with pytest.raises(FileSystemError, match="not a directory"):
            await DirectoryMaterializer(tmp_path / "missing").materialize([])

    @pytest.mark.skipif(
        os.name != "posix" or (hasattr(os, "geteuid") and os.geteuid() == 0),
        reason="permission bits are not enforced for root or on this platform",
    )
    async def test_permission_denied(self, tmp_path: Path):
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            with pytest.raises(FileSystemError, match="cannot create"):
                await DirectoryMaterializer(tmp_path).materialize(
                    [MaterializeTarget(path="locked/child")]
                )
        finally:
            locked.chmod(0o700)

    async def test_stops_at_first_error(self, tmp_path: Path):
        (tmp_path / "b").write_text("file")
        targets = [
            MaterializeTarget(path="a"),
            MaterializeTarget(path="b"),
            MaterializeTarget(path="c"),
        ]
        with pytest.raises(FileSystemError):
            await DirectoryMaterializer(tmp_path).materialize(targets)
        assert (tmp_path / "a").is_dir()
        assert not (tmp_path / "c").exists()
