"""End-to-end restructure of a legacy CDK project.

Runs all five phases for real against a project with two functions (one
JavaScript, one Python) and checks the restructured tree: documents,
generated config, moved code and the absence of any reference to the old
locations.  Verification commands are disabled so no npm or CDK toolchain is
needed; a git work tree is used when git is available.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest
import yaml

from realign.config import Settings, VerificationConfig
from realign.environments import ConfigurationRecord, get_environment_tags
from realign.pipeline import Pipeline


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

PAYMENTS_FILES: dict[str, str] = {
    "lambda_py/__init__.py": "",
    "lambda_py/payments/__init__.py": "",
    "lambda_py/payments/handler.py": (
        "from .gateway import charge\n"
        "\n"
        "\n"
        "def main(event, context):\n"
        "    return charge(event['amount'])\n"
    ),
    "lambda_py/payments/gateway.py": "def charge(amount):\n    return {'charged': amount}\n",
    "tests/test_payments.py": (
        "from unittest import mock\n"
        "\n"
        "from lambda_py.payments.handler import main\n"
        "\n"
        "\n"
        "@mock.patch('lambda_py.payments.handler.charge')\n"
        "def test_main(charge):\n"
        "    main({'amount': 3}, None)\n"
        "    charge.assert_called_once_with(3)\n"
    ),
}

PLAN = {
    "project_name": "orders-service",
    "description": "Order intake and payment stacks.",
    "directories": ["application", "helpers", "config", "test"],
    "functions": ["orders", "payments"],
    "moves": [
        {"source": "lambda/orders", "destination": "application/orders/src"},
        {"source": "lambda_py/payments", "destination": "application/payments/src"},
    ],
}


def _references(root: Path, needle: str) -> list[str]:
    hits = []
    for path in sorted(root.rglob("*")):
        if not path.is_file() or {".git", ".realign"} & set(path.parts):
            continue
        if needle in path.read_text(errors="replace"):
            hits.append(path.relative_to(root).as_posix())
    return hits


def _git(root: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=root, check=True, capture_output=True, text=True
    ).stdout


@pytest.fixture
def project(legacy_project: Path, make_tree) -> Path:
    make_tree(legacy_project, PAYMENTS_FILES)
    if shutil.which("git"):
        _git(legacy_project, "init", "-q")
        _git(legacy_project, "add", "-A")
    return legacy_project


@pytest.fixture
def plan_file(project: Path) -> Path:
    path = project.parent / "restructure.yaml"
    path.write_text(yaml.safe_dump(PLAN, sort_keys=False))
    return path


@pytest.fixture
def settings(project: Path) -> Settings:
    return Settings(
        root=project,
        verification=VerificationConfig(install="", build="", synth="", test=""),
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

@pytest.mark.integration
class TestRestructureEndToEnd:
    async def test_full_restructure(self, settings: Settings, plan_file: Path):
        root = settings.root
        result = await Pipeline(settings).run(plan_file)

        assert result["success"] is True, result.get("error")
        assert result["phases_completed"] == [1, 2, 3, 4, 5]

        # moved code
        assert (root / "application/orders/src/index.js").is_file()
        assert (root / "application/payments/src/handler.py").is_file()
        assert not (root / "lambda" / "orders").exists()
        assert not (root / "lambda_py" / "payments").exists()
        assert (root / "lambda/shared/log.js").is_file()

        # no reference to the old locations survives
        assert _references(root, "lambda/orders") == []
        assert _references(root, "lambda_py.payments") == []
        assert _references(root, "lambda_py/payments") == []

        test_text = (root / "tests" / "test_payments.py").read_text()
        assert "from application.payments.src.handler import main" in test_text
        assert "@mock.patch('application.payments.src.handler.charge')" in test_text

        # scaffolding for every deployable unit
        for unit in ("orders", "payments"):
            assert (root / "application" / unit / "tests").is_dir()
            assert (root / "application" / unit / "package.json").is_file()

        # documents
        prereqs = (root / "PREREQS.md").read_text()
        assert "# orders-service: Prerequisites" in prereqs
        assert "npx cdk bootstrap aws://333333333333/us-west-2" in prereqs
        assert (root / "test" / "ARCHITECTURE.md").is_file()

        # unit boundaries hold after the moves
        assert result["phase4"]["boundary_violations"] == []

    async def test_generated_config_matches_record(
        self, settings: Settings, plan_file: Path, sample_record: ConfigurationRecord
    ):
        await Pipeline(settings.model_copy(update={"phases": [3]})).run(plan_file)
        source = (settings.root / "config" / "environment-config.ts").read_text()

        for name, env in sample_record.environments.items():
            assert f"'{name.value}'" in source
            assert f"account: '{env.account}'," in source
        # environment tags win over shared ones in both accessors
        assert get_environment_tags("Production", sample_record)["owner"] == "sre-team"
        assert "return { ...applicationTags, ...config.tags };" in source

    async def test_second_run_changes_nothing(self, settings: Settings, plan_file: Path):
        first = await Pipeline(settings).run(plan_file)
        assert first["success"] is True

        before = {
            p.relative_to(settings.root).as_posix(): p.read_bytes()
            for p in settings.root.rglob("*")
            if p.is_file() and not {".git", ".realign"} & set(p.parts)
        }
        second = await Pipeline(settings).run(plan_file)
        after = {
            p.relative_to(settings.root).as_posix(): p.read_bytes()
            for p in settings.root.rglob("*")
            if p.is_file() and not {".git", ".realign"} & set(p.parts)
        }

        assert second["success"] is True
        assert after == before
        assert second["phase2"]["created"] == []
        assert all(m.get("already_moved") for m in second["phase4"]["moves"])

    @pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
    async def test_git_history_preserved(self, settings: Settings, plan_file: Path):
        result = await Pipeline(settings).run(plan_file)

        assert all(m["used_git"] for m in result["phase4"]["moves"])
        staged = _git(settings.root, "diff", "--cached", "--name-status", "-M")
        assert "application/orders/src/format.js" in staged
        assert "R100" in staged
