"""Tests for the configuration rewriter (realign.scaffolder.config_writer).

Covers:
- Generated TypeScript mirrors the record (names, tags, accessors)
- Helper boilerplate rendering and preservation of hand-edited helpers
- Unchanged detection on re-runs
- Dry run and wrong-type targets
"""

from __future__ import annotations

from pathlib import Path

import pytest

from realign.environments import ConfigurationRecord
from realign.errors import FileSystemError
from realign.plan import RestructurePlan, parse_plan
from realign.scaffolder.config_writer import ConfigurationRewriter

pytestmark = pytest.mark.unit


class TestRenderConfig:
    def test_environment_union_and_accessors(
        self, tmp_path: Path, scenario_record: ConfigurationRecord, sample_plan: RestructurePlan
    ):
        source = ConfigurationRewriter(tmp_path).render_config(scenario_record, sample_plan)

        assert "export type EnvironmentName = 'Development' | 'Production';" in source
        assert "export function getEnvironmentConfig(name: string): EnvironmentConfig" in source
        assert "export function getEnvironmentTags(name: string)" in source
        assert "throw new ConfigError(`unknown environment: ${name}`);" in source
        assert "return { ...applicationTags, ...config.tags };" in source

    def test_values_are_rendered(
        self, tmp_path: Path, sample_record: ConfigurationRecord, sample_plan: RestructurePlan
    ):
        source = ConfigurationRewriter(tmp_path).render_config(sample_record, sample_plan)

        assert "'Application': 'orders-service'," in source
        assert "account: '333333333333'," in source
        assert "region: 'us-west-2'," in source
        assert "alertEmail: 'oncall@example.com'," in source
        assert "'Environment': 'production-dr'," in source
        assert "Generated by realign from config/environments.yaml" in source

    def test_empty_record(self, tmp_path: Path, sample_plan: RestructurePlan):
        source = ConfigurationRewriter(tmp_path).render_config(ConfigurationRecord(), sample_plan)
        assert "export type EnvironmentName = never;" in source


class TestWrite:
    async def test_writes_config_and_helpers(
        self, tmp_path: Path, sample_record: ConfigurationRecord, sample_plan: RestructurePlan
    ):
        result = await ConfigurationRewriter(tmp_path).write(sample_record, sample_plan)

        config = tmp_path / "config" / "environment-config.ts"
        assert config.is_file()
        assert result.config_path == "config/environment-config.ts"
        assert result.environments == sample_record.environment_names()
        assert result.helpers == ["helpers/iam-role.ts", "helpers/kms-key.ts"]
        assert result.unchanged == []

        role = (tmp_path / "helpers" / "iam-role.ts").read_text()
        assert "export interface OrdersServiceRoleOptions" in role
        assert "export function createRole(" in role
        key = (tmp_path / "helpers" / "kms-key.ts").read_text()
        assert "export function createKey(" in key

    async def test_rerun_reports_unchanged(
        self, tmp_path: Path, sample_record: ConfigurationRecord, sample_plan: RestructurePlan
    ):
        rewriter = ConfigurationRewriter(tmp_path)
        await rewriter.write(sample_record, sample_plan)
        second = await rewriter.write(sample_record, sample_plan)

        assert second.helpers == []
        assert sorted(second.unchanged) == [
            "config/environment-config.ts",
            "helpers/iam-role.ts",
            "helpers/kms-key.ts",
        ]

    async def test_config_regenerated_when_record_changes(
        self,
        tmp_path: Path,
        sample_record: ConfigurationRecord,
        scenario_record: ConfigurationRecord,
        sample_plan: RestructurePlan,
    ):
        rewriter = ConfigurationRewriter(tmp_path)
        await rewriter.write(sample_record, sample_plan)
        result = await rewriter.write(scenario_record, sample_plan)

        assert "config/environment-config.ts" not in result.unchanged
        source = (tmp_path / "config" / "environment-config.ts").read_text()
        assert "'tier': 'prod'," in source
        assert "ProductionDR" not in source

    async def test_hand_edited_helper_preserved(
        self, tmp_path: Path, sample_record: ConfigurationRecord, sample_plan: RestructurePlan
    ):
        helper = tmp_path / "helpers" / "kms-key.ts"
        helper.parent.mkdir()
        helper.write_text("// custom\n")

        result = await ConfigurationRewriter(tmp_path).write(sample_record, sample_plan)

        assert helper.read_text() == "// custom\n"
        assert "helpers/kms-key.ts" in result.unchanged
        assert result.helpers == ["helpers/iam-role.ts"]

    async def test_helpers_disabled(self, tmp_path: Path, sample_record: ConfigurationRecord):
        plan = parse_plan({"helpers": False, "config_output": "lib/config.ts"})
        result = await ConfigurationRewriter(tmp_path).write(sample_record, plan)
        assert result.helpers == []
        assert (tmp_path / "lib" / "config.ts").is_file()
        assert not (tmp_path / "helpers").exists()

    async def test_dry_run(
        self, tmp_path: Path, sample_record: ConfigurationRecord, sample_plan: RestructurePlan
    ):
        result = await ConfigurationRewriter(tmp_path).write(
            sample_record, sample_plan, dry_run=True
        )
        assert result.helpers == ["helpers/iam-role.ts", "helpers/kms-key.ts"]
        assert list(tmp_path.iterdir()) == []

    async def test_directory_in_place_of_output(
        self, tmp_path: Path, sample_record: ConfigurationRecord, sample_plan: RestructurePlan
    ):
        (tmp_path / "config" / "environment-config.ts").mkdir(parents=True)
        with pytest.raises(FileSystemError, match="expected a file"):
            await ConfigurationRewriter(tmp_path).write(sample_record, sample_plan)
