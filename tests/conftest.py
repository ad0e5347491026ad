"""Shared pytest fixtures for the realign test suite.

Provides reusable fixtures for:
- Environment records (the sample record and the two-environment scenario)
- Restructure plans
- A small legacy CDK project laid out on disk
- A mocked subprocess helper for the verifier
"""

from __future__ import annotations

import json
import textwrap
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from realign.config import Settings, VerificationConfig
from realign.environments import ConfigurationRecord, parse_configuration, reset_default_configuration
from realign.plan import RestructurePlan, parse_plan


# ---------------------------------------------------------------------------
# Environment records
# ---------------------------------------------------------------------------

SAMPLE_ENVIRONMENTS: dict[str, Any] = {
    "application_tags": {
        "Application": "orders-service",
        "owner": "platform-team",
        "CostCenter": "1234",
    },
    "environments": {
        "Development": {
            "region": "us-east-1",
            "account": "111111111111",
            "tags": {"Environment": "development"},
            "alert_email": "dev-alerts@example.com",
        },
        "Staging": {
            "region": "us-east-1",
            "account": "222222222222",
            "tags": {"Environment": "staging"},
        },
        "Production": {
            "region": "us-west-2",
            "account": "333333333333",
            "tags": {"Environment": "production", "owner": "sre-team"},
            "alert_email": "oncall@example.com",
        },
        "ProductionDR": {
            "region": "eu-west-1",
            "account": "444444444444",
            "tags": {"Environment": "production-dr"},
        },
    },
}


@pytest.fixture(autouse=True)
def _fresh_default_configuration():
    """Never leak the process-wide record between tests."""
    reset_default_configuration()
    yield
    reset_default_configuration()


@pytest.fixture
def sample_environments_yaml() -> str:
    return yaml.safe_dump(SAMPLE_ENVIRONMENTS, sort_keys=False)


@pytest.fixture
def sample_record() -> ConfigurationRecord:
    return parse_configuration(SAMPLE_ENVIRONMENTS)


@pytest.fixture
def scenario_record() -> ConfigurationRecord:
    """Shared owner team-a; Production overrides owner and adds a tier."""
    return parse_configuration(
        {
            "application_tags": {"owner": "team-a"},
            "environments": {
                "Development": {"region": "us-east-1", "account": "111111111111", "tags": {}},
                "Production": {
                    "region": "us-east-1",
                    "account": "333333333333",
                    "tags": {"owner": "team-b", "tier": "prod"},
                },
            },
        }
    )


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------

SAMPLE_PLAN: dict[str, Any] = {
    "project_name": "orders-service",
    "description": "Order intake and fulfilment stacks.",
    "documents": ["prereqs", "network", "contributing"],
    "directories": ["application", "helpers", "config"],
    "functions": ["orders"],
    "placeholders": [{"path": "config/README.md", "content": "# Config\n"}],
    "moves": [{"source": "lambda/orders", "destination": "application/orders/src"}],
}


@pytest.fixture
def sample_plan() -> RestructurePlan:
    return parse_plan(SAMPLE_PLAN)


@pytest.fixture
def sample_plan_file(tmp_path: Path) -> Path:
    path = tmp_path / "restructure.yaml"
    path.write_text(yaml.safe_dump(SAMPLE_PLAN, sort_keys=False), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Legacy project on disk
# ---------------------------------------------------------------------------

LEGACY_FILES: dict[str, str] = {
    "package.json": json.dumps(
        {"name": "orders-service", "scripts": {"build": "tsc", "test": "jest"}}, indent=2
    )
    + "\n",
    "cdk.json": json.dumps({"app": "npx ts-node --prefer-ts-exts bin/app.ts"}, indent=2) + "\n",
    "bin/app.ts": textwrap.dedent(
        """\
        import * as cdk from 'aws-cdk-lib';
        import { OrdersStack } from '../lib/orders-stack';

        const app = new cdk.App();
        new OrdersStack(app, 'OrdersStack');
        """
    ),
    "lib/orders-stack.ts": textwrap.dedent(
        """\
        import * as cdk from 'aws-cdk-lib';
        import * as lambda from 'aws-cdk-lib/aws-lambda';
        import { Construct } from 'constructs';
        import { TABLE_NAME } from '../lambda/orders/constants';

        export class OrdersStack extends cdk.Stack {
          constructor(scope: Construct, id: string, props?: cdk.StackProps) {
            super(scope, id, props);
            new lambda.Function(this, 'OrdersFn', {
              runtime: lambda.Runtime.NODEJS_18_X,
              handler: 'index.handler',
              code: lambda.Code.fromAsset('lambda/orders'),
              environment: { TABLE_NAME },
            });
          }
        }
        """
    ),
    "lambda/orders/index.js": textwrap.dedent(
        """\
        const { formatOrder } = require('./format');
        const { log } = require('../shared/log');

        exports.handler = async (event) => {
          log('order received');
          return formatOrder(event);
        };
        """
    ),
    "lambda/orders/format.js": "exports.formatOrder = (o) => ({ id: o.id });\n",
    "lambda/orders/constants.ts": "export const TABLE_NAME = 'orders';\n",
    "lambda/shared/log.js": "exports.log = (msg) => console.log(msg);\n",
    "README.md": textwrap.dedent(
        """\
        # orders-service

        The handler lives in `lambda/orders/index.js`.
        """
    ),
}


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Write *files* (relative path -> content) below *root*."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_tree():
    """Return the tree writer so tests can lay out their own projects."""
    return write_tree


@pytest.fixture
def legacy_project(tmp_path: Path, sample_environments_yaml: str) -> Path:
    """A small CDK project in the pre-restructure layout."""
    root = tmp_path / "orders-service"
    write_tree(root, LEGACY_FILES)
    write_tree(root, {"config/environments.yaml": sample_environments_yaml})
    return root


@pytest.fixture
def quiet_settings(legacy_project: Path) -> Settings:
    """Settings for the legacy project with every verification step disabled."""
    return Settings(
        root=legacy_project,
        use_git=False,
        verification=VerificationConfig(install="", build="", synth="", test=""),
    )


# ---------------------------------------------------------------------------
# Subprocess mocking
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_run_command():
    """Patch the verifier's ``run_command`` to succeed with empty output."""
    with patch(
        "realign.verifier.runner.run_command",
        new_callable=AsyncMock,
        return_value=(0, "", ""),
    ) as mocked:
        yield mocked
