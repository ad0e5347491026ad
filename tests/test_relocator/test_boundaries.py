"""Tests for the deployable-unit boundary check (realign.relocator.boundaries)."""

from __future__ import annotations

from pathlib import Path

import pytest

from realign.errors import ReferenceRewriteError
from realign.relocator.boundaries import check_boundaries, find_boundary_violations

pytestmark = pytest.mark.unit


@pytest.fixture
def units(tmp_path: Path, make_tree) -> Path:
    return make_tree(
        tmp_path,
        {
            "application/orders/src/index.js": (
                "const { fmt } = require('./format');\n"
                "const { charge } = require('../../payments/src/charge');\n"
            ),
            "application/orders/src/format.js": "exports.fmt = (x) => x;\n",
            "application/orders/tests/index.test.js": "const { fmt } = require('../src/format');\n",
            "application/payments/src/charge.js": "exports.charge = () => 1;\n",
            "application/payments/tests/charge.test.js": (
                "import { charge } from '../src/charge';\n"
                "import { shared } from '../../../lib/shared';\n"
            ),
            "application/billing/src/handler.py": (
                "from application.payments.src.charge import charge\n"
                "from application.billing.src.util import helper\n"
            ),
        },
    )


class TestFindBoundaryViolations:
    def test_cross_unit_imports_reported(self, units: Path):
        findings = find_boundary_violations(units)
        assert [(file, line) for file, line, _ in findings] == [
            ("application/billing/src/handler.py", 1),
            ("application/orders/src/index.js", 2),
        ]
        assert "imports payments/src" in findings[0][2]

    def test_own_unit_and_outside_imports_allowed(self, tmp_path: Path, make_tree):
        make_tree(
            tmp_path,
            {
                "application/orders/src/index.js": "require('./a'); require('../tests/x');\n",
                "application/orders/tests/a.test.js": "require('../src/a');\n",
            },
        )
        assert find_boundary_violations(tmp_path) == []

    def test_missing_functions_root(self, tmp_path: Path):
        assert find_boundary_violations(tmp_path, "services") == []


class TestCheckBoundaries:
    def test_raises_with_locations(self, units: Path):
        with pytest.raises(ReferenceRewriteError) as exc_info:
            check_boundaries(units)
        assert len(exc_info.value.locations) == 2
        assert exc_info.value.path == "application"

    def test_clean_tree_passes(self, tmp_path: Path):
        (tmp_path / "application" / "orders" / "src").mkdir(parents=True)
        check_boundaries(tmp_path)
