"""Deployable-unit boundary check.

Each unit under ``<functions_root>/<name>/`` must be self-contained: its
files may not import another unit's ``src/`` tree.  The check only reads the
tree and reports findings; nothing is rewritten.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import Path, PurePosixPath

from realign.errors import ReferenceRewriteError
from realign.relocator.references import JS_SUFFIXES, PY_SUFFIXES
from realign.utils import iter_text_files

_JS_SPEC_RE = re.compile(
    r"(?:\bfrom\s*|\bimport\s*|\b(?:require|import)\s*\(\s*)(['\"])(?P<spec>\.{1,2}/[^'\"\n]*)\1"
)
_PY_MODULE_RE = re.compile(r"^\s*(?:from\s+(?P<from>[\w.]+)\s+import|import\s+(?P<import>[\w.]+))", re.MULTILINE)


def _unit_of(rel: PurePosixPath, functions_root: PurePosixPath) -> str | None:
    try:
        inner = rel.relative_to(functions_root)
    except ValueError:
        return None
    return inner.parts[0] if len(inner.parts) > 1 else None


def find_boundary_violations(
    root: str | Path, functions_root: str = "application"
) -> list[tuple[str, int, str]]:
    """Return ``(file, line, text)`` for every cross-unit ``src/`` import."""
    root = Path(root)
    base = PurePosixPath(functions_root)
    if not (root / base).is_dir():
        return []

    findings: list[tuple[str, int, str]] = []
    for path in iter_text_files(root / base, JS_SUFFIXES + PY_SUFFIXES):
        rel = PurePosixPath(path.relative_to(root).as_posix())
        unit = _unit_of(rel, base)
        if unit is None:
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue

        for lineno, line in enumerate(text.splitlines(), start=1):
            for other in _foreign_units(line, rel, base, path.suffix):
                if other != unit:
                    findings.append(
                        (rel.as_posix(), lineno, f"{line.strip()} (imports {other}/src)")
                    )
    return findings


def _foreign_units(
    line: str, rel: PurePosixPath, base: PurePosixPath, suffix: str
) -> list[str]:
    units: list[str] = []
    if suffix in JS_SUFFIXES:
        for match in _JS_SPEC_RE.finditer(line):
            joined = posixpath.normpath(posixpath.join(str(rel.parent), match.group("spec")))
            target = PurePosixPath(joined)
            unit = _unit_of(target, base)
            if unit and target.relative_to(base).parts[1:2] == ("src",):
                units.append(unit)
    else:
        match = _PY_MODULE_RE.match(line)
        if match:
            module = (match.group("from") or match.group("import")).split(".")
            prefix = list(base.parts)
            if module[: len(prefix)] == prefix and module[len(prefix) + 1 : len(prefix) + 2] == ["src"]:
                units.append(module[len(prefix)])
    return units


def check_boundaries(root: str | Path, functions_root: str = "application") -> None:
    """Raise :class:`ReferenceRewriteError` when any unit imports another's ``src/``."""
    findings = find_boundary_violations(root, functions_root)
    if findings:
        raise ReferenceRewriteError(
            f"{len(findings)} cross-unit import(s) under {functions_root}/",
            functions_root,
            locations=findings,
        )
