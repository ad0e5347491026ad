"""Reference scanning and rewriting for relocations.

Three kinds of reference to a moved location are understood:

* relative JS/TS module specifiers (``import ... from '../lib/x'``,
  ``export ... from``, ``require('./x')``, ``import('./x')``, ``jest.mock``),
  re-resolved against the importing file's old location and recomputed from
  its new one;
* Python dotted module paths (``from lambda_fns.orders import handler``),
  rewritten by prefix substitution;
* root-relative path literals (``Code.fromAsset('lambda/orders')``, paths in
  ``cdk.json``, docs or source comments), rewritten by prefix substitution.

References built at runtime (template literals, concatenation, non-literal
``require``/``import_module`` arguments) cannot be rewritten and are reported
as problems instead.

All functions here are pure: they take text and paths relative to the project
root and return new text plus what changed.
"""

from __future__ import annotations

import keyword
import posixpath
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath

JS_SUFFIXES: tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts")
PY_SUFFIXES: tuple[str, ...] = (".py",)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_]\w*$")

Exists = Callable[[PurePosixPath], bool]

# import x from '...'; export * from '...'; import '...'; require('...'); import('...')
_JS_IMPORT_RE = re.compile(
    r"(?P<prefix>\bfrom\s*|\bimport\s*|\b(?:require|import|jest\.mock|jest\.requireActual)\s*\(\s*)"
    r"(?P<q>['\"])(?P<spec>[^'\"\n]+)(?P=q)"
)
_STRING_RE = re.compile(r"(?P<q>['\"])(?P<body>[^'\"\n]*)(?P=q)")
_BACKTICK_RE = re.compile(r"`(?P<body>[^`$\n]*)`")

_JS_DYNAMIC_RES = (
    re.compile(r"\b(?:require|import)\s*\(\s*(?!['\"][^'\"\n]*['\"]\s*[,)])[^)\s]"),
    re.compile(r"`[^`\n]*\$\{[^`\n]*`"),
    re.compile(r"['\"`][^'\"`\n]*['\"`]\s*\+|\+\s*['\"`]"),
)
_PY_DYNAMIC_RES = (
    re.compile(r"\b(?:importlib\.)?import_module\s*\(\s*(?!['\"][^'\"\n]*['\"]\s*[,)])[^)\s]"),
    re.compile(r"\b__import__\s*\(\s*(?!['\"][^'\"\n]*['\"]\s*[,)])[^)\s]"),
    re.compile(r"\bf['\"][^'\"\n]*\{"),
    re.compile(r"['\"][^'\"\n]*['\"]\s*\+|\+\s*['\"]"),
)

_PY_FROM_RE = re.compile(r"^(?P<indent>\s*)from\s+(?P<module>\.*[\w.]*)\s+import\s+(?P<names>.+)$")
_PY_IMPORT_RE = re.compile(r"^(?P<indent>\s*)import\s+(?P<modules>[\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)\s*(?P<rest>#.*)?$")


@dataclass(frozen=True)
class Rewrite:
    """One reference changed in one file."""

    file: str
    line: int
    old: str
    new: str


@dataclass(frozen=True)
class Problem:
    """A reference that cannot be rewritten safely."""

    file: str
    line: int
    text: str
    reason: str


@dataclass
class ScanResult:
    text: str
    rewrites: list[Rewrite] = field(default_factory=list)
    problems: list[Problem] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.rewrites)


# ---------------------------------------------------------------------------
# Path mapping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PathMove:
    """Maps paths (relative to the project root) from *old* to *new*."""

    old: PurePosixPath
    new: PurePosixPath
    is_dir: bool

    def map(self, path: PurePosixPath) -> PurePosixPath | None:
        """Return where *path* lives after the move, or ``None`` if unaffected.

        Extension-less JS specifiers (``./util`` for ``util.ts``) and
        directory specifiers that resolve to a moved ``index`` file are
        mapped too.
        """
        if path == self.old:
            return self.new
        if self.is_dir:
            if self.old in path.parents:
                return self.new / path.relative_to(self.old)
            return None
        if self.old.suffix in JS_SUFFIXES:
            if path == self.old.with_suffix(""):
                return self.new.with_suffix("") if self.new.suffix in JS_SUFFIXES else self.new
            if self.old.stem == "index" and path == self.old.parent:
                if self.new.stem == "index":
                    return self.new.parent
                return self.new.with_suffix("") if self.new.suffix in JS_SUFFIXES else self.new
        return None

    def unmap(self, path: PurePosixPath) -> PurePosixPath:
        """Return where a path that exists after the move used to live."""
        if path == self.new:
            return self.old
        if self.is_dir and self.new in path.parents:
            return self.old / path.relative_to(self.new)
        return path

    def contains_old(self, path: PurePosixPath) -> bool:
        return path == self.old or (self.is_dir and self.old in path.parents)

    @property
    def old_module(self) -> str | None:
        """Dotted module name of the old location, if it has one."""
        return _module_name(self.old)

    @property
    def new_module(self) -> str | None:
        return _module_name(self.new)


def _module_name(path: PurePosixPath) -> str | None:
    parts = list(path.parts)
    if parts and parts[-1].endswith(".py"):
        parts[-1] = parts[-1][: -len(".py")]
        if parts[-1] == "__init__":
            parts.pop()
    if not parts or not all(
        _IDENTIFIER_RE.match(p) and not keyword.iskeyword(p) for p in parts
    ):
        return None
    return ".".join(parts)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _line_of(text: str, index: int) -> int:
    return text.count("\n", 0, index) + 1


def _line_text(text: str, index: int) -> str:
    start = text.rfind("\n", 0, index) + 1
    end = text.find("\n", index)
    return text[start : end if end != -1 else len(text)].strip()


def _relative_specifier(target: PurePosixPath, from_dir: PurePosixPath) -> str:
    rel = posixpath.relpath(str(target), str(from_dir))
    if not rel.startswith("."):
        rel = "./" + rel
    return rel


def _resolve(from_dir: PurePosixPath, spec: str) -> PurePosixPath | None:
    """Resolve a relative specifier; ``None`` if it leaves the project root."""
    joined = posixpath.normpath(posixpath.join(str(from_dir), spec))
    if joined == ".." or joined.startswith("../"):
        return None
    return PurePosixPath(joined)


def _root_token_re(old: PurePosixPath) -> re.Pattern[str]:
    """Match the old path as a root-relative path token.

    Single-segment paths only match when followed by ``/`` or written as
    ``./name``, so that bare words (``lambda``) are never treated as paths.
    """
    escaped = re.escape(old.as_posix())
    tail = r"(?![\w\-]|\.\w)"
    if "/" in old.as_posix():
        return re.compile(rf"(?<![\w\-.@/])(?P<dot>\./)?{escaped}{tail}")
    return re.compile(
        rf"(?<![\w\-.@/])(?:(?P<dot>\./){escaped}{tail}|{escaped}(?=/))"
    )


def _mention_re(move: PathMove) -> re.Pattern[str]:
    """Match the old location's name where it reads as a path or module segment."""
    name = move.old.name
    stem = move.old.stem if not move.is_dir else name
    names = sorted({re.escape(name), re.escape(stem)}, key=len, reverse=True)
    alt = "|".join(names)
    return re.compile(rf"[/'\"`.}}](?:{alt})(?=[/'\"`.]|$)")


def _substitute_root_tokens(
    body: str, token_re: re.Pattern[str], move: PathMove
) -> str:
    new_path = move.new.as_posix()
    return token_re.sub(lambda m: (m.group("dot") or "") + new_path, body)


def _rewrite_root_tokens(
    text: str,
    rel_file: str,
    move: PathMove,
    token_re: re.Pattern[str],
    result: ScanResult,
    *,
    skip_lines: set[int] | None = None,
    literal_res: tuple[re.Pattern[str], ...] = (),
) -> str:
    """Substitute root-relative tokens line by line.

    Matches that start inside a span of any of *literal_res* are left alone;
    those were already handled by the string-literal pass.
    """
    new_path = move.new.as_posix()
    lines = text.splitlines(keepends=True)
    for index, line in enumerate(lines):
        lineno = index + 1
        if skip_lines and lineno in skip_lines:
            continue
        spans = [m.span() for pattern in literal_res for m in pattern.finditer(line)]

        def _token(match: re.Match[str]) -> str:
            if any(start <= match.start() < end for start, end in spans):
                return match.group(0)
            replacement = (match.group("dot") or "") + new_path
            result.rewrites.append(Rewrite(rel_file, lineno, match.group(0), replacement))
            return replacement

        lines[index] = token_re.sub(_token, line)
    return "".join(lines)


# ---------------------------------------------------------------------------
# JS / TS
# ---------------------------------------------------------------------------


def scan_js(
    text: str,
    file_now: PurePosixPath,
    file_before: PurePosixPath,
    move: PathMove,
    exists: Exists | None = None,
) -> ScanResult:
    """Rewrite references in a JS/TS source file.

    Args:
        text: File content.
        file_now: Where the file lives after the move.
        file_before: Where the file lived before the move (equal to
            *file_now* for files that do not move).
        move: The relocation being applied.
        exists: When the move has already happened on disk, tells whether a
            path relative to the root resolves to a module.  Relative
            specifiers in a moved file that already resolve from its new
            location are then left as they are.
    """
    rel_file = file_now.as_posix()
    result = ScanResult(text=text)
    token_re = _root_token_re(move.old)
    moved_file = file_now != file_before

    def _import(match: re.Match[str]) -> str:
        spec = match.group("spec")
        if not (spec.startswith("./") or spec.startswith("../")):
            return match.group(0)
        if moved_file and _resolves_here(spec, file_now, exists):
            return match.group(0)
        target = _resolve(file_before.parent, spec)
        if target is None:
            return match.group(0)
        mapped = move.map(target)
        if mapped is None and not moved_file:
            return match.group(0)
        new_spec = _relative_specifier(mapped or target, file_now.parent)
        if spec.endswith("/") and not new_spec.endswith("/"):
            new_spec += "/"
        if new_spec == spec:
            return match.group(0)
        result.rewrites.append(
            Rewrite(rel_file, _line_of(text, match.start()), spec, new_spec)
        )
        q = match.group("q")
        return f"{match.group('prefix')}{q}{new_spec}{q}"

    rewritten = _JS_IMPORT_RE.sub(_import, text)
    rewritten = _rewrite_literals(
        rewritten, file_now, file_before, move, token_re, result,
        skip_imports=True, exists=exists,
    )
    return _finish_code_scan(
        rewritten, rel_file, move, token_re, result, _JS_DYNAMIC_RES,
        (_JS_IMPORT_RE, _STRING_RE, _BACKTICK_RE),
    )


def _finish_code_scan(
    text: str,
    rel_file: str,
    move: PathMove,
    token_re: re.Pattern[str],
    result: ScanResult,
    dynamic_res: tuple[re.Pattern[str], ...],
    literal_res: tuple[re.Pattern[str], ...],
) -> ScanResult:
    """Report dynamic references, then rewrite the old path outside literals.

    Comments and other bare text mentioning the old path are rewritten like
    any other text file.  Lines reported as dynamic are left for the operator.
    """
    result.problems.extend(
        _dynamic_problems(text, rel_file, move, dynamic_res, {r.line for r in result.rewrites})
    )
    result.text = _rewrite_root_tokens(
        text, rel_file, move, token_re, result,
        skip_lines={p.line for p in result.problems},
        literal_res=literal_res,
    )
    return result


def _resolves_here(spec: str, file_now: PurePosixPath, exists: Exists | None) -> bool:
    if exists is None:
        return False
    current = _resolve(file_now.parent, spec)
    return current is not None and exists(current)


def _rewrite_literals(
    text: str,
    file_now: PurePosixPath,
    file_before: PurePosixPath,
    move: PathMove,
    token_re: re.Pattern[str],
    result: ScanResult,
    *,
    skip_imports: bool,
    exists: Exists | None = None,
) -> str:
    rel_file = file_now.as_posix()
    import_spans = (
        [m.span("spec") for m in _JS_IMPORT_RE.finditer(text)] if skip_imports else []
    )

    def _literal(match: re.Match[str]) -> str:
        body_start, body_end = match.span("body")
        if any(s <= body_start and body_end <= e for s, e in import_spans):
            return match.group(0)
        body = match.group("body")
        line = _line_text(text, match.start())
        if skip_imports and body.startswith(("./", "../")) and "__dirname" in line:
            new_body = _rewrite_dirname_relative(body, file_now, file_before, move, exists)
        else:
            new_body = _substitute_root_tokens(body, token_re, move)
        if new_body == body:
            return match.group(0)
        result.rewrites.append(
            Rewrite(rel_file, _line_of(text, match.start()), body, new_body)
        )
        whole = match.group(0)
        return whole[: body_start - match.start()] + new_body + whole[body_end - match.start():]

    text = _STRING_RE.sub(_literal, text)
    return _BACKTICK_RE.sub(_literal, text)


def _rewrite_dirname_relative(
    body: str,
    file_now: PurePosixPath,
    file_before: PurePosixPath,
    move: PathMove,
    exists: Exists | None = None,
) -> str:
    if file_now != file_before and _resolves_here(body, file_now, exists):
        return body
    target = _resolve(file_before.parent, body)
    if target is None:
        return body
    mapped = move.map(target)
    if mapped is None and file_now == file_before:
        return body
    new_body = _relative_specifier(mapped or target, file_now.parent)
    return body if new_body == body else new_body


def _dynamic_problems(
    text: str,
    rel_file: str,
    move: PathMove,
    patterns: tuple[re.Pattern[str], ...],
    rewritten_lines: set[int],
) -> list[Problem]:
    mention = _mention_re(move)
    problems: list[Problem] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if lineno in rewritten_lines or not mention.search(line):
            continue
        if any(p.search(line) for p in patterns):
            problems.append(
                Problem(
                    rel_file,
                    lineno,
                    line.strip(),
                    f"dynamically constructed reference may point at {move.old.as_posix()}",
                )
            )
    return problems


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------


def scan_python(
    text: str,
    file_now: PurePosixPath,
    file_before: PurePosixPath,
    move: PathMove,
) -> ScanResult:
    """Rewrite module references and path literals in a Python file."""
    rel_file = file_now.as_posix()
    result = ScanResult(text=text)
    old_mod = move.old_module
    new_mod = move.new_module

    if old_mod is not None:
        first_line = _first_module_line(text, old_mod)
        if new_mod is None and first_line is not None:
            result.problems.append(
                Problem(
                    rel_file,
                    first_line,
                    old_mod,
                    f"{move.new.as_posix()} is not an importable module path",
                )
            )
        elif new_mod is not None and new_mod != old_mod:
            text = _rewrite_python_modules(text, rel_file, old_mod, new_mod, result)
        result.problems.extend(_ambiguous_python_imports(text, rel_file, file_before, move))

    token_re = _root_token_re(move.old)
    text = _rewrite_literals(
        text, file_now, file_before, move, token_re, result, skip_imports=False
    )
    return _finish_code_scan(
        text, rel_file, move, token_re, result, _PY_DYNAMIC_RES, (_STRING_RE,)
    )


def _module_pattern(module: str) -> re.Pattern[str]:
    if "." in module:
        return re.compile(rf"(?<![\w.]){re.escape(module)}(?![\w])")
    # Bare identifiers only count inside import statements.
    return re.compile(
        rf"^\s*(?:from\s+{re.escape(module)}(?:\.[\w.]*)?\s+import\b"
        rf"|import\s+(?:[\w.]+\s*,\s*)*{re.escape(module)}(?![\w]))",
        re.MULTILINE,
    )


def _first_module_line(text: str, module: str) -> int | None:
    match = _module_pattern(module).search(text)
    return _line_of(text, match.start()) if match else None


def _rewrite_python_modules(
    text: str, rel_file: str, old_mod: str, new_mod: str, result: ScanResult
) -> str:
    if "." in old_mod:
        # A dotted path is specific enough to substitute everywhere:
        # imports, attribute access and mock.patch targets alike.
        pattern = re.compile(rf"(?<![\w.]){re.escape(old_mod)}(?![\w])")

        def _dotted(match: re.Match[str]) -> str:
            result.rewrites.append(
                Rewrite(rel_file, _line_of(text, match.start()), old_mod, new_mod)
            )
            return new_mod

        return pattern.sub(_dotted, text)

    # A single identifier is only rewritten where it is unmistakably a module.
    lines = text.splitlines(keepends=True)
    prefix_re = re.compile(rf"^{re.escape(old_mod)}(?=\.|$)")
    string_re = re.compile(rf"(?P<q>['\"]){re.escape(old_mod)}(?=\.[\w.]*(?P=q))")
    for index, line in enumerate(lines):
        lineno = index + 1
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        new_body = body

        from_match = _PY_FROM_RE.match(body)
        import_match = _PY_IMPORT_RE.match(body)
        if from_match and prefix_re.match(from_match.group("module")):
            module = prefix_re.sub(new_mod, from_match.group("module"))
            new_body = (
                f"{from_match.group('indent')}from {module} import {from_match.group('names')}"
            )
        elif import_match:
            parts = []
            touched = False
            for part in _split_imports(import_match.group("modules")):
                name, alias = part
                if name == old_mod and not alias:
                    parts.append(f"{new_mod} as {old_mod}")
                    touched = True
                elif prefix_re.match(name) and alias:
                    parts.append(f"{prefix_re.sub(new_mod, name)} as {alias}")
                    touched = True
                else:
                    parts.append(f"{name} as {alias}" if alias else name)
            if touched:
                rest = import_match.group("rest")
                new_body = f"{import_match.group('indent')}import {', '.join(parts)}"
                if rest:
                    new_body += f"  {rest}"
        new_body = string_re.sub(lambda m: f"{m.group('q')}{new_mod}", new_body)

        if new_body != body:
            result.rewrites.append(Rewrite(rel_file, lineno, body.strip(), new_body.strip()))
            lines[index] = new_body + ending
    return "".join(lines)


def _ambiguous_python_imports(
    text: str, rel_file: str, file_before: PurePosixPath, move: PathMove
) -> list[Problem]:
    """Imports that name the old module in a way prefix substitution cannot fix."""
    old_mod = move.old_module
    problems: list[Problem] = []
    if old_mod is None:
        return problems
    parent, _, leaf = old_mod.rpartition(".")
    own_package = _module_name(file_before.parent) if file_before.parent.parts else ""

    for lineno, line in enumerate(text.splitlines(), start=1):
        from_match = _PY_FROM_RE.match(line)
        if from_match:
            module = from_match.group("module")
            names = re.findall(r"\w+", from_match.group("names").split("#", 1)[0])
            absolute = _absolute_module(module, own_package)
            if absolute is None:
                continue
            if module.startswith(".") and (
                absolute == old_mod or absolute.startswith(old_mod + ".")
                or (absolute == parent and leaf in names)
            ):
                if not move.contains_old(file_before):
                    problems.append(
                        Problem(rel_file, lineno, line.strip(),
                                f"relative import of {old_mod} must be rewritten by hand")
                    )
                continue
            if module.startswith(".") and move.contains_old(file_before):
                # Relative imports inside the moved subtree stay valid as long
                # as they do not reach above it.
                if not (absolute == old_mod or absolute.startswith(old_mod + ".")):
                    if move.old.parent != move.new.parent:
                        problems.append(
                            Problem(rel_file, lineno, line.strip(),
                                    "relative import reaches outside the moved location")
                        )
                continue
            if parent and absolute == parent and leaf in names:
                problems.append(
                    Problem(rel_file, lineno, line.strip(),
                            f"'from {parent} import {leaf}' binds the moved module by name")
                )
            continue

        import_match = _PY_IMPORT_RE.match(line)
        if import_match and "." not in old_mod:
            for name, alias in _split_imports(import_match.group("modules")):
                if name.startswith(old_mod + ".") and not alias:
                    problems.append(
                        Problem(rel_file, lineno, line.strip(),
                                f"'import {name}' binds {old_mod} as a package name")
                    )
    return problems


def _split_imports(modules: str) -> list[tuple[str, str]]:
    """Split ``a.b as c, d`` into ``[("a.b", "c"), ("d", "")]``."""
    pairs: list[tuple[str, str]] = []
    for part in re.split(r"\s*,\s*", modules.strip()):
        pieces = re.split(r"\s+as\s+", part, maxsplit=1)
        alias = pieces[1] if len(pieces) > 1 else ""
        pairs.append((pieces[0].strip(), alias.strip()))
    return pairs


def _absolute_module(module: str, own_package: str | None) -> str | None:
    if not module.startswith("."):
        return module
    if own_package is None:
        return None
    level = len(module) - len(module.lstrip("."))
    base = own_package.split(".") if own_package else []
    if level - 1 > len(base):
        return None
    base = base[: len(base) - (level - 1)]
    rest = module[level:]
    return ".".join(p for p in [*base, rest] if p)


# ---------------------------------------------------------------------------
# Other text files
# ---------------------------------------------------------------------------


def scan_text(text: str, file_now: PurePosixPath, move: PathMove) -> ScanResult:
    """Substitute root-relative occurrences of the old path in any text file."""
    rel_file = file_now.as_posix()
    result = ScanResult(text=text)
    result.text = _rewrite_root_tokens(text, rel_file, move, _root_token_re(move.old), result)
    return result


def scan_file(
    text: str,
    file_now: PurePosixPath,
    file_before: PurePosixPath,
    move: PathMove,
    exists: Exists | None = None,
) -> ScanResult:
    """Dispatch on the file's extension."""
    suffix = file_now.suffix
    if suffix in JS_SUFFIXES:
        return scan_js(text, file_now, file_before, move, exists)
    if suffix in PY_SUFFIXES:
        return scan_python(text, file_now, file_before, move)
    return scan_text(text, file_now, move)
