"""Error taxonomy for the realign tool.

Every failure the pipeline can surface is a :class:`RealignError` carrying a
``kind`` (``config``, ``io``, ``reference`` or ``verification``) and, where
one exists, the offending path or name.  Library code raises these; only the
pipeline catches them, records them in its state file and halts.
"""

from __future__ import annotations

from pathlib import Path


class RealignError(Exception):
    """Base class for all fatal realign errors."""

    kind: str = "error"

    def __init__(self, message: str, path: str | Path | None = None) -> None:
        self.path = str(path) if path is not None else None
        super().__init__(message)

    def as_dict(self) -> dict[str, str | None]:
        """Return a JSON-friendly description used by the state file."""
        return {"kind": self.kind, "message": str(self), "path": self.path}


class ConfigError(RealignError):
    """Unknown or invalid environment lookup / configuration document."""

    kind = "config"


class FileSystemError(RealignError):
    """A file-system operation is impossible (wrong type, permission, escape)."""

    kind = "io"


class ReferenceRewriteError(RealignError):
    """An import or path reference could not be rewritten unambiguously.

    ``locations`` holds ``(file, line, text)`` tuples for every reference the
    operator has to resolve by hand.
    """

    kind = "reference"

    def __init__(
        self,
        message: str,
        path: str | Path | None = None,
        locations: list[tuple[str, int, str]] | None = None,
    ) -> None:
        self.locations = list(locations or [])
        super().__init__(message, path)

    def as_dict(self) -> dict[str, str | None]:
        data = super().as_dict()
        data["locations"] = [  # type: ignore[assignment]
            f"{file}:{line}: {text}" for file, line, text in self.locations
        ]
        return data


class VerificationError(RealignError):
    """An external verification step exited non-zero or timed out."""

    kind = "verification"

    def __init__(
        self, step: str, message: str, output: str = "", report: object | None = None
    ) -> None:
        self.step = step
        self.output = output
        self.report = report
        super().__init__(message, step)
