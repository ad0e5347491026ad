"""Restructure plan: the declarative input of a realign run.

A plan is a YAML document listing the documents to write, the directories and
placeholder files to materialize, the environment record to regenerate the
config from, and the moves to perform::

    project_name: orders-service
    documents: [prereqs, network, contributing]
    directories: [application, helpers, config]
    functions: [order-handler]
    moves:
      - source: lambda/order-handler
        destination: application/order-handler/src
"""

from __future__ import annotations

import json
import re
from pathlib import Path, PurePosixPath
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from realign.errors import ConfigError


KNOWN_DOCUMENTS = ("prereqs", "network", "contributing")

# A deployable unit name is one path segment under the functions root.
_FUNCTION_NAME_RE = re.compile(r"[A-Za-z0-9][\w.-]*")


def _normalise_relative(value: str) -> str:
    """Validate a plan path: relative, POSIX, no ``..`` components."""
    raw = str(value).strip().replace("\\", "/")
    path = PurePosixPath(raw)
    if not raw or path.is_absolute():
        raise ValueError(f"path must be relative to the project root: {value!r}")
    if ".." in path.parts:
        raise ValueError(f"path must not contain '..': {value!r}")
    normalised = str(path)
    if normalised == ".":
        raise ValueError("path must not be the project root itself")
    return normalised


class Placeholder(BaseModel):
    """A file to create if missing, with optional initial content."""

    path: str
    content: str = Field(default="")

    @field_validator("path")
    @classmethod
    def _relative(cls, value: str) -> str:
        return _normalise_relative(value)


class Move(BaseModel):
    """One relocation: a file or subtree from *source* to *destination*."""

    source: str
    destination: str

    @field_validator("source", "destination")
    @classmethod
    def _relative(cls, value: str) -> str:
        return _normalise_relative(value)


class RestructurePlan(BaseModel):
    """Pydantic model describing the target layout of a project."""

    project_name: str = Field(default="", description="Used in documents and generated code")
    description: str = Field(default="")
    documents: list[str] = Field(default_factory=lambda: list(KNOWN_DOCUMENTS))
    directories: list[str] = Field(default_factory=list)
    placeholders: list[Placeholder] = Field(default_factory=list)
    functions: list[str] = Field(
        default_factory=list,
        description="Deployable units scaffolded under application/<name>",
    )
    functions_root: str = Field(default="application")
    environments_file: Optional[str] = Field(default="config/environments.yaml")
    config_output: str = Field(default="config/environment-config.ts")
    helpers: bool = Field(default=True, description="Render helpers/ boilerplate")
    helpers_dir: str = Field(default="helpers")
    moves: list[Move] = Field(default_factory=list)
    verification: dict[str, str] = Field(
        default_factory=dict, description="Per-step command overrides"
    )

    @field_validator("directories")
    @classmethod
    def _relative_dirs(cls, value: list[str]) -> list[str]:
        return [_normalise_relative(v) for v in value]

    @field_validator("functions_root", "config_output", "helpers_dir")
    @classmethod
    def _relative_single(cls, value: str) -> str:
        return _normalise_relative(value)

    @field_validator("documents")
    @classmethod
    def _known_documents(cls, value: list[str]) -> list[str]:
        unknown = [d for d in value if d not in KNOWN_DOCUMENTS]
        if unknown:
            raise ValueError(
                f"unknown document(s) {unknown}; expected any of {list(KNOWN_DOCUMENTS)}"
            )
        return value

    @field_validator("functions")
    @classmethod
    def _function_names(cls, value: list[str]) -> list[str]:
        invalid = [name for name in value if not _FUNCTION_NAME_RE.fullmatch(name)]
        if invalid:
            raise ValueError(
                f"invalid function name(s) {invalid}; expected a single path segment"
            )
        return value

    @field_validator("verification")
    @classmethod
    def _known_steps(cls, value: dict[str, str]) -> dict[str, str]:
        unknown = [k for k in value if k not in ("install", "build", "synth", "test")]
        if unknown:
            raise ValueError(f"unknown verification step(s): {unknown}")
        return value

    def function_directories(self) -> list[str]:
        """Relative ``src``/``tests`` directories for every deployable unit."""
        dirs: list[str] = []
        for name in self.functions:
            base = f"{self.functions_root}/{name}"
            dirs.extend([f"{base}/src", f"{base}/tests"])
        return dirs

    def under_move_destination(self, path: str) -> bool:
        """True when *path* is, or lies below, the destination of a move.

        Such paths are created by the move itself and must not exist
        beforehand.
        """
        target = PurePosixPath(path)
        for move in self.moves:
            destination = PurePosixPath(move.destination)
            if target == destination or destination in target.parents:
                return True
        return False

    def function_manifests(self) -> list[Placeholder]:
        """Dependency manifest placeholders for every deployable unit."""
        return [
            Placeholder(
                path=f"{self.functions_root}/{name}/package.json",
                content=_function_manifest(name),
            )
            for name in self.functions
        ]


def _function_manifest(name: str) -> str:
    manifest = {
        "name": name,
        "version": "0.1.0",
        "private": True,
        "main": "src/index.js",
        "scripts": {"test": "jest"},
        "dependencies": {},
    }
    return json.dumps(manifest, indent=2) + "\n"


def parse_plan(data: Any, source: str = "<memory>") -> RestructurePlan:
    """Validate a mapping into a :class:`RestructurePlan`.

    Raises:
        ConfigError: If the mapping does not describe a valid plan.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"restructure plan must be a mapping: {source}", source)
    try:
        return RestructurePlan.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid restructure plan in {source}: {exc}", source) from exc


def load_plan(path: str | Path) -> RestructurePlan:
    """Read a YAML restructure plan from *path*."""
    plan_path = Path(path)
    if not plan_path.is_file():
        raise ConfigError(f"restructure plan not found: {plan_path}", plan_path)
    try:
        data = yaml.safe_load(plan_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {plan_path}: {exc}", plan_path) from exc
    return parse_plan(data, str(plan_path))
