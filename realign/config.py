"""realign tool configuration.

Centralised, typed settings for a restructuring run.  All settings use
Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class VerificationConfig(BaseModel):
    """External tool commands run by the verification phase, in order.

    An empty command disables that step.
    """

    install: str = Field(default="npm install")
    build: str = Field(default="npm run build")
    synth: str = Field(default="npx cdk synth")
    test: str = Field(default="npm test")
    step_timeout: int = Field(
        default=900, ge=10, description="Per-step timeout in seconds"
    )

    def steps(self) -> list[tuple[str, str]]:
        """Return ``(step, command)`` pairs in execution order."""
        return [
            ("install", self.install),
            ("build", self.build),
            ("synth", self.synth),
            ("test", self.test),
        ]


class Settings(BaseModel):
    """Global realign configuration.

    Holds every tuneable parameter and derived path used by the pipeline.
    Instances are typically created once by the CLI entry point and then
    passed through the rest of the system.
    """

    root: Path = Field(default=Path("."))
    state_dir: str = Field(default=".realign")
    use_git: bool = Field(default=True, description="Use `git mv` when the root is a work tree")
    dry_run: bool = Field(default=False)
    checkpoint: bool = Field(default=False, description="Confirm before every phase")
    overwrite_documents: bool = Field(default=False)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)

    # Phase control -- which pipeline phases to execute (1-5).
    phases: list[int] = Field(default=[1, 2, 3, 4, 5])

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def state_path(self) -> Path:
        """Root of the ``.realign/`` metadata directory inside the project."""
        return self.root / self.state_dir

    @property
    def state_file(self) -> Path:
        """Path to the persisted pipeline state JSON file."""
        return self.state_path / "state.json"

    @property
    def reports_dir(self) -> Path:
        """Directory that stores per-phase reports (verification logs etc.)."""
        return self.state_path / "reports"

    @property
    def verification_report_path(self) -> Path:
        return self.reports_dir / "verification.json"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the settings to a JSON file.

        Args:
            path: Destination file. Defaults to ``<state_path>/settings.json``.

        Returns:
            The path where the file was written.
        """
        target = path or (self.state_path / "settings.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Settings":
        """Load previously-saved settings from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build ``Settings`` from environment variables.

        Recognised variables (all optional):
            REALIGN_ROOT, REALIGN_PHASES, REALIGN_USE_GIT, REALIGN_DRY_RUN,
            REALIGN_STEP_TIMEOUT, REALIGN_INSTALL_CMD, REALIGN_BUILD_CMD,
            REALIGN_SYNTH_CMD, REALIGN_TEST_CMD.
        """
        verification_kwargs: dict[str, Any] = {}
        for step in ("install", "build", "synth", "test"):
            var = f"REALIGN_{step.upper()}_CMD"
            if var in os.environ:
                verification_kwargs[step] = os.environ[var]
        if os.environ.get("REALIGN_STEP_TIMEOUT"):
            verification_kwargs["step_timeout"] = int(os.environ["REALIGN_STEP_TIMEOUT"])

        phases_str = os.environ.get("REALIGN_PHASES", "1,2,3,4,5")
        phases = [int(p.strip()) for p in phases_str.split(",") if p.strip()]

        return cls(
            root=Path(os.environ.get("REALIGN_ROOT", ".")),
            use_git=_env_flag("REALIGN_USE_GIT", True),
            dry_run=_env_flag("REALIGN_DRY_RUN", False),
            verification=VerificationConfig(**verification_kwargs),
            phases=phases,
        )

    def ensure_directories(self) -> None:
        """Create the metadata directories the pipeline writes into."""
        for directory in (self.state_path, self.reports_dir):
            directory.mkdir(parents=True, exist_ok=True)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
