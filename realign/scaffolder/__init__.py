"""realign scaffolder -- writes documents, directories and generated config.

Quick usage::

    from realign.scaffolder import DirectoryMaterializer, targets_from_plan

    materializer = DirectoryMaterializer("/path/to/project")
    result = await materializer.materialize(targets_from_plan(plan))
"""

from realign.scaffolder.config_writer import ConfigurationRewriter, ConfigWriteResult
from realign.scaffolder.docs import DocumentGenerator, DocumentResult, build_context
from realign.scaffolder.materializer import (
    DirectoryMaterializer,
    MaterializeResult,
    MaterializeTarget,
    TargetKind,
    targets_from_plan,
)
from realign.scaffolder.templates import TemplateRenderer

__all__ = [
    "ConfigWriteResult",
    "ConfigurationRewriter",
    "DirectoryMaterializer",
    "DocumentGenerator",
    "DocumentResult",
    "MaterializeResult",
    "MaterializeTarget",
    "TargetKind",
    "TemplateRenderer",
    "build_context",
    "targets_from_plan",
]
