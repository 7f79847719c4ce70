"""Public SDK surface for Kiln.

This module provides a stable import path for library users.
It re-exports the pipeline loader, the build driver, and typed models.
"""

from __future__ import annotations

from core.config import KilnConfig
from core.errors import (
    ArtifactCopyError,
    ArtifactNotFoundError,
    KilnConfigError,
    KilnError,
    ModuleToggleError,
    PipelineSpecError,
    ProvisioningFailedError,
    SourceUnavailableError,
    StageCommandFailedError,
)
from core.pipeline_spec import load_pipeline_spec, parse_pipeline_spec
from core.types import PipelineResult, PipelineSpec, RuntimeLayout, StageOutcome, StageSpec
from provision.image_manifest import ImageManifest, load_image_manifest
from provision.launcher import build_launch_plan, launch
from provision.provisioner import RuntimeProvisioner
from stages.pipeline_runner import build_image
from stages.stage_graph import StageGraph
from toggles.module_manifest import ModuleManifest, apply_toggles, toggle_manifest_file

__all__ = [
    "ArtifactCopyError",
    "ArtifactNotFoundError",
    "ImageManifest",
    "KilnConfig",
    "KilnConfigError",
    "KilnError",
    "ModuleManifest",
    "ModuleToggleError",
    "PipelineResult",
    "PipelineSpec",
    "PipelineSpecError",
    "ProvisioningFailedError",
    "RuntimeLayout",
    "RuntimeProvisioner",
    "SourceUnavailableError",
    "StageCommandFailedError",
    "StageGraph",
    "StageOutcome",
    "StageSpec",
    "apply_toggles",
    "build_image",
    "build_launch_plan",
    "launch",
    "load_image_manifest",
    "load_pipeline_spec",
    "parse_pipeline_spec",
    "toggle_manifest_file",
]
