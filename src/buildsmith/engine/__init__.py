"""Selection engine interfaces."""

from buildsmith.engine.assembler import AssembledBuild, assemble_build
from buildsmith.engine.build_config import BuildConfig
from buildsmith.engine.build_engine import BuildEngine
from buildsmith.engine.completion import CompletionIssue
from buildsmith.engine.errors import InvariantViolation, ReentrantMutationError
from buildsmith.engine.point_pool import PointPoolSummary
from buildsmith.engine.rule_engine import ValidationState
from buildsmith.engine.selection_store import BuildState

__all__ = [
    "AssembledBuild",
    "BuildConfig",
    "BuildEngine",
    "BuildState",
    "CompletionIssue",
    "InvariantViolation",
    "PointPoolSummary",
    "ReentrantMutationError",
    "ValidationState",
    "assemble_build",
]
