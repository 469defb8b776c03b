"""
Video Factory - Orchestrates the generation pipeline of one narrated video.

This module provides the core architecture:
- Stage: Ordered pipeline steps (script → audio → captions → image plan → images → render → publish)
- ArtifactStore: Current output of every stage, with stage-ordered writes
- ApprovalTracker: Human sign-off per stage (a checklist, never a gate)
- ReconciliationEngine: Repairs image plans whose count drifted from the images
- Progress events: One guarded stream per long-running operation

The Stage Controller (`src.factory.controller`) and Render Coordinator
(`src.factory.render`) build on these and are imported from their modules.

Architecture:
    Controller → Collaborator streams → Artifact Store ← Reconciliation
"""

from src.factory.approvals import ApprovalTracker
from src.factory.artifact_store import ArtifactStore
from src.factory.errors import (
    CollaboratorFailed,
    OperationInProgress,
    PartialVariantFailure,
    PipelineError,
    PreconditionNotMet,
    ProjectClosed,
    ReconciliationRequired,
    UnknownProject,
)
from src.factory.progress import Completed, Failed, Operation, Progress, Ready
from src.factory.reconciliation import ReconciliationEngine
from src.factory.stages import STAGE_ORDER, Stage

__all__ = [
    "ApprovalTracker",
    "ArtifactStore",
    "CollaboratorFailed",
    "Completed",
    "Failed",
    "Operation",
    "OperationInProgress",
    "PartialVariantFailure",
    "PipelineError",
    "PreconditionNotMet",
    "Progress",
    "ProjectClosed",
    "Ready",
    "ReconciliationEngine",
    "ReconciliationRequired",
    "STAGE_ORDER",
    "Stage",
    "UnknownProject",
]
