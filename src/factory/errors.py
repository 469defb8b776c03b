"""
Error taxonomy for the generation pipeline.

Every failure names the stage it belongs to so the caller can decide whether
to regenerate. Nothing here is retried automatically.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from src.factory.models import VideoVariant
    from src.factory.stages import Stage


class PipelineError(Exception):
    """Base class for all orchestrator errors."""


class PreconditionNotMet(PipelineError):
    """A stage was started before an earlier stage produced its artifact."""

    def __init__(self, stage: "Stage", missing: "Stage"):
        self.stage = stage
        self.missing = missing
        super().__init__(f"Cannot run {stage.value}: {missing.value} has no artifact yet")


class OperationInProgress(PipelineError):
    """A second operation was started while one is still in flight."""

    def __init__(self, project_id: str, active: "Stage", requested: Optional["Stage"] = None):
        self.project_id = project_id
        self.active = active
        self.requested = requested
        super().__init__(
            f"Project {project_id} is already running {active.value}"
            + (f"; cannot start {requested.value}" if requested else "")
        )


class CollaboratorFailed(PipelineError):
    """An external operation ended with a terminal failure."""

    def __init__(self, stage: "Stage", reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage.value} failed: {reason}")


class ReconciliationRequired(PipelineError):
    """The image plan and the produced images disagree on count.

    Resolved internally by the reconciliation engine; never surfaced to users
    as a hard error.
    """

    def __init__(self, plan_count: int, image_count: int):
        self.plan_count = plan_count
        self.image_count = image_count
        super().__init__(f"Image plan has {plan_count} prompts but {image_count} images exist")


class PartialVariantFailure(PipelineError):
    """Some render variants failed while others completed.

    Attached to a successful render outcome rather than raised.
    """

    def __init__(self, failed: dict["VideoVariant", str], completed: list["VideoVariant"]):
        self.failed = dict(failed)
        self.completed = list(completed)
        details = ", ".join(f"{v.value}: {r}" for v, r in self.failed.items())
        super().__init__(f"{len(self.failed)} variant(s) failed ({details})")


class ProjectClosed(PipelineError):
    """The project was published or abandoned and accepts no more work."""

    def __init__(self, project_id: str, status: str):
        self.project_id = project_id
        self.status = status
        super().__init__(f"Project {project_id} is {status}")


class UnknownProject(PipelineError):
    """No stored project with this ID."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")
