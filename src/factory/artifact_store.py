"""
Artifact Store - Current output of every stage of one project.

Only the Stage Controller and the Reconciliation Engine write here;
collaborators return values and never touch the store.

Key concepts:
- One slot per stage, holding the latest complete artifact
- Writes swap in a whole value (never partial)
- Version: each write bumps the stage's version counter
- A stage can be written only if every earlier stage has an artifact
"""

from datetime import datetime
from typing import Any, Optional

from src.factory.errors import PreconditionNotMet, ReconciliationRequired
from src.factory.models import (
    AudioArtifact,
    CaptionArtifact,
    ImagePlan,
    ImageSet,
    PublishResult,
    RenderArtifact,
    ScriptArtifact,
    parse_artifact,
)
from src.factory.stages import STAGE_ORDER, Stage, stages_before


STAGE_ARTIFACT_TYPES: dict[Stage, type] = {
    Stage.SCRIPT: ScriptArtifact,
    Stage.AUDIO: AudioArtifact,
    Stage.CAPTIONS: CaptionArtifact,
    Stage.IMAGE_PLAN: ImagePlan,
    Stage.IMAGES: ImageSet,
    Stage.RENDER: RenderArtifact,
    Stage.PUBLISH: PublishResult,
}


class ArtifactStore:
    """
    Per-project store of stage artifacts.

    Features:
    - Stage-ordered write precondition
    - Version counter and write timestamp per stage
    - Plan/image count consistency check
    - Dict round-trip for persistence
    """

    def __init__(self):
        self._artifacts: dict[Stage, Any] = {}
        self._versions: dict[Stage, int] = {}
        self._written_at: dict[Stage, datetime] = {}

    # === Typed accessors ===

    @property
    def script(self) -> Optional[ScriptArtifact]:
        return self._artifacts.get(Stage.SCRIPT)

    @property
    def audio(self) -> Optional[AudioArtifact]:
        return self._artifacts.get(Stage.AUDIO)

    @property
    def captions(self) -> Optional[CaptionArtifact]:
        return self._artifacts.get(Stage.CAPTIONS)

    @property
    def image_plan(self) -> Optional[ImagePlan]:
        return self._artifacts.get(Stage.IMAGE_PLAN)

    @property
    def images(self) -> Optional[ImageSet]:
        return self._artifacts.get(Stage.IMAGES)

    @property
    def render(self) -> Optional[RenderArtifact]:
        return self._artifacts.get(Stage.RENDER)

    @property
    def publish(self) -> Optional[PublishResult]:
        return self._artifacts.get(Stage.PUBLISH)

    # === Queries ===

    def get(self, stage: Stage) -> Optional[Any]:
        """Current artifact of `stage`, or None."""
        return self._artifacts.get(stage)

    def has(self, stage: Stage) -> bool:
        """Whether `stage` holds a usable artifact.

        A render artifact counts only once at least one variant completed.
        """
        artifact = self._artifacts.get(stage)
        if artifact is None:
            return False
        if isinstance(artifact, RenderArtifact):
            return artifact.has_output
        return True

    def version(self, stage: Stage) -> int:
        """Number of writes to `stage` so far."""
        return self._versions.get(stage, 0)

    def written_at(self, stage: Stage) -> Optional[datetime]:
        return self._written_at.get(stage)

    def first_missing_before(self, stage: Stage) -> Optional[Stage]:
        """Earliest stage before `stage` without an artifact, if any."""
        for earlier in stages_before(stage):
            if not self.has(earlier):
                return earlier
        return None

    def require_ready_for(self, stage: Stage) -> None:
        """Raise unless every stage before `stage` has an artifact.

        Raises:
            PreconditionNotMet: Naming the earliest missing stage.
        """
        missing = self.first_missing_before(stage)
        if missing is not None:
            raise PreconditionNotMet(stage, missing)

    def present_stages(self) -> list[Stage]:
        return [s for s in STAGE_ORDER if self.has(s)]

    def check_consistency(self) -> None:
        """Verify the image plan and image set agree on count.

        Raises:
            ReconciliationRequired: If both exist and their counts differ.
        """
        plan, images = self.image_plan, self.images
        if plan is not None and images is not None and plan.count != images.count:
            raise ReconciliationRequired(plan.count, images.count)

    # === Writes ===

    def put(self, stage: Stage, artifact: Any) -> Any:
        """
        Swap in a complete artifact for `stage`.

        Args:
            stage: Stage the artifact belongs to
            artifact: Complete artifact of the stage's type

        Returns:
            The stored artifact.

        Raises:
            TypeError: If the artifact type does not match the stage.
            PreconditionNotMet: If an earlier stage has no artifact.
        """
        expected = STAGE_ARTIFACT_TYPES[stage]
        if not isinstance(artifact, expected):
            raise TypeError(
                f"{stage.value} expects {expected.__name__}, got {type(artifact).__name__}"
            )
        self.require_ready_for(stage)

        self._artifacts[stage] = artifact
        self._versions[stage] = self._versions.get(stage, 0) + 1
        self._written_at[stage] = datetime.now()
        return artifact

    # === Serialization ===

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dict keyed by stage name."""
        return {
            stage.value: {
                "artifact": artifact.model_dump(mode="json"),
                "version": self._versions.get(stage, 1),
                "written_at": self._written_at[stage].isoformat() if stage in self._written_at else None,
            }
            for stage, artifact in self._artifacts.items()
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ArtifactStore":
        """Rebuild a store from `to_dict` output."""
        store = cls()
        for stage_name, entry in data.items():
            stage = Stage(stage_name)
            store._artifacts[stage] = parse_artifact(entry["artifact"])
            store._versions[stage] = entry.get("version", 1)
            if entry.get("written_at"):
                store._written_at[stage] = datetime.fromisoformat(entry["written_at"])
        return store

    def summary(self) -> dict:
        """Get a summary of the store state."""
        return {
            "stages": {
                stage.value: {
                    "present": self.has(stage),
                    "version": self.version(stage),
                }
                for stage in STAGE_ORDER
            },
            "image_plan_count": self.image_plan.count if self.image_plan else None,
            "image_count": self.images.count if self.images else None,
            "render_variants": sorted(v.value for v in self.render.variants) if self.render else [],
        }
