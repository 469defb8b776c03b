"""
Project - The single authoritative record of one video being produced.

Ties together:
- ArtifactStore: current output of every stage
- ApprovalTracker: human sign-off per stage
- Variant slots: render state of basic / embers / smoke_embers
- History: navigation, completions, regenerations, reconciliations

Usage:
    project = Project.create(title="The Fall of Rome", url="https://youtube.com/watch?v=...")
    controller = StageController(project, collaborators)
    await controller.run(Stage.SCRIPT)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from src.factory.approvals import ApprovalTracker
from src.factory.artifact_store import ArtifactStore
from src.factory.models import GenerationSettings, SourceInput, VideoVariant
from src.factory.render import VariantSlot, default_slots
from src.factory.stages import Stage, StageEvent


class ProjectStatus(str, Enum):
    """Lifecycle of a project."""

    ACTIVE = "active"
    PUBLISHED = "published"
    ABANDONED = "abandoned"


@dataclass
class Project:
    """A video project and everything produced for it so far."""

    id: str
    title: str
    source: SourceInput
    settings: GenerationSettings = field(default_factory=GenerationSettings)
    current_stage: Stage = Stage.SCRIPT
    artifacts: ArtifactStore = field(default_factory=ArtifactStore)
    approvals: ApprovalTracker = field(default_factory=ApprovalTracker)
    variant_slots: dict[VideoVariant, VariantSlot] = field(default_factory=default_slots)
    auto_render_triggered: bool = False
    status: ProjectStatus = ProjectStatus.ACTIVE
    history: list[StageEvent] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        title: str = "",
        url: Optional[str] = None,
        transcript: Optional[str] = None,
        settings: Optional[GenerationSettings] = None,
        config: Any = None,
        project_id: Optional[str] = None,
    ) -> "Project":
        """
        Start a new project from a source URL, a title, or both.

        Args:
            title: Working title of the video
            url: Source video to fetch a transcript from
            transcript: Source text supplied directly
            settings: Explicit generation settings
            config: `Config` to seed settings from when none are given
            project_id: Fixed ID (generated when omitted)

        Raises:
            ValueError: If neither a title nor a source is given.
        """
        if not title and not url and not transcript:
            raise ValueError("A project needs a title, a source URL or a transcript")

        if settings is None:
            settings = GenerationSettings.from_config(config) if config is not None else GenerationSettings()

        return cls(
            id=project_id or f"proj_{uuid4().hex[:12]}",
            title=title,
            source=SourceInput(url=url, title=title, transcript=transcript),
            settings=settings,
        )

    @property
    def is_closed(self) -> bool:
        return self.status is not ProjectStatus.ACTIVE

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def record(self, action: str, stage: Stage, detail: str = "") -> StageEvent:
        """Append an entry to the project history."""
        event = StageEvent(action=action, stage=stage, detail=detail)
        self.history.append(event)
        self.touch()
        return event

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dict."""
        return {
            "id": self.id,
            "title": self.title,
            "source": self.source.model_dump(mode="json"),
            "settings": self.settings.model_dump(mode="json"),
            "current_stage": self.current_stage.value,
            "artifacts": self.artifacts.to_dict(),
            "approvals": self.approvals.to_dict(),
            "variant_slots": {v.value: slot.to_dict() for v, slot in self.variant_slots.items()},
            "auto_render_triggered": self.auto_render_triggered,
            "status": self.status.value,
            "history": [e.to_dict() for e in self.history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        """Rebuild a project from `to_dict` output."""
        slots = default_slots()
        for name, slot_data in data.get("variant_slots", {}).items():
            slots[VideoVariant(name)] = VariantSlot.from_dict(slot_data)

        return cls(
            id=data["id"],
            title=data.get("title", ""),
            source=SourceInput.model_validate(data.get("source", {})),
            settings=GenerationSettings.model_validate(data.get("settings", {})),
            current_stage=Stage(data.get("current_stage", Stage.SCRIPT.value)),
            artifacts=ArtifactStore.from_dict(data.get("artifacts", {})),
            approvals=ApprovalTracker.from_dict(data.get("approvals", {})),
            variant_slots=slots,
            auto_render_triggered=data.get("auto_render_triggered", False),
            status=ProjectStatus(data.get("status", ProjectStatus.ACTIVE.value)),
            history=[StageEvent.from_dict(e) for e in data.get("history", [])],
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now(),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else datetime.now(),
        )

    def summary(self) -> dict:
        """Get a summary of the project state."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "current_stage": self.current_stage.value,
            "artifacts": self.artifacts.summary(),
            "approvals": self.approvals.summary(),
            "variants": {
                v.value: {"status": slot.status.value, "url": slot.download_url}
                for v, slot in self.variant_slots.items()
            },
            "auto_render_triggered": self.auto_render_triggered,
            "history_length": len(self.history),
        }
