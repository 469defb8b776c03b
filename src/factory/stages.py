"""
Pipeline stages - the ordered steps a project moves through.

Pipeline flow:
    SCRIPT → AUDIO → CAPTIONS → IMAGE_PLAN → IMAGES → RENDER → PUBLISH

Forward progression requires every earlier stage to hold an artifact.
Backward navigation is always allowed and never touches artifacts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Stage(str, Enum):
    """
    Production stages, totally ordered.

    Each stage produces exactly one artifact kind.
    """

    SCRIPT = "script"
    """Transcript (optional) rewritten into narration text."""

    AUDIO = "audio"
    """Narration synthesized into segmented voice audio."""

    CAPTIONS = "captions"
    """Audio transcribed into time-aligned SRT captions."""

    IMAGE_PLAN = "image_plan"
    """Timed scene plan: one prompt per illustration."""

    IMAGES = "images"
    """Illustrations generated from the plan."""

    RENDER = "render"
    """Video variants rendered from audio, captions and images."""

    PUBLISH = "publish"
    """Rendered video uploaded/scheduled on the platform."""

    @property
    def order(self) -> int:
        """Zero-based position in the pipeline."""
        return STAGE_ORDER.index(self)

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]

    # str supplies all four comparisons, so each one is overridden
    def __lt__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.order >= other.order


STAGE_ORDER: list[Stage] = [
    Stage.SCRIPT,
    Stage.AUDIO,
    Stage.CAPTIONS,
    Stage.IMAGE_PLAN,
    Stage.IMAGES,
    Stage.RENDER,
    Stage.PUBLISH,
]

STAGE_LABELS = {
    Stage.SCRIPT: "Script Ready",
    Stage.AUDIO: "Audio Ready",
    Stage.CAPTIONS: "Captions Ready",
    Stage.IMAGE_PLAN: "Image Prompts Ready",
    Stage.IMAGES: "Images Ready",
    Stage.RENDER: "Video Rendered",
    Stage.PUBLISH: "Published",
}


def stages_before(stage: Stage) -> list[Stage]:
    """All stages strictly before `stage`, in pipeline order."""
    return STAGE_ORDER[: stage.order]


def next_stage(stage: Stage) -> Optional[Stage]:
    """The stage after `stage`, or None for the last one."""
    idx = stage.order + 1
    return STAGE_ORDER[idx] if idx < len(STAGE_ORDER) else None


@dataclass
class StageEvent:
    """
    One entry of a project's history.

    Records navigation, completions, regenerations and reconciliations.
    """

    action: str  # advance, regenerate, go_to, reconcile, approve, ...
    stage: Stage
    detail: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "stage": self.stage.value,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StageEvent":
        return cls(
            action=data["action"],
            stage=Stage(data["stage"]),
            detail=data.get("detail", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(),
        )
