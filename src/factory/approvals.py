"""
Approval Tracker - Human sign-off per stage.

A checklist, not a gate: approvals never block progression and are never
cleared when a stage (or anything upstream of it) is regenerated. The tracker
has no access to artifacts.

Key concepts:
- Approve / unapprove: toggle a stage's flag
- Event: immutable record of every toggle (audit trail)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import uuid4

from src.factory.stages import STAGE_ORDER, Stage


@dataclass(frozen=True)
class ApprovalEvent:
    """
    Record of an approval decision.

    Immutable once created - provides audit trail.
    """

    id: str
    stage: Stage
    approved: bool
    decided_by: str
    decided_at: datetime = field(default_factory=datetime.now)
    note: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage": self.stage.value,
            "approved": self.approved,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat(),
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ApprovalEvent":
        return cls(
            id=data["id"],
            stage=Stage(data["stage"]),
            approved=data["approved"],
            decided_by=data.get("decided_by", "user"),
            decided_at=datetime.fromisoformat(data["decided_at"]),
            note=data.get("note"),
        )


class ApprovalTracker:
    """
    Set of stages a human has marked approved.

    Provides:
    - approve / unapprove / is_approved
    - Audit trail of all decisions
    """

    def __init__(self):
        self._approved: set[Stage] = set()
        self._events: list[ApprovalEvent] = []

    def approve(self, stage: Stage, by: str = "user", note: Optional[str] = None) -> bool:
        """Mark `stage` approved. Approving twice is a no-op.

        Returns:
            True if the flag changed.
        """
        if stage in self._approved:
            return False
        self._approved.add(stage)
        self._record(stage, True, by, note)
        return True

    def unapprove(self, stage: Stage, by: str = "user", note: Optional[str] = None) -> bool:
        """Clear `stage`'s approval.

        Returns:
            True if the flag changed.
        """
        if stage not in self._approved:
            return False
        self._approved.discard(stage)
        self._record(stage, False, by, note)
        return True

    def toggle(self, stage: Stage, by: str = "user") -> bool:
        """Flip `stage`'s approval and return the new value."""
        if self.is_approved(stage):
            self.unapprove(stage, by)
            return False
        self.approve(stage, by)
        return True

    def is_approved(self, stage: Stage) -> bool:
        return stage in self._approved

    def approved_stages(self) -> list[Stage]:
        """Approved stages in pipeline order."""
        return [s for s in STAGE_ORDER if s in self._approved]

    @property
    def events(self) -> list[ApprovalEvent]:
        return list(self._events)

    def _record(self, stage: Stage, approved: bool, by: str, note: Optional[str]) -> None:
        self._events.append(ApprovalEvent(
            id=f"approval_{uuid4().hex[:8]}",
            stage=stage,
            approved=approved,
            decided_by=by,
            note=note,
        ))

    def to_dict(self) -> dict:
        return {
            "approved": [s.value for s in self.approved_stages()],
            "events": [e.to_dict() for e in self._events],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ApprovalTracker":
        tracker = cls()
        tracker._approved = {Stage(s) for s in data.get("approved", [])}
        tracker._events = [ApprovalEvent.from_dict(e) for e in data.get("events", [])]
        return tracker

    def summary(self) -> dict:
        """Get a summary of all approval flags."""
        return {stage.value: self.is_approved(stage) for stage in STAGE_ORDER}
