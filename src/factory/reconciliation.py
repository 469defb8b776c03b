"""
Reconciliation Engine - Repairs an image plan whose prompt count drifted
from the number of images actually produced.

Image counts change independently of the authored plan (manual add/remove,
partial generation failures). The engine rebuilds the plan as `N` equal
intervals over the narration, keeping the text of every prompt whose index
still exists and filling new indices with a "Scene k" placeholder. The
placeholders are an explicit approximation: real scene descriptions need the
prompt author again.

The engine is the only writer allowed to rewrite a plan. It does nothing
unless the counts really differ, so running it twice is a no-op.
"""

from dataclasses import dataclass, field
from typing import Optional

from rich.console import Console

from src.factory.artifact_store import ArtifactStore
from src.factory.errors import ReconciliationRequired
from src.factory.models import ImagePlan, ImagePrompt
from src.factory.stages import Stage
from src.factory.timing import equal_intervals, partition_gaps

console = Console()

PLACEHOLDER_TEMPLATE = "Scene {index}"


@dataclass
class ReconciliationReport:
    """What a reconciliation changed. Shown to the user, never hidden."""

    before_count: int
    after_count: int
    total_duration: float
    plan: ImagePlan
    placeholders: list[int] = field(default_factory=list)
    dropped: list[int] = field(default_factory=list)

    def describe(self) -> str:
        parts = [
            f"Image plan reconciled: {self.before_count} prompts -> {self.after_count} images",
            f"{self.total_duration / self.after_count:.1f}s each" if self.after_count else "empty timeline",
        ]
        if self.placeholders:
            parts.append(f"placeholders for scenes {', '.join(map(str, self.placeholders))}")
        if self.dropped:
            parts.append(f"dropped scenes {', '.join(map(str, self.dropped))}")
        return "; ".join(parts)


def needs_reconciliation(plan: ImagePlan, image_count: int) -> bool:
    """True only for a real count mismatch."""
    return plan.count != image_count


def reconcile_plan(plan: ImagePlan, image_count: int, total_duration: float) -> ImagePlan:
    """
    Rebuild `plan` with one prompt per produced image.

    Args:
        plan: Current (drifted) plan
        image_count: Number of images that actually exist
        total_duration: Narration length the plan must cover

    Returns:
        `plan` itself when the counts already match, otherwise a new plan
        of `image_count` equal intervals partitioning `[0, total_duration]`.
    """
    if not needs_reconciliation(plan, image_count):
        return plan

    by_index = {p.index: p for p in plan.prompts}
    prompts = []
    for i, (start, end) in enumerate(equal_intervals(image_count, total_duration)):
        index = i + 1
        existing = by_index.get(index)
        if existing is not None:
            text, scene = existing.prompt, existing.scene_description
        else:
            text = scene = PLACEHOLDER_TEMPLATE.format(index=index)
        prompts.append(ImagePrompt(
            index=index,
            prompt=text,
            scene_description=scene,
            start_seconds=start,
            end_seconds=end,
        ))

    return ImagePlan(prompts=prompts, total_duration=total_duration, reconciled=True)


def validate_partition(plan: ImagePlan, total_duration: Optional[float] = None) -> list[str]:
    """List gaps/overlaps in the plan's timeline (empty when it partitions)."""
    total = plan.total_duration if total_duration is None else total_duration
    return partition_gaps(plan.timings(), total)


class ReconciliationEngine:
    """
    Restores "plan count == image count" on a project's artifact store.

    Called by the Stage Controller after any write to the image plan or
    the image set.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def reconcile(self, store: ArtifactStore) -> Optional[ReconciliationReport]:
        """
        Reconcile the store's image plan against its image set.

        Returns:
            A report when the plan was rewritten, None when nothing was wrong.
        """
        try:
            store.check_consistency()
        except ReconciliationRequired as mismatch:
            return self._repair(store, mismatch)
        return None

    def _repair(self, store: ArtifactStore, mismatch: ReconciliationRequired) -> ReconciliationReport:
        plan = store.image_plan
        images = store.images
        total = store.audio.total_duration if store.audio else plan.total_duration

        new_plan = reconcile_plan(plan, images.count, total)
        store.put(Stage.IMAGE_PLAN, new_plan)

        old_indices = {p.index for p in plan.prompts}
        new_indices = {p.index for p in new_plan.prompts}
        report = ReconciliationReport(
            before_count=mismatch.plan_count,
            after_count=mismatch.image_count,
            total_duration=total,
            plan=new_plan,
            placeholders=sorted(new_indices - old_indices),
            dropped=sorted(old_indices - new_indices),
        )

        if self.verbose:
            console.print(f"[yellow][reconcile][/yellow] {report.describe()}")

        return report
