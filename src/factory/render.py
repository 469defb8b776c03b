"""
Render Coordinator - Multi-pass rendering of video variants.

Each variant has its own slot with a small state machine:

    not_started → running(percent) → ready(preview) → complete(final)
                       ↘ failed(reason) → (start again)

Variants are siblings. Rendering or failing one never clears another's
reference. In composite mode the passes run one after another over the same
audio, captions and image timeline, and the global progress bar is split
evenly between them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Optional

from rich.console import Console

from src.collaborators.base import Collaborator
from src.collaborators.requests import ImageTiming, RenderRequest
from src.factory.artifact_store import ArtifactStore
from src.factory.errors import PartialVariantFailure
from src.factory.models import RenderArtifact, VariantOutput, VideoVariant
from src.factory.progress import Completed, Failed, Progress, ProgressEvent, Ready, guard_stream
from src.factory.stages import Stage
from src.factory.timing import EPSILON, equal_intervals, scale_intervals, srt_duration

console = Console()


class VariantStatus(str, Enum):
    """Render state of one variant."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    READY = "ready"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class VariantSlot:
    """
    Render state of a single variant.

    `final_url` survives later attempts until a new render completes, and
    `preview_url` survives a failure that follows it.
    """

    variant: VideoVariant
    status: VariantStatus = VariantStatus.NOT_STARTED
    percent: float = 0.0
    message: str = ""
    preview_url: Optional[str] = None
    final_url: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_running(self) -> bool:
        return self.status in (VariantStatus.RUNNING, VariantStatus.READY)

    @property
    def download_url(self) -> Optional[str]:
        """Final URL if the variant completed, else any retained preview."""
        return self.final_url or self.preview_url

    def start(self) -> None:
        if self.is_running:
            raise ValueError(f"{self.variant.value} render is already running")
        self.status = VariantStatus.RUNNING
        self.percent = 0.0
        self.message = "Starting render..."
        self.error = None
        self.updated_at = datetime.now()

    def progress(self, percent: float, message: str = "") -> None:
        self.percent = percent
        if message:
            self.message = message
        self.updated_at = datetime.now()

    def ready(self, preview_url: str) -> None:
        self.status = VariantStatus.READY
        self.preview_url = preview_url
        self.updated_at = datetime.now()

    def complete(self, output: VariantOutput) -> None:
        self.status = VariantStatus.COMPLETE
        self.final_url = output.video_url
        self.percent = 100.0
        self.message = "Complete"
        self.updated_at = datetime.now()

    def fail(self, reason: str) -> None:
        self.status = VariantStatus.FAILED
        self.error = reason
        self.message = reason
        self.updated_at = datetime.now()

    def reset(self) -> None:
        """Return a failed variant to `not_started` so it can be retried."""
        self.status = VariantStatus.NOT_STARTED
        self.percent = 0.0
        self.message = ""
        self.error = None
        self.updated_at = datetime.now()

    def to_dict(self) -> dict:
        return {
            "variant": self.variant.value,
            "status": self.status.value,
            "percent": self.percent,
            "message": self.message,
            "preview_url": self.preview_url,
            "final_url": self.final_url,
            "error": self.error,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VariantSlot":
        status = VariantStatus(data.get("status", "not_started"))
        # An interrupted render cannot be resumed; it failed
        if status in (VariantStatus.RUNNING, VariantStatus.READY):
            status = VariantStatus.FAILED
            data = {**data, "error": data.get("error") or "Render interrupted"}
        return cls(
            variant=VideoVariant(data["variant"]),
            status=status,
            percent=data.get("percent", 0.0),
            message=data.get("message", ""),
            preview_url=data.get("preview_url"),
            final_url=data.get("final_url"),
            error=data.get("error"),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else datetime.now(),
        )


def default_slots() -> dict[VideoVariant, VariantSlot]:
    return {variant: VariantSlot(variant) for variant in VideoVariant}


@dataclass
class RenderInputs:
    """Everything a render pass reuses: audio, captions and the image timeline."""

    project_id: str
    title: str
    audio_url: str
    image_urls: list[str]
    timings: list[ImageTiming]
    srt_content: str

    def request(self, variant: VideoVariant) -> RenderRequest:
        return RenderRequest(
            project_id=self.project_id,
            audio_url=self.audio_url,
            image_urls=self.image_urls,
            image_timings=self.timings,
            srt_content=self.srt_content,
            project_title=self.title,
            effects=variant.effects,
        )

    @classmethod
    def from_store(cls, project_id: str, title: str, store: ArtifactStore) -> "RenderInputs":
        """Assemble inputs from the current artifacts.

        Raises:
            PreconditionNotMet: If audio, captions or images are missing.
        """
        store.require_ready_for(Stage.RENDER)
        return cls(
            project_id=project_id,
            title=title,
            audio_url=store.audio.audio_url,
            image_urls=list(store.images.image_urls),
            timings=build_timeline(store),
            srt_content=store.captions.srt_content,
        )


def build_timeline(store: ArtifactStore) -> list[ImageTiming]:
    """
    Image timings for the render.

    Uses the image plan when it matches the image count, stretched onto the
    current audio duration if segments were regenerated since it was made.
    Otherwise the caption duration (or, failing that, the audio duration)
    is divided equally among the images.
    """
    images = store.images
    plan = store.image_plan
    audio_total = store.audio.total_duration if store.audio else 0.0
    if plan is not None and plan.count == images.count:
        intervals = plan.timings()
        if audio_total > 0 and intervals and abs(intervals[-1][1] - audio_total) > EPSILON:
            intervals = scale_intervals(intervals, audio_total)
        return [ImageTiming(start_seconds=s, end_seconds=e) for s, e in intervals]

    total = srt_duration(store.captions.srt_content) if store.captions else 0.0
    if total <= 0:
        total = audio_total
    return [ImageTiming(start_seconds=s, end_seconds=e) for s, e in equal_intervals(images.count, total)]


def composite_percent(pass_index: int, local_percent: float, passes: int) -> float:
    """Global percent for `local_percent` of pass `pass_index` (0-based) out of `passes`."""
    share = 100.0 / passes
    return pass_index * share + local_percent * share / 100.0


class RenderCoordinator:
    """
    Runs render passes and tracks per-variant state.

    Writes only to its variant slots; the caller stores the final
    `RenderArtifact` carried by the terminal event.
    """

    def __init__(
        self,
        renderer: Collaborator,
        slots: Optional[dict[VideoVariant, VariantSlot]] = None,
        verbose: bool = False,
    ):
        self.renderer = renderer
        self.slots = slots if slots is not None else default_slots()
        self.verbose = verbose

    def _log(self, message: str) -> None:
        if self.verbose:
            console.print(f"[cyan][render][/cyan] {message}")

    def slot(self, variant: VideoVariant) -> VariantSlot:
        if variant not in self.slots:
            self.slots[variant] = VariantSlot(variant)
        return self.slots[variant]

    def download_url(self, variant: VideoVariant) -> Optional[str]:
        return self.slot(variant).download_url

    async def render(
        self,
        inputs: RenderInputs,
        variants: list[VideoVariant],
        base: Optional[RenderArtifact] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Render `variants` sequentially.

        Yields per-pass progress mapped onto the global bar, a `Ready` with
        the preview of each pass, a `Ready` with the merged artifact after
        each completed pass, and finally `Completed(RenderArtifact)` if any
        pass completed or `Failed` if all of them failed.

        Args:
            inputs: Shared audio, captions and timeline
            variants: Passes in order, e.g. [basic, embers]
            base: Existing artifact whose other variants are kept
        """
        if not variants:
            yield Failed("No render passes requested")
            return

        artifact = base or RenderArtifact()
        passes = len(variants)
        completed: list[VideoVariant] = []
        failures: dict[VideoVariant, str] = {}

        for index, variant in enumerate(variants):
            slot = self.slot(variant)
            if slot.status is VariantStatus.FAILED:
                slot.reset()
            slot.start()
            prefix = f"Pass {index + 1}/{passes} ({variant.value})" if passes > 1 else variant.value
            self._log(f"{prefix}: starting")

            stream = guard_stream(self.renderer.stream(inputs.request(variant)), name=f"render {variant.value}")
            async for event in stream:
                if isinstance(event, Progress):
                    slot.progress(event.percent, event.message)
                    yield Progress(
                        composite_percent(index, event.percent, passes),
                        f"{prefix}: {event.message}" if event.message else prefix,
                        event.phase,
                    )
                elif isinstance(event, Ready):
                    preview = event.partial.model_copy(update={"variant": variant})
                    slot.ready(preview.video_url)
                    yield Ready(preview, f"{prefix}: video ready")
                elif isinstance(event, Completed):
                    output = event.artifact.model_copy(update={"variant": variant})
                    slot.complete(output)
                    artifact = artifact.with_variant(output)
                    completed.append(variant)
                    self._log(f"{prefix}: complete -> {output.video_url}")
                    yield Progress(composite_percent(index + 1, 0, passes), f"{prefix}: complete")
                    yield Ready(artifact, f"{prefix}: complete")
                elif isinstance(event, Failed):
                    slot.fail(event.reason)
                    artifact = artifact.with_failure(variant, event.reason)
                    failures[variant] = event.reason
                    self._log(f"[red]{prefix}: failed - {event.reason}[/red]")
                    yield Progress(composite_percent(index + 1, 0, passes), f"{prefix}: failed - {event.reason}")

        if not completed:
            details = "; ".join(f"{v.value}: {r}" for v, r in failures.items())
            yield Failed(f"All render passes failed ({details})")
            return

        yield Completed(artifact)

    @staticmethod
    def partial_failure(artifact: RenderArtifact) -> Optional[PartialVariantFailure]:
        """Describe failed variants of an otherwise successful render."""
        if not artifact.failures:
            return None
        return PartialVariantFailure(artifact.failures, list(artifact.variants))
