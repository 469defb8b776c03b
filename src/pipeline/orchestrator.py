"""Full-automation pipeline runner.

Takes a project from nothing to a scheduled upload in one call:
script → audio → captions → image plan → images → render → publish.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

from rich.console import Console

from src.collaborators.base import Collaborators, build_collaborators
from src.config import Config, PublishConfig, load_config
from src.factory.controller import StageController
from src.factory.errors import PipelineError
from src.factory.progress import Progress, ProgressEvent
from src.factory.project import Project
from src.factory.repository import ProjectRepository
from src.factory.stages import STAGE_ORDER, Stage

console = Console()

# Window of the overall progress bar each stage occupies
STAGE_WINDOWS: dict[Stage, tuple[float, float]] = {
    Stage.SCRIPT: (0, 20),
    Stage.AUDIO: (20, 40),
    Stage.CAPTIONS: (40, 50),
    Stage.IMAGE_PLAN: (50, 55),
    Stage.IMAGES: (55, 72),
    Stage.RENDER: (72, 90),
    Stage.PUBLISH: (90, 100),
}


@dataclass
class StepResult:
    """Outcome of one pipeline step."""

    stage: Stage
    success: bool
    duration: float
    error: str | None = None
    skipped: bool = False


@dataclass
class PipelineResult:
    """Result of a full-automation run."""

    success: bool
    project_id: str
    stages_completed: list[str]
    steps: list[StepResult] = field(default_factory=list)
    error_message: str | None = None
    video_url: str | None = None
    publish_at: datetime | None = None


def next_publish_slot(
    now: datetime | None = None,
    publish: PublishConfig | None = None,
) -> datetime:
    """Next daily publish time (17:00 America/Los_Angeles by default).

    Returns today's slot if it is still ahead, otherwise tomorrow's.
    """
    publish = publish or PublishConfig()
    zone = ZoneInfo(publish.timezone)
    local_now = now.astimezone(zone) if now is not None else datetime.now(zone)

    target = local_now.replace(hour=publish.publish_hour, minute=0, second=0, microsecond=0)
    if local_now >= target:
        target = (target + timedelta(days=1)).replace(hour=publish.publish_hour)
    return target


class PipelineRunner:
    """Run every stage of a project in order, stopping at the first failure.

    Nothing is retried. Stages that already hold an artifact are skipped, so
    a failed run can be resumed by running again.
    """

    def __init__(
        self,
        config: Config | None = None,
        collaborators: Collaborators | None = None,
        repository: ProjectRepository | None = None,
        verbose: bool = False,
    ):
        """Initialize the runner.

        Args:
            config: Configuration object. If None, loads from config.yaml.
            collaborators: Roster to use. If None, built from config.
            repository: Saves the project after every step when given.
            verbose: Print step results to the console.
        """
        self.config = config or load_config()
        self.collaborators = collaborators or build_collaborators(self.config)
        self.repository = repository
        self.verbose = verbose

        # Progress callback
        self._progress_callback: Callable[[str, float, str], None] | None = None

    def set_progress_callback(self, callback: Callable[[str, float, str], None]) -> None:
        """Set a callback for progress updates.

        Args:
            callback: Function that receives (stage_name, overall_percent, message)
        """
        self._progress_callback = callback

    def _report_progress(self, stage: Stage, percent: float, message: str) -> None:
        if self._progress_callback:
            self._progress_callback(stage.value, percent, message)

    def _on_event(self, stage: Stage) -> Callable[[ProgressEvent], None]:
        start, end = STAGE_WINDOWS[stage]

        def handle(event: ProgressEvent) -> None:
            if isinstance(event, Progress):
                self._report_progress(stage, start + event.percent * (end - start) / 100.0, event.message)

        return handle

    def _overrides(self, stage: Stage, project: Project, publish_at: datetime) -> dict:
        if stage is Stage.RENDER:
            return {"variants": list(project.settings.render_passes)}
        if stage is Stage.PUBLISH:
            return {"publish_at": publish_at}
        return {}

    async def run(self, project: Project, publish_at: datetime | None = None) -> PipelineResult:
        """
        Advance `project` through every stage.

        Args:
            project: Project to run (mutated in place)
            publish_at: Scheduled publish time; defaults to the next daily slot

        Returns:
            PipelineResult with per-step outcomes
        """
        publish_at = publish_at or next_publish_slot(publish=self.config.publish)
        controller = StageController(project, self.collaborators, repository=self.repository)
        stages_completed: list[str] = []
        steps: list[StepResult] = []

        for stage in STAGE_ORDER:
            start_time = time.monotonic()
            window_start, window_end = STAGE_WINDOWS[stage]

            if stage is not Stage.PUBLISH and controller.store.has(stage):
                steps.append(StepResult(stage=stage, success=True, duration=0.0, skipped=True))
                stages_completed.append(stage.value)
                self._report_progress(stage, window_end, f"{stage.label} (existing)")
                continue

            self._report_progress(stage, window_start, f"Starting {stage.value}...")
            try:
                await controller.run(
                    stage,
                    self._overrides(stage, project, publish_at),
                    on_event=self._on_event(stage),
                )
            except PipelineError as e:
                duration = time.monotonic() - start_time
                steps.append(StepResult(stage=stage, success=False, duration=duration, error=str(e)))
                if self.verbose:
                    console.print(f"[red][pipeline] {stage.value} failed: {e}[/red]")
                return PipelineResult(
                    success=False,
                    project_id=project.id,
                    stages_completed=stages_completed,
                    steps=steps,
                    error_message=str(e),
                )

            duration = time.monotonic() - start_time
            steps.append(StepResult(stage=stage, success=True, duration=duration))
            stages_completed.append(stage.value)
            if self.verbose:
                console.print(f"[green][pipeline][/green] {stage.label} ({duration:.1f}s)")

        self._report_progress(Stage.PUBLISH, 100, "Pipeline complete!")
        published = controller.store.publish
        return PipelineResult(
            success=True,
            project_id=project.id,
            stages_completed=stages_completed,
            steps=steps,
            video_url=published.video_url if published else None,
            publish_at=publish_at,
        )
