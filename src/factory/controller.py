"""
Stage Controller - Moves one project through the generation pipeline.

Responsibilities:
- Enforce stage preconditions before any collaborator is invoked
- Single-flight: at most one operation per project at a time
- Stream collaborator progress through one guarded event stream
- Swap complete artifacts into the store on terminal success
- Trigger reconciliation whenever the plan or image set changes

Closed-project, single-flight and precondition checks happen when an
operation is called. The work then runs in its own task, and the returned
`Operation` only observes it:

    async for event in controller.advance(Stage.AUDIO):
        ...

Dropping the stream does not stop the work; the artifact still lands and
the project is released when the task ends. `run()` drains an operation
and returns the stored artifact.
"""

import asyncio
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Optional

from rich.console import Console

from src.collaborators.base import Collaborator, Collaborators
from src.collaborators.requests import (
    CaptionRequest,
    ImagePromptRequest,
    ImageRequest,
    MetadataRequest,
    RecombineRequest,
    ScriptRequest,
    SegmentRequest,
    SpeechRequest,
    ThumbnailRequest,
    TranscriptRequest,
    UploadRequest,
)
from src.factory.artifact_store import ArtifactStore
from src.factory.errors import (
    CollaboratorFailed,
    OperationInProgress,
    PartialVariantFailure,
    PreconditionNotMet,
    ProjectClosed,
)
from src.factory.models import AudioArtifact, PublishMetadata, ScriptArtifact, VideoVariant
from src.factory.progress import (
    Completed,
    Failed,
    Operation,
    Progress,
    ProgressEvent,
    Ready,
    StreamOutcome,
    collect,
    guard_stream,
    rescale,
)
from src.factory.project import Project, ProjectStatus
from src.factory.reconciliation import ReconciliationEngine, ReconciliationReport
from src.factory.render import RenderCoordinator, RenderInputs
from src.factory.repository import ProjectRepository
from src.factory.stages import Stage, next_stage

console = Console()

# Share of the Script bar spent fetching the transcript
TRANSCRIPT_WINDOW = 30.0
# Share of the Captions bar spent recombining regenerated segments
RECOMBINE_WINDOW = 30.0
# Share of the Render bar spent recombining segments regenerated after captions
RENDER_RECOMBINE_WINDOW = 10.0
# Publish bar: metadata, then thumbnail, then the upload itself
METADATA_WINDOW = 10.0
THUMBNAIL_WINDOW = 25.0

DESCRIPTION_CHARS = 300


class StageController:
    """
    Drives a single project's stages.

    Only this controller (and the reconciliation engine it calls) writes to
    the project's artifact store.
    """

    def __init__(
        self,
        project: Project,
        collaborators: Collaborators,
        repository: Optional[ProjectRepository] = None,
        verbose: bool = False,
    ):
        """
        Initialize the controller.

        Args:
            project: Project to drive
            collaborators: External operations roster
            repository: Saves the project after every state change when given
            verbose: Print progress to the console
        """
        self.project = project
        self.collaborators = collaborators
        self.repository = repository
        self.verbose = verbose

        self.reconciler = ReconciliationEngine(verbose=verbose)
        self.renderer = RenderCoordinator(collaborators.video_renderer, project.variant_slots, verbose=verbose)

        # Latest non-authoritative partial result per stage
        self.previews: dict[Stage, Any] = {}
        self.last_reconciliation: Optional[ReconciliationReport] = None
        self.last_partial_failure: Optional[PartialVariantFailure] = None

        self._in_flight: Optional[Stage] = None
        # Holds the running task so it is not collected while nobody observes it
        self._operation: Optional[Operation] = None
        self._handlers: dict[Stage, Callable[[dict], AsyncIterator[ProgressEvent]]] = {
            Stage.SCRIPT: self._script_events,
            Stage.AUDIO: self._audio_events,
            Stage.CAPTIONS: self._caption_events,
            Stage.IMAGE_PLAN: self._image_plan_events,
            Stage.IMAGES: self._image_events,
            Stage.RENDER: self._render_events,
            Stage.PUBLISH: self._publish_events,
        }

    @property
    def store(self) -> ArtifactStore:
        return self.project.artifacts

    @property
    def in_flight(self) -> Optional[Stage]:
        """Stage of the operation currently running, if any."""
        return self._in_flight

    @property
    def operation(self) -> Optional[Operation]:
        """The most recently started operation."""
        return self._operation

    def log(self, stage: Stage, message: str) -> None:
        if self.verbose:
            console.print(f"[bold blue][{stage.value}][/bold blue] {message}")

    # =========================================================================
    # Navigation
    # =========================================================================

    def advance(self, stage: Stage, overrides: Optional[dict] = None) -> Operation:
        """
        Produce `stage`'s artifact and move forward.

        Must be called inside a running event loop. The returned stream
        raises CollaboratorFailed at its end if the collaborator failed.

        Raises:
            ProjectClosed: If the project was published or abandoned.
            OperationInProgress: If another operation is running.
            PreconditionNotMet: If an earlier stage has no artifact.
        """
        self._check_idle(stage)
        self.store.require_ready_for(stage)
        self._in_flight = stage
        self.project.current_stage = stage
        self.project.record("advance", stage)
        self.log(stage, "Starting")
        return self._launch(stage, self._execute(stage, overrides or {}, advance=True))

    def regenerate(self, stage: Stage, overrides: Optional[dict] = None) -> Operation:
        """
        Re-run `stage` with possibly edited input, without moving the current stage.

        Downstream artifacts and approvals are left untouched.
        """
        self._check_idle(stage)
        self.store.require_ready_for(stage)
        self._in_flight = stage
        self.project.record("regenerate", stage, ", ".join(sorted(overrides)) if overrides else "")
        self.log(stage, "Regenerating")
        return self._launch(stage, self._execute(stage, overrides or {}))

    def go_to(self, stage: Stage) -> None:
        """Jump to any stage. Never touches artifacts."""
        previous = self.project.current_stage
        self.project.current_stage = stage
        self.project.record("go_to", stage, f"from {previous.value}")
        self._autosave()

    async def run(
        self,
        stage: Stage,
        overrides: Optional[dict] = None,
        regenerate: bool = False,
        on_event: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> Any:
        """Run `advance` (or `regenerate`) to completion and return the stored artifact."""
        operation = self.regenerate(stage, overrides) if regenerate else self.advance(stage, overrides)
        await collect(operation, on_event)
        return self.store.get(stage)

    # =========================================================================
    # Audio segments
    # =========================================================================

    def regenerate_audio_segment(self, index: int, text: Optional[str] = None) -> Operation:
        """Regenerate one narration segment, optionally with edited text."""
        return self.regenerate_audio_segments({index: text})

    def regenerate_audio_segments(self, edits: dict[int, Optional[str]]) -> Operation:
        """
        Regenerate several segments in parallel within one operation.

        Only the named segments change. Successful segments are stored even
        when others fail; the stream then raises CollaboratorFailed for the
        failed ones.

        Args:
            edits: Segment index -> new text (None keeps the current text)

        Raises:
            PreconditionNotMet: If there is no script or audio yet.
            KeyError: If an index names no segment.
        """
        self._check_idle(Stage.AUDIO)
        missing = self.store.first_missing_before(Stage.CAPTIONS)
        if missing is not None:
            raise PreconditionNotMet(Stage.AUDIO, missing)

        audio = self.store.audio
        requests = {
            index: SegmentRequest(
                segment_text=text if text is not None else audio.segment(index).text,
                segment_index=index,
                voice_sample_url=self.project.settings.voice_reference,
                project_id=self.project.id,
            )
            for index, text in sorted(edits.items())
        }
        self._in_flight = Stage.AUDIO
        if requests:
            self.project.record("regenerate_segments", Stage.AUDIO, ", ".join(map(str, requests)))
        return self._launch(Stage.AUDIO, self._segment_events(requests))

    async def _segment_events(self, requests: dict[int, SegmentRequest]) -> AsyncIterator[ProgressEvent]:
        audio: AudioArtifact = self.store.audio
        if not requests:
            yield Completed(audio)
            return

        yield Progress(0, f"Regenerating {len(requests)} segment(s)...")
        synthesizer = self.collaborators.segment_synthesizer

        async def regenerate_one(index: int, request: SegmentRequest) -> tuple[int, StreamOutcome]:
            return index, await collect(guard_stream(synthesizer.stream(request), synthesizer.name))

        tasks = [asyncio.ensure_future(regenerate_one(i, r)) for i, r in requests.items()]
        results: dict[int, StreamOutcome] = {}
        for done, finished in enumerate(asyncio.as_completed(tasks), start=1):
            index, outcome = await finished
            results[index] = outcome
            status = "done" if outcome.succeeded else f"failed: {outcome.failure}"
            yield Progress(100 * done / len(tasks), f"Segment {index} {status} ({done}/{len(tasks)})")

        for index in sorted(results):
            if results[index].succeeded:
                segment = results[index].artifact.model_copy(update={"index": index})
                audio = audio.replace_segment(segment)

        if audio is not self.store.audio:
            self.store.put(Stage.AUDIO, audio)
            self.log(Stage.AUDIO, f"Segments updated, total {audio.total_duration:.1f}s")

        failures = {i: o.failure for i, o in sorted(results.items()) if not o.succeeded}
        if failures:
            reason = "; ".join(f"segment {i}: {r}" for i, r in failures.items())
            self.project.record("failed", Stage.AUDIO, reason)
            raise CollaboratorFailed(Stage.AUDIO, reason)

        yield Completed(audio)

    # =========================================================================
    # Automation, approvals, lifecycle
    # =========================================================================

    async def maybe_auto_render(self) -> Optional[Any]:
        """
        Start the configured render passes once, when full automation is on.

        No-op (returns None) unless images exist, no effect variant has been
        rendered, nothing is running and the project was never auto-rendered.
        """
        project = self.project
        if not project.settings.full_automation or project.auto_render_triggered:
            return None
        if self._in_flight is not None or not self.store.has(Stage.IMAGES):
            return None
        render = self.store.render
        if render is not None and any(v.has_effects for v in render.variants):
            return None

        project.auto_render_triggered = True
        project.record("auto_render", Stage.RENDER)
        self._autosave()
        return await self.run(Stage.RENDER, {"variants": list(project.settings.render_passes)})

    def approve(self, stage: Stage, by: str = "user", note: Optional[str] = None) -> bool:
        changed = self.project.approvals.approve(stage, by=by, note=note)
        if changed:
            self.project.record("approve", stage, by)
            self._autosave()
        return changed

    def unapprove(self, stage: Stage, by: str = "user", note: Optional[str] = None) -> bool:
        changed = self.project.approvals.unapprove(stage, by=by, note=note)
        if changed:
            self.project.record("unapprove", stage, by)
            self._autosave()
        return changed

    def abandon(self) -> None:
        """Close the project. Later operations raise ProjectClosed."""
        self._check_open()
        self.project.status = ProjectStatus.ABANDONED
        self.project.record("abandon", self.project.current_stage)
        self._autosave()

    def status(self) -> dict:
        """Get the project summary plus live controller state."""
        summary = self.project.summary()
        summary["in_flight"] = self._in_flight.value if self._in_flight else None
        summary["previews"] = sorted(s.value for s in self.previews)
        summary["last_reconciliation"] = (
            self.last_reconciliation.describe() if self.last_reconciliation else None
        )
        summary["downloads"] = {
            variant.value: self.renderer.download_url(variant)
            for variant in VideoVariant
            if self.renderer.download_url(variant)
        }
        return summary

    # =========================================================================
    # Execution
    # =========================================================================

    def _check_open(self) -> None:
        if self.project.is_closed:
            raise ProjectClosed(self.project.id, self.project.status.value)

    def _check_idle(self, stage: Stage) -> None:
        self._check_open()
        if self._in_flight is not None:
            raise OperationInProgress(self.project.id, self._in_flight, stage)

    def _launch(self, stage: Stage, body: AsyncIterator[ProgressEvent]) -> Operation:
        """Run `body` in its own task. The flight must already be claimed."""
        try:
            self._operation = Operation(stage.value, body, on_done=self._end)
        except RuntimeError:
            self._in_flight = None
            raise
        return self._operation

    def _end(self) -> None:
        self._in_flight = None
        self._autosave()

    def _autosave(self) -> None:
        if self.repository is not None:
            self.repository.save(self.project)

    async def _execute(self, stage: Stage, overrides: dict, advance: bool = False) -> AsyncIterator[ProgressEvent]:
        """Run a stage handler, commit its artifact and re-emit its events."""
        artifact = None
        handler = self._handlers[stage](overrides)
        async with aclosing(guard_stream(handler, name=stage.value)) as stream:
            async for event in stream:
                if isinstance(event, Progress):
                    self.log(stage, f"{event.percent:5.1f}% {event.message}")
                    yield event
                elif isinstance(event, Ready):
                    self.previews[stage] = event.partial
                    yield event
                elif isinstance(event, Completed):
                    artifact = event.artifact
                elif isinstance(event, Failed):
                    self.project.record("failed", stage, event.reason)
                    self.log(stage, f"[red]Failed: {event.reason}[/red]")
                    raise CollaboratorFailed(stage, event.reason)

        for message in self._commit(stage, artifact):
            yield Progress(100, message)
        if advance:
            following = next_stage(stage)
            if following is not None and not self.project.is_closed:
                self.project.current_stage = following
        self.log(stage, "[green]Complete[/green]")
        yield Completed(artifact)

    def _commit(self, stage: Stage, artifact: Any) -> list[str]:
        """Store a finished artifact and apply its side effects. Returns notices."""
        notices = []
        self.store.put(stage, artifact)
        self.previews.pop(stage, None)
        self.project.record("complete", stage, f"version {self.store.version(stage)}")

        if stage in (Stage.IMAGE_PLAN, Stage.IMAGES):
            report = self.reconciler.reconcile(self.store)
            if report is not None:
                self.last_reconciliation = report
                self.project.record("reconcile", Stage.IMAGE_PLAN, report.describe())
                notices.append(report.describe())

        if stage is Stage.RENDER:
            self.last_partial_failure = RenderCoordinator.partial_failure(artifact)
            if self.last_partial_failure is not None:
                self.project.record("partial_failure", stage, str(self.last_partial_failure))
                notices.append(str(self.last_partial_failure))

        if stage is Stage.PUBLISH:
            self.project.status = ProjectStatus.PUBLISHED

        return notices

    async def _delegate(
        self,
        collaborator: Collaborator,
        request: Any,
        outcome: StreamOutcome,
        start: float = 0.0,
        end: float = 100.0,
    ) -> AsyncIterator[ProgressEvent]:
        """Stream a collaborator call onto `[start, end]`, recording its terminal event in `outcome`."""
        stream = rescale(guard_stream(collaborator.stream(request), collaborator.name), start, end)
        async with aclosing(stream) as events:
            async for event in events:
                if isinstance(event, Progress):
                    outcome.last_percent = event.percent
                    yield event
                elif isinstance(event, Ready):
                    outcome.partials.append(event.partial)
                    yield event
                elif isinstance(event, Completed):
                    outcome.artifact = event.artifact
                elif isinstance(event, Failed):
                    outcome.failure = event.reason

    # =========================================================================
    # Stage handlers
    # =========================================================================

    async def _script_events(self, overrides: dict) -> AsyncIterator[ProgressEvent]:
        project = self.project
        source = project.source
        settings = project.settings
        transcript = overrides.get("transcript", source.transcript)
        start = 0.0

        if source.url and not transcript:
            fetched = StreamOutcome()
            yield Progress(0, "Fetching transcript...")
            async for event in self._delegate(
                self.collaborators.transcript_fetcher,
                TranscriptRequest(url=source.url),
                fetched,
                0.0,
                TRANSCRIPT_WINDOW,
            ):
                yield event
            if not fetched.succeeded:
                yield Failed(f"Transcript fetch failed: {fetched.failure}")
                return
            transcript = fetched.artifact.transcript
            # Cache so regenerating the script does not fetch again
            source.transcript = transcript
            if not project.title and fetched.artifact.title:
                project.title = fetched.artifact.title
            start = TRANSCRIPT_WINDOW

        written = StreamOutcome()
        request = ScriptRequest(
            transcript=transcript,
            template=overrides.get("template", settings.script_template),
            title=overrides.get("title", project.title or source.title),
            word_count=overrides.get("word_count", settings.target_words),
        )
        async for event in self._delegate(self.collaborators.script_rewriter, request, written, start, 100.0):
            yield event
        if not written.succeeded:
            yield Failed(written.failure)
            return

        script: ScriptArtifact = written.artifact
        if script.source_transcript is None and transcript:
            script = script.model_copy(update={"source_transcript": transcript})
        yield Completed(script)

    async def _audio_events(self, overrides: dict) -> AsyncIterator[ProgressEvent]:
        settings = self.project.settings
        request = SpeechRequest(
            script=overrides.get("script", self.store.script.text),
            voice_sample_url=overrides.get("voice_reference", settings.voice_reference),
            project_id=self.project.id,
            segment_count=overrides.get("segment_count", settings.segment_count),
        )
        outcome = StreamOutcome()
        async for event in self._delegate(self.collaborators.speech_synthesizer, request, outcome):
            yield event
        yield Completed(outcome.artifact) if outcome.succeeded else Failed(outcome.failure)


    async def _recombine(self, outcome: StreamOutcome, end: float) -> AsyncIterator[ProgressEvent]:
        """Recombine the stored segments onto `[0, end]` and store the fresh audio on success."""
        audio: AudioArtifact = self.store.audio
        yield Progress(0, "Recombining audio segments...")
        async for event in self._delegate(
            self.collaborators.audio_recombiner,
            RecombineRequest(project_id=self.project.id, segments=audio.segments),
            outcome,
            0.0,
            end,
        ):
            yield event
        if outcome.succeeded:
            audio = audio.with_combined(outcome.artifact)
            self.store.put(Stage.AUDIO, audio)
            self.project.record("recombine", Stage.AUDIO, audio.audio_url or "")

    async def _caption_events(self, overrides: dict) -> AsyncIterator[ProgressEvent]:
        start = 0.0

        if self.store.audio.needs_recombine:
            recombined = StreamOutcome()
            async for event in self._recombine(recombined, RECOMBINE_WINDOW):
                yield event
            if not recombined.succeeded:
                yield Failed(f"Audio recombine failed: {recombined.failure}")
                return
            start = RECOMBINE_WINDOW

        audio: AudioArtifact = self.store.audio
        request = CaptionRequest(audio_url=audio.audio_url, project_id=self.project.id, segments=audio.segments)
        outcome = StreamOutcome()
        async for event in self._delegate(self.collaborators.caption_transcriber, request, outcome, start, 100.0):
            yield event
        if not outcome.succeeded:
            yield Failed(outcome.failure)
            return

        captions = outcome.artifact
        if captions.skipped_segments:
            skipped = ", ".join(map(str, captions.skipped_segments))
            yield Progress(100, f"Caption alignment skipped for segment(s) {skipped}")
        yield Completed(captions)

    async def _image_plan_events(self, overrides: dict) -> AsyncIterator[ProgressEvent]:
        settings = self.project.settings
        request = ImagePromptRequest(
            script=self.store.script.text,
            srt_content=self.store.captions.srt_content,
            image_count=overrides.get("image_count", settings.image_count),
            style_prompt=overrides.get("image_style", settings.image_style),
            audio_duration=self.store.audio.total_duration,
        )
        outcome = StreamOutcome()
        async for event in self._delegate(self.collaborators.image_prompt_author, request, outcome):
            yield event
        yield Completed(outcome.artifact) if outcome.succeeded else Failed(outcome.failure)

    async def _image_events(self, overrides: dict) -> AsyncIterator[ProgressEvent]:
        prompts = self.store.image_plan.ordered()
        request = ImageRequest(
            prompts=[p.prompt for p in prompts],
            scene_descriptions=[p.scene_description for p in prompts],
            image_count=len(prompts),
            style_prompt=overrides.get("image_style", self.project.settings.image_style),
            project_id=self.project.id,
        )
        outcome = StreamOutcome()
        async for event in self._delegate(self.collaborators.image_generator, request, outcome):
            yield event
        if not outcome.succeeded:
            yield Failed(outcome.failure)
            return

        images = outcome.artifact
        if images.failed_indices:
            failed = ", ".join(map(str, images.failed_indices))
            yield Progress(100, f"{len(images.failed_indices)} image(s) failed: {failed}")
        yield Completed(images)

    async def _render_events(self, overrides: dict) -> AsyncIterator[ProgressEvent]:
        variants = [VideoVariant(v) for v in overrides.get("variants", self.project.settings.render_passes)]
        start = 0.0

        # Segments regenerated after captions leave the combined audio stale
        if self.store.audio.needs_recombine:
            recombined = StreamOutcome()
            async for event in self._recombine(recombined, RENDER_RECOMBINE_WINDOW):
                yield event
            if not recombined.succeeded:
                yield Failed(f"Audio recombine failed: {recombined.failure}")
                return
            start = RENDER_RECOMBINE_WINDOW
            yield Progress(start, "Captions predate the regenerated audio; regenerate captions to realign them")

        inputs = RenderInputs.from_store(self.project.id, self.project.title, self.store)
        async for event in rescale(self.renderer.render(inputs, variants, base=self.store.render), start, 100.0):
            yield event

    async def _publish_events(self, overrides: dict) -> AsyncIterator[ProgressEvent]:
        project = self.project
        settings = project.settings
        render = self.store.render
        script = self.store.script

        if "variant" in overrides:
            output = render.variants.get(VideoVariant(overrides["variant"]))
            if output is None:
                yield Failed(f"No rendered {VideoVariant(overrides['variant']).value} video to publish")
                return
        else:
            output = render.preferred_output()

        publish_at = overrides.get("publish_at")
        # A scheduled video stays private until the platform releases it
        privacy = "private" if publish_at else overrides.get("privacy_status", settings.privacy_status)

        title = overrides.get("title") or project.title
        description = overrides.get("description", settings.description)
        tags = list(overrides.get("tags", settings.tags))
        start = 0.0

        if description is None or "tags" not in overrides:
            written = StreamOutcome()
            request = MetadataRequest(title=title or script.title or "", script=script.text)
            async for event in self._delegate(self.collaborators.metadata_author, request, written, 0.0, METADATA_WINDOW):
                yield event
            if written.succeeded:
                metadata: PublishMetadata = written.artifact
                title = title or metadata.title
                if description is None:
                    description = metadata.description
                if "tags" not in overrides:
                    tags += [tag for tag in metadata.tags if tag not in tags]
            else:
                yield Progress(METADATA_WINDOW, f"Metadata generation failed, using defaults: {written.failure}")
            start = METADATA_WINDOW

        title = title or script.title or "Untitled"
        if description is None:
            description = script.text[:DESCRIPTION_CHARS]

        thumbnail_url = overrides.get("thumbnail_url")
        if thumbnail_url is None:
            drawn = StreamOutcome()
            request = self._thumbnail_request(title)
            async for event in self._delegate(
                self.collaborators.thumbnail_generator, request, drawn, start, THUMBNAIL_WINDOW
            ):
                yield event
            if drawn.succeeded and drawn.artifact.first:
                thumbnail_url = drawn.artifact.first
            else:
                thumbnail_url = request.example_image_url
                reason = drawn.failure or "no thumbnail returned"
                yield Progress(THUMBNAIL_WINDOW, f"Thumbnail generation failed, using the first image: {reason}")
            start = THUMBNAIL_WINDOW

        request = UploadRequest(
            video_url=output.video_url,
            title=title,
            description=description,
            tags=tags,
            category_id=settings.category_id,
            privacy_status=privacy,
            publish_at=publish_at,
            thumbnail_url=thumbnail_url,
        )
        outcome = StreamOutcome()
        async for event in self._delegate(self.collaborators.platform_publisher, request, outcome, start, 100.0):
            yield event
        yield Completed(outcome.artifact) if outcome.succeeded else Failed(outcome.failure)

    def _thumbnail_request(self, title: str) -> ThumbnailRequest:
        """Thumbnail prompt from the title and opening scene, referencing the first image."""
        images = self.store.images
        plan = self.store.image_plan
        scene = plan.ordered()[0].scene_description if plan is not None and plan.prompts else ""
        return ThumbnailRequest(
            project_id=self.project.id,
            prompt=f"YouTube thumbnail for \"{title}\". {scene}".strip(),
            thumbnail_count=1,
            example_image_url=images.image_urls[0] if images is not None and images.image_urls else None,
        )
