"""
Tests for the Stage Controller.

Tests the pipeline semantics end to end over mock collaborators:
- Preconditions and stage navigation
- Single-flight per project
- Regeneration, reconciliation and audio segments
- Render variants, auto-render, publish and project lifecycle
"""

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from src.collaborators.mock import (
    MockCaptionTranscriber,
    MockImageGenerator,
    MockMetadataAuthor,
    MockScriptRewriter,
    MockSegmentSynthesizer,
    MockSpeechSynthesizer,
    MockThumbnailGenerator,
    MockVideoRenderer,
    mock_collaborators,
)
from src.factory.controller import StageController
from src.factory.errors import (
    CollaboratorFailed,
    OperationInProgress,
    PreconditionNotMet,
    ProjectClosed,
)
from src.factory.models import ScriptArtifact, VariantOutput, VideoVariant
from src.factory.progress import Completed, Progress, collect
from src.factory.project import Project, ProjectStatus
from src.factory.reconciliation import validate_partition
from src.factory.render import VariantStatus
from src.factory.repository import ProjectRepository
from src.factory.stages import STAGE_ORDER, Stage
from src.factory.timing import partition_gaps


class TestNavigation:
    """Tests for advance, preconditions and go_to."""

    @pytest.mark.asyncio
    async def test_full_pipeline(self, controller, run_through):
        """Every stage runs in order and the project ends published."""
        await run_through(controller, Stage.PUBLISH)

        assert controller.store.present_stages() == STAGE_ORDER
        assert controller.project.status is ProjectStatus.PUBLISHED
        assert controller.store.publish.video_url.startswith("https://www.youtube.com/watch?v=")
        assert controller.store.audio.total_duration == pytest.approx(72.0)
        assert controller.store.image_plan.count == 10

    @pytest.mark.asyncio
    async def test_advance_moves_to_next_stage(self, controller):
        events = []
        script = await controller.run(Stage.SCRIPT, on_event=events.append)

        assert isinstance(script, ScriptArtifact)
        assert controller.project.current_stage is Stage.AUDIO
        assert isinstance(events[-1], Completed)
        percents = [e.percent for e in events if isinstance(e, Progress)]
        assert percents == sorted(percents)

    @pytest.mark.asyncio
    async def test_precondition_checked_before_collaborator(self, controller, collaborators):
        """advance(captions) without audio fails before the transcriber is called."""
        await controller.run(Stage.SCRIPT)

        with pytest.raises(PreconditionNotMet) as exc_info:
            await controller.run(Stage.CAPTIONS)

        assert exc_info.value.missing is Stage.AUDIO
        assert collaborators.caption_transcriber.calls == []
        assert controller.project.current_stage is Stage.AUDIO
        assert controller.in_flight is None

    @pytest.mark.asyncio
    async def test_go_to_never_touches_artifacts(self, controller, run_through):
        await run_through(controller, Stage.AUDIO)
        script, audio = controller.store.script, controller.store.audio

        controller.go_to(Stage.SCRIPT)

        assert controller.project.current_stage is Stage.SCRIPT
        assert controller.store.script is script
        assert controller.store.audio is audio
        assert controller.project.history[-1].action == "go_to"

    @pytest.mark.asyncio
    async def test_script_fetches_transcript_once(self):
        """A URL source is fetched once, then reused on regeneration."""
        project = Project.create(url="https://www.youtube.com/watch?v=abc123", project_id="proj_url")
        collaborators = mock_collaborators()
        controller = StageController(project, collaborators)

        events = []
        await controller.run(Stage.SCRIPT, on_event=events.append)
        await controller.run(Stage.SCRIPT, regenerate=True)

        assert len(collaborators.transcript_fetcher.calls) == 1
        assert len(collaborators.script_rewriter.calls) == 2
        assert collaborators.script_rewriter.calls[0].transcript.startswith("This is the transcript")
        assert project.title.startswith("Source ")
        fetch_percents = [e.percent for e in events if isinstance(e, Progress) and e.percent <= 30]
        assert fetch_percents


class TestSingleFlight:
    """Tests for one operation per project."""

    @pytest.mark.asyncio
    async def test_concurrent_advance_is_rejected(self, project):
        """The second concurrent call raises; exactly one write happens."""
        collaborators = mock_collaborators(script_rewriter=MockScriptRewriter(delay=0.01))
        controller = StageController(project, collaborators)

        results = await asyncio.gather(
            controller.run(Stage.SCRIPT),
            controller.run(Stage.SCRIPT),
            return_exceptions=True,
        )

        assert isinstance(results[0], ScriptArtifact)
        assert isinstance(results[1], OperationInProgress)
        assert results[1].active is Stage.SCRIPT
        assert controller.store.version(Stage.SCRIPT) == 1
        assert len(collaborators.script_rewriter.calls) == 1

    @pytest.mark.asyncio
    async def test_flight_released_after_failure(self, project):
        """A failed operation surfaces CollaboratorFailed and frees the project."""
        synthesizer = MockSpeechSynthesizer(fail_with="Voice quota exceeded")
        collaborators = mock_collaborators(speech_synthesizer=synthesizer)
        controller = StageController(project, collaborators)
        await controller.run(Stage.SCRIPT)

        with pytest.raises(CollaboratorFailed) as exc_info:
            await controller.run(Stage.AUDIO)

        assert exc_info.value.stage is Stage.AUDIO
        assert exc_info.value.reason == "Voice quota exceeded"
        assert controller.store.audio is None
        assert controller.in_flight is None
        assert len(synthesizer.calls) == 1

        synthesizer.fail_with = None
        await controller.run(Stage.AUDIO)
        assert controller.store.has(Stage.AUDIO)

    @pytest.mark.asyncio
    async def test_dropped_stream_still_completes(self, project):
        """An observer that stops listening neither stalls the work nor holds the project."""
        collaborators = mock_collaborators(script_rewriter=MockScriptRewriter(delay=0.01))
        controller = StageController(project, collaborators)

        stream = controller.advance(Stage.SCRIPT)
        first = await stream.__anext__()
        del stream

        async def until_idle():
            while controller.in_flight is not None:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(until_idle(), timeout=2)

        assert isinstance(first, Progress)
        assert controller.store.has(Stage.SCRIPT)
        assert project.current_stage is Stage.AUDIO
        await controller.run(Stage.AUDIO)
        assert controller.store.has(Stage.AUDIO)

    @pytest.mark.asyncio
    async def test_wait_surfaces_failure(self, project):
        collaborators = mock_collaborators(speech_synthesizer=MockSpeechSynthesizer(fail_with="Voice quota exceeded"))
        controller = StageController(project, collaborators)
        await controller.run(Stage.SCRIPT)

        operation = controller.advance(Stage.AUDIO)

        with pytest.raises(CollaboratorFailed, match="Voice quota exceeded"):
            await operation.wait()
        assert operation.done
        assert controller.in_flight is None


class TestRegeneration:
    """Tests for regenerate, reconciliation and approvals."""

    @pytest.mark.asyncio
    async def test_regenerate_keeps_stage_downstream_and_approval(self, controller, run_through):
        await run_through(controller, Stage.AUDIO)
        controller.approve(Stage.SCRIPT)
        audio = controller.store.audio

        await controller.run(Stage.SCRIPT, {"title": "Carthage"}, regenerate=True)

        assert "Carthage" in controller.store.script.text
        assert controller.store.version(Stage.SCRIPT) == 2
        assert controller.project.current_stage is Stage.CAPTIONS
        assert controller.store.audio is audio
        assert controller.project.approvals.is_approved(Stage.SCRIPT)

    @pytest.mark.asyncio
    async def test_image_failures_trigger_reconciliation(self, project, run_through):
        """Two failed images shrink the plan to eight equal prompts."""
        collaborators = mock_collaborators(image_generator=MockImageGenerator(fail_indices=[3, 7]))
        controller = StageController(project, collaborators)
        await run_through(controller, Stage.IMAGE_PLAN)

        events = []
        await controller.run(Stage.IMAGES, on_event=events.append)

        plan = controller.store.image_plan
        assert controller.store.images.count == 8
        assert plan.count == 8
        assert plan.reconciled
        assert validate_partition(plan, controller.store.audio.total_duration) == []
        assert controller.last_reconciliation.before_count == 10
        assert any(e.action == "reconcile" for e in project.history)
        assert any(isinstance(e, Progress) and "reconciled" in e.message for e in events)

    @pytest.mark.asyncio
    async def test_regenerated_plan_follows_images(self, controller, run_through):
        """A regenerated plan with a different count is reconciled to the images."""
        await run_through(controller, Stage.IMAGES)

        await controller.run(Stage.IMAGE_PLAN, {"image_count": 12}, regenerate=True)

        assert controller.store.image_plan.count == 10
        assert controller.store.image_plan.reconciled

    @pytest.mark.asyncio
    async def test_caption_alignment_errors_are_skipped(self, project, run_through):
        collaborators = mock_collaborators(caption_transcriber=MockCaptionTranscriber(fail_segments=[2]))
        controller = StageController(project, collaborators)

        await run_through(controller, Stage.CAPTIONS)

        assert controller.store.captions.skipped_segments == [2]
        assert controller.store.captions.segment_count == 9


class TestAudioSegments:
    """Tests for independent segment regeneration."""

    @pytest.mark.asyncio
    async def test_regenerate_one_segment(self, controller, collaborators, run_through):
        """Only segment 3 changes and the total is the sum of all segments."""
        await run_through(controller, Stage.CAPTIONS)
        before = controller.store.audio

        outcome = await collect(controller.regenerate_audio_segment(3, "A much shorter line."))

        after = controller.store.audio
        assert outcome.succeeded
        assert after.segment(3).text == "A much shorter line."
        assert after.segment(3).duration == pytest.approx(1.6)
        for index in range(1, 11):
            if index != 3:
                assert after.segment(index) == before.segment(index)
        assert after.total_duration == pytest.approx(sum(s.duration for s in after.segments))
        assert after.needs_recombine

        await controller.run(Stage.CAPTIONS, regenerate=True)

        assert len(collaborators.audio_recombiner.calls) == 1
        assert not controller.store.audio.needs_recombine
        assert controller.store.audio.audio_url.endswith("combined-r1.wav")

    @pytest.mark.asyncio
    async def test_parallel_segments_keep_successes(self, project, run_through):
        """One failing segment does not discard the others."""
        collaborators = mock_collaborators(segment_synthesizer=MockSegmentSynthesizer(fail_segments=[5]))
        controller = StageController(project, collaborators)
        await run_through(controller, Stage.AUDIO)

        with pytest.raises(CollaboratorFailed, match="segment 5"):
            await collect(controller.regenerate_audio_segments({2: "Second edited", 5: "Fifth edited"}))

        audio = controller.store.audio
        assert audio.segment(2).text == "Second edited"
        assert audio.segment(5).text != "Fifth edited"
        assert len(collaborators.segment_synthesizer.calls) == 2
        assert controller.in_flight is None

    @pytest.mark.asyncio
    async def test_unknown_segment(self, controller, run_through):
        await run_through(controller, Stage.AUDIO)

        with pytest.raises(KeyError):
            await collect(controller.regenerate_audio_segment(42))

        assert controller.in_flight is None

    @pytest.mark.asyncio
    async def test_segments_need_audio(self, controller, collaborators):
        await controller.run(Stage.SCRIPT)

        with pytest.raises(PreconditionNotMet, match="Cannot run audio") as exc_info:
            controller.regenerate_audio_segment(1, "New text")

        assert exc_info.value.stage is Stage.AUDIO
        assert exc_info.value.missing is Stage.AUDIO
        assert collaborators.segment_synthesizer.calls == []
        assert controller.in_flight is None

    @pytest.mark.asyncio
    async def test_render_recombines_stale_audio(self, controller, collaborators, run_through):
        """Segments regenerated after captions are recombined before rendering."""
        await run_through(controller, Stage.IMAGES)
        await collect(controller.regenerate_audio_segment(3, "Short."))
        assert controller.store.audio.needs_recombine

        events = []
        await controller.run(Stage.RENDER, on_event=events.append)

        audio = controller.store.audio
        assert len(collaborators.audio_recombiner.calls) == 1
        assert not audio.needs_recombine
        assert audio.total_duration == pytest.approx(65.2)
        for request in collaborators.video_renderer.calls:
            assert request.audio_url == audio.audio_url
            assert request.audio_url.endswith("combined-r1.wav")
            timings = [(t.start_seconds, t.end_seconds) for t in request.image_timings]
            assert timings[-1][1] == pytest.approx(65.2)
            assert partition_gaps(timings, audio.total_duration) == []
        assert any(isinstance(e, Progress) and "Captions predate" in e.message for e in events)

    @pytest.mark.asyncio
    async def test_render_stops_when_recombine_fails(self, project, run_through):
        collaborators = mock_collaborators()
        controller = StageController(project, collaborators)
        await run_through(controller, Stage.IMAGES)
        await collect(controller.regenerate_audio_segment(3, "Short."))
        collaborators.audio_recombiner.fail_with = "Storage unavailable"

        with pytest.raises(CollaboratorFailed, match="Audio recombine failed: Storage unavailable"):
            await controller.run(Stage.RENDER)

        assert collaborators.video_renderer.calls == []
        assert controller.store.audio.needs_recombine
        assert controller.store.render is None


class TestRenderAndPublish:
    """Tests for variants, auto-render and publishing."""

    @pytest.mark.asyncio
    async def test_render_partial_failure_is_reported(self, project, run_through):
        collaborators = mock_collaborators(video_renderer=MockVideoRenderer(fail_variants=[VideoVariant.EMBERS]))
        controller = StageController(project, collaborators)

        await run_through(controller, Stage.RENDER)

        render = controller.store.render
        assert set(render.variants) == {VideoVariant.BASIC}
        assert VideoVariant.EMBERS in render.failures
        assert controller.last_partial_failure.completed == [VideoVariant.BASIC]
        assert project.variant_slots[VideoVariant.EMBERS].status is VariantStatus.FAILED
        assert project.current_stage is Stage.PUBLISH

    @pytest.mark.asyncio
    async def test_ready_then_failed_keeps_preview(self, project, run_through):
        """The stage is not complete, but the preview stays usable."""
        renderer = MockVideoRenderer(fail_after_ready_variants=list(VideoVariant))
        controller = StageController(project, mock_collaborators(video_renderer=renderer))
        await run_through(controller, Stage.IMAGES)

        with pytest.raises(CollaboratorFailed, match="All render passes failed"):
            await controller.run(Stage.RENDER)

        assert controller.store.render is None
        assert isinstance(controller.previews[Stage.RENDER], VariantOutput)
        assert project.variant_slots[VideoVariant.BASIC].download_url.endswith("basic-preview.mp4")

    @pytest.mark.asyncio
    async def test_auto_render_runs_once(self, project, collaborators, run_through):
        project.settings.full_automation = True
        controller = StageController(project, collaborators)
        await run_through(controller, Stage.IMAGES)

        first = await controller.maybe_auto_render()
        second = await controller.maybe_auto_render()

        assert set(first.variants) == {VideoVariant.BASIC, VideoVariant.EMBERS}
        assert second is None
        assert project.auto_render_triggered
        assert len(collaborators.video_renderer.calls) == 2

    @pytest.mark.asyncio
    async def test_auto_render_off_without_full_automation(self, controller, collaborators, run_through):
        await run_through(controller, Stage.IMAGES)

        assert await controller.maybe_auto_render() is None
        assert collaborators.video_renderer.calls == []

    @pytest.mark.asyncio
    async def test_scheduled_publish_is_private(self, controller, collaborators, run_through):
        await run_through(controller, Stage.RENDER)
        when = datetime(2026, 11, 2, 17, 0, tzinfo=ZoneInfo("America/Los_Angeles"))

        result = await controller.run(Stage.PUBLISH, {"publish_at": when})

        request = collaborators.platform_publisher.calls[0]
        assert request.privacy_status == "private"
        assert request.publish_at == when
        assert request.video_url.endswith("/embers.mp4")
        assert result.privacy_status == "private"
        assert controller.project.status is ProjectStatus.PUBLISHED

        with pytest.raises(ProjectClosed):
            await controller.run(Stage.SCRIPT, regenerate=True)

    @pytest.mark.asyncio
    async def test_unscheduled_publish_uses_configured_privacy(self, controller, collaborators, run_through):
        await run_through(controller, Stage.PUBLISH)

        assert collaborators.platform_publisher.calls[0].privacy_status == "unlisted"

    @pytest.mark.asyncio
    async def test_publish_writes_metadata_and_thumbnail(self, controller, collaborators, run_through):
        await run_through(controller, Stage.PUBLISH)

        assert collaborators.metadata_author.calls[0].title == "Rome"
        thumbnail_request = collaborators.thumbnail_generator.calls[0]
        assert thumbnail_request.example_image_url == controller.store.images.image_urls[0]
        assert thumbnail_request.prompt.startswith('YouTube thumbnail for "Rome". Scene 1')

        upload = collaborators.platform_publisher.calls[0]
        assert upload.title == "Rome"
        assert upload.description.startswith("Rome\n\nPart 1 of the story of Rome")
        assert "history documentary" in upload.tags
        assert upload.thumbnail_url.startswith("https://mock.local/proj_test/thumbnails/1-")

    @pytest.mark.asyncio
    async def test_publish_falls_back_when_helpers_fail(self, project, run_through):
        """Metadata and thumbnail failures never block the upload."""
        collaborators = mock_collaborators(
            metadata_author=MockMetadataAuthor(fail_with="Model overloaded"),
            thumbnail_generator=MockThumbnailGenerator(fail_with="Image quota exceeded"),
        )
        controller = StageController(project, collaborators)
        await run_through(controller, Stage.RENDER)

        events = []
        await controller.run(Stage.PUBLISH, on_event=events.append)

        upload = collaborators.platform_publisher.calls[0]
        assert upload.title == "Rome"
        assert upload.description == controller.store.script.text[:300]
        assert upload.thumbnail_url == controller.store.images.image_urls[0]
        assert project.status is ProjectStatus.PUBLISHED
        messages = [e.message for e in events if isinstance(e, Progress)]
        assert any("Metadata generation failed" in m and "Model overloaded" in m for m in messages)
        assert any("Image quota exceeded" in m for m in messages)

    @pytest.mark.asyncio
    async def test_publish_overrides_skip_helpers(self, controller, collaborators, run_through):
        await run_through(controller, Stage.RENDER)

        await controller.run(Stage.PUBLISH, {
            "description": "Hand written",
            "tags": ["rome"],
            "thumbnail_url": "https://cdn.test/thumb.png",
        })

        assert collaborators.metadata_author.calls == []
        assert collaborators.thumbnail_generator.calls == []
        upload = collaborators.platform_publisher.calls[0]
        assert (upload.description, upload.tags) == ("Hand written", ["rome"])
        assert upload.thumbnail_url == "https://cdn.test/thumb.png"


class TestLifecycle:
    """Tests for abandon, persistence and status."""

    @pytest.mark.asyncio
    async def test_abandoned_project_rejects_work(self, controller):
        controller.abandon()

        with pytest.raises(ProjectClosed):
            await controller.run(Stage.SCRIPT)
        with pytest.raises(ProjectClosed):
            controller.abandon()

    @pytest.mark.asyncio
    async def test_autosave(self, project, collaborators, tmp_path):
        repository = ProjectRepository(tmp_path)
        controller = StageController(project, collaborators, repository=repository)

        await controller.run(Stage.SCRIPT)
        controller.approve(Stage.SCRIPT, by="alice")

        loaded = repository.load(project.id)
        assert loaded.artifacts.script.text == project.artifacts.script.text
        assert loaded.current_stage is Stage.AUDIO
        assert loaded.approvals.is_approved(Stage.SCRIPT)

    @pytest.mark.asyncio
    async def test_status(self, controller):
        await controller.run(Stage.SCRIPT)

        status = controller.status()

        assert status["in_flight"] is None
        assert status["current_stage"] == "audio"
        assert status["artifacts"]["stages"]["script"]["present"] is True
        assert status["downloads"] == {}

    @pytest.mark.asyncio
    async def test_status_lists_downloads(self, controller, run_through):
        await run_through(controller, Stage.RENDER)

        downloads = controller.status()["downloads"]

        assert set(downloads) == {"basic", "embers"}
        assert downloads["embers"].endswith("/embers.mp4")
