"""
Mock collaborators for offline runs and tests.

Every mock emits realistic progress and a deterministic result derived from
its request, so the whole pipeline can run without network access. Failures
are injected per mock (failing image indices, failing render variants, a
blanket `fail_with` reason).
"""

import asyncio
import hashlib
from abc import abstractmethod
from typing import AsyncIterator, Iterable, Optional

from src.collaborators.base import Collaborator, Collaborators
from src.collaborators.requests import (
    CaptionRequest,
    ImagePromptRequest,
    ImageRequest,
    MetadataRequest,
    RecombineRequest,
    RenderRequest,
    ScriptRequest,
    SegmentRequest,
    SpeechRequest,
    ThumbnailRequest,
    TranscriptRequest,
    UploadRequest,
)
from src.factory.models import (
    AudioArtifact,
    AudioSegment,
    CaptionArtifact,
    ImagePlan,
    ImagePrompt,
    ImageSet,
    PublishMetadata,
    PublishResult,
    RecombinedAudio,
    ScriptArtifact,
    ThumbnailSet,
    TranscriptResult,
    VariantOutput,
    VideoVariant,
)
from src.factory.progress import Completed, Failed, Progress, ProgressEvent, Ready
from src.factory.timing import CaptionCue, build_srt, equal_intervals

MOCK_HOST = "https://mock.local"

# Bytes per second of mock WAV audio (16 kHz mono, 16-bit)
AUDIO_BYTES_PER_SECOND = 32_000


def _short_hash(value: str) -> str:
    return hashlib.sha1(value.encode()).hexdigest()[:10]


class MockCollaborator(Collaborator):
    """
    Base for mock collaborators.

    Records every request in `calls`. `delay` is awaited between events so
    tests can observe an operation while it is in flight.
    """

    label = "mock"

    def __init__(self, delay: float = 0.0, fail_with: Optional[str] = None):
        self.calls: list = []
        self.delay = delay
        self.fail_with = fail_with

    @property
    def name(self) -> str:
        return f"mock-{self.label}"

    async def stream(self, request) -> AsyncIterator[ProgressEvent]:
        self.calls.append(request)

        if self.fail_with:
            await self._pause()
            yield Progress(5, "Starting...")
            yield Failed(self.fail_with)
            return

        async for event in self._events(request):
            await self._pause()
            yield event

    async def _pause(self) -> None:
        # Always yield to the loop so concurrent callers interleave
        await asyncio.sleep(self.delay)

    @abstractmethod
    def _events(self, request) -> AsyncIterator[ProgressEvent]:
        """Produce the event sequence for one request."""
        pass


class MockTranscriptFetcher(MockCollaborator):
    label = "transcript"

    def __init__(self, transcript: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.transcript = transcript

    async def _events(self, request: TranscriptRequest):
        yield Progress(30, "Fetching transcript...")
        video_id = _short_hash(request.url)
        text = self.transcript or (
            f"This is the transcript of source video {video_id}. "
            "It covers the rise of an empire, its long peace, and its slow decline."
        )
        yield Progress(90, "Transcript fetched")
        yield Completed(TranscriptResult(video_id=video_id, title=f"Source {video_id}", transcript=text))


class MockScriptRewriter(MockCollaborator):
    """Writes a fixed number of numbered sentences about the title."""

    label = "script"

    def __init__(self, sentences: int = 20, **kwargs):
        super().__init__(**kwargs)
        self.sentences = sentences

    async def _events(self, request: ScriptRequest):
        yield Progress(5, "Analyzing source material...")
        topic = request.title or "the topic"
        lines = []
        for i in range(1, self.sentences + 1):
            lines.append(f"Part {i} of the story of {topic} unfolds here.")
            if i % 5 == 0:
                yield Progress(10 + 80 * i / self.sentences, f"Writing... ({i}/{self.sentences} paragraphs)")
        yield Completed(ScriptArtifact(
            text=" ".join(lines),
            title=request.title,
            source_transcript=request.transcript,
        ))


class MockSpeechSynthesizer(MockCollaborator):
    """Splits the script into `segment_count` chunks of roughly equal word count."""

    label = "audio"

    def __init__(self, seconds_per_word: float = 0.4, **kwargs):
        super().__init__(**kwargs)
        self.seconds_per_word = seconds_per_word

    async def _events(self, request: SpeechRequest):
        words = request.script.split()
        count = max(1, min(request.segment_count, len(words)))
        chunk = -(-len(words) // count)

        segments = []
        for i in range(count):
            piece = words[i * chunk:(i + 1) * chunk]
            if not piece:
                continue
            index = len(segments) + 1
            duration = round(len(piece) * self.seconds_per_word, 3)
            segments.append(AudioSegment(
                index=index,
                text=" ".join(piece),
                audio_url=f"{MOCK_HOST}/{request.project_id}/audio/segment-{index}.wav",
                duration=duration,
                size=int(duration * AUDIO_BYTES_PER_SECOND),
            ))
            yield Progress(90 * index / count, f"Generating audio segment {index}/{count}...")

        yield Progress(95, "Combining segments...")
        yield Completed(AudioArtifact(
            audio_url=f"{MOCK_HOST}/{request.project_id}/audio/combined.wav",
            segments=segments,
        ))


class MockSegmentSynthesizer(MockCollaborator):
    label = "audio-segment"

    def __init__(self, seconds_per_word: float = 0.4, fail_segments: Iterable[int] = (), **kwargs):
        super().__init__(**kwargs)
        self.seconds_per_word = seconds_per_word
        self.fail_segments = set(fail_segments)

    async def _events(self, request: SegmentRequest):
        yield Progress(20, f"Regenerating segment {request.segment_index}...")
        if request.segment_index in self.fail_segments:
            yield Failed(f"Voice synthesis failed for segment {request.segment_index}")
            return
        duration = round(len(request.segment_text.split()) * self.seconds_per_word, 3)
        revision = len(self.calls)
        yield Completed(AudioSegment(
            index=request.segment_index,
            text=request.segment_text,
            audio_url=f"{MOCK_HOST}/{request.project_id}/audio/segment-{request.segment_index}-r{revision}.wav",
            duration=duration,
            size=int(duration * AUDIO_BYTES_PER_SECOND),
        ))


class MockAudioRecombiner(MockCollaborator):
    label = "audio-recombine"

    async def _events(self, request: RecombineRequest):
        yield Progress(50, "Recombining audio segments...")
        revision = len(self.calls)
        yield Completed(RecombinedAudio(
            audio_url=f"{MOCK_HOST}/{request.project_id}/audio/combined-r{revision}.wav",
            duration=sum(s.duration for s in request.segments),
            size=sum(s.size for s in request.segments),
        ))


class MockCaptionTranscriber(MockCollaborator):
    """One cue per audio segment; segments in `fail_segments` are skipped."""

    label = "captions"

    def __init__(self, fail_segments: Iterable[int] = (), **kwargs):
        super().__init__(**kwargs)
        self.fail_segments = set(fail_segments)

    async def _events(self, request: CaptionRequest):
        yield Progress(10, "Transcribing audio...")
        cues = []
        skipped = []
        cursor = 0.0
        for segment in sorted(request.segments, key=lambda s: s.index):
            start, cursor = cursor, cursor + segment.duration
            if segment.index in self.fail_segments:
                skipped.append(segment.index)
                yield Progress(50, f"Segment {segment.index} alignment failed, skipping")
                continue
            cues.append(CaptionCue(index=len(cues) + 1, start_seconds=start, end_seconds=cursor, text=segment.text))

        yield Progress(90, "Building SRT...")
        yield Completed(CaptionArtifact(
            srt_content=build_srt(cues),
            captions_url=f"{MOCK_HOST}/{request.project_id}/captions.srt",
            segment_count=len(cues),
            estimated_duration=cursor,
            skipped_segments=skipped,
        ))


class MockImagePromptAuthor(MockCollaborator):
    label = "image-prompts"

    async def _events(self, request: ImagePromptRequest):
        yield Progress(20, "Reading script and captions...")
        prompts = []
        for i, (start, end) in enumerate(equal_intervals(request.image_count, request.audio_duration)):
            index = i + 1
            style = f", {request.style_prompt}" if request.style_prompt else ""
            prompts.append(ImagePrompt(
                index=index,
                prompt=f"Illustration {index} of the narration{style}",
                scene_description=f"Scene {index} of the narration",
                start_seconds=start,
                end_seconds=end,
            ))
        yield Progress(80, f"Authored {len(prompts)} prompts")
        yield Completed(ImagePlan(prompts=prompts, total_duration=request.audio_duration))


class MockImageGenerator(MockCollaborator):
    """One image per prompt; 1-based indices in `fail_indices` produce no image."""

    label = "images"

    def __init__(self, fail_indices: Iterable[int] = (), **kwargs):
        super().__init__(**kwargs)
        self.fail_indices = set(fail_indices)

    async def _events(self, request: ImageRequest):
        urls = []
        failed = []
        total = len(request.prompts)
        for i, prompt in enumerate(request.prompts, start=1):
            if i in self.fail_indices:
                failed.append(i)
                yield Progress(100 * i / total, f"Image {i}/{total} failed")
                continue
            urls.append(f"{MOCK_HOST}/{request.project_id}/images/{i}-{_short_hash(prompt)}.png")
            yield Progress(100 * i / total, f"Generated image {i}/{total}")

        if not urls:
            yield Failed("No images were generated")
            return
        yield Completed(ImageSet(image_urls=urls, failed_indices=failed))


class MockVideoRenderer(MockCollaborator):
    """
    Renders one variant per request, chosen by the request's effect flags.

    `fail_variants` fail mid-render; `fail_after_ready_variants` emit a
    preview before failing.
    """

    label = "render"

    def __init__(
        self,
        fail_variants: Iterable[VideoVariant] = (),
        fail_after_ready_variants: Iterable[VideoVariant] = (),
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.fail_variants = set(fail_variants)
        self.fail_after_ready_variants = set(fail_after_ready_variants)

    @staticmethod
    def variant_for(request: RenderRequest) -> VideoVariant:
        if request.effects.smoke_embers:
            return VideoVariant.SMOKE_EMBERS
        if request.effects.embers:
            return VideoVariant.EMBERS
        return VideoVariant.BASIC

    async def _events(self, request: RenderRequest):
        variant = self.variant_for(request)
        base = f"{MOCK_HOST}/{request.project_id}/video/{variant.value}"

        yield Progress(5, "Downloading assets...", "downloading")
        yield Progress(20, "Preparing timeline...", "preparing")
        yield Progress(40, "Rendering video...", "rendering")
        if variant in self.fail_variants:
            yield Failed(f"Renderer crashed while rendering {variant.value}")
            return
        yield Progress(75, "Rendering video...", "rendering")

        size = int(sum(t.end_seconds - t.start_seconds for t in request.image_timings) * 250_000)
        yield Ready(VariantOutput(variant=variant, video_url=f"{base}-preview.mp4", size=size), "Video ready")
        yield Progress(82, "Uploading video...", "uploading")
        if variant in self.fail_after_ready_variants:
            yield Failed(f"Upload of {variant.value} failed")
            return
        yield Progress(95, "Finalizing...", "uploading")
        yield Completed(VariantOutput(variant=variant, video_url=f"{base}.mp4", size=size))


class MockMetadataAuthor(MockCollaborator):
    """Title variations, an excerpt description and topic tags."""

    label = "metadata"

    async def _events(self, request: MetadataRequest):
        yield Progress(30, "Writing titles and description...")
        topic = request.title or "History"
        titles = [
            f"The Untold Story of {topic}",
            f"What Really Happened to {topic}?",
            f"{topic}: The Full Documentary",
        ]
        description = f"{topic}\n\n{request.script[:200]}"
        tags = [topic.lower(), "history documentary", "ancient history", "untold stories"]
        yield Completed(PublishMetadata(titles=titles, description=description, tags=tags))


class MockThumbnailGenerator(MockCollaborator):
    label = "thumbnails"

    async def _events(self, request: ThumbnailRequest):
        urls = []
        for i in range(1, request.thumbnail_count + 1):
            urls.append(f"{MOCK_HOST}/{request.project_id}/thumbnails/{i}-{_short_hash(request.prompt)}.png")
            yield Progress(100 * i / request.thumbnail_count, f"{i}/{request.thumbnail_count} thumbnails generated")
        yield Completed(ThumbnailSet(thumbnails=urls))


class MockPlatformPublisher(MockCollaborator):
    label = "publish"

    async def _events(self, request: UploadRequest):
        yield Progress(10, "Uploading to YouTube...")
        yield Progress(70, "Processing video...")
        video_id = _short_hash(request.video_url + request.title)
        yield Completed(PublishResult(
            video_id=video_id,
            video_url=f"https://www.youtube.com/watch?v={video_id}",
            studio_url=f"https://studio.youtube.com/video/{video_id}/edit",
            publish_at=request.publish_at,
            privacy_status=request.privacy_status,
        ))


def mock_collaborators(**overrides: Collaborator) -> Collaborators:
    """Full mock roster; keyword arguments replace individual collaborators."""
    roster = Collaborators(
        transcript_fetcher=MockTranscriptFetcher(),
        script_rewriter=MockScriptRewriter(),
        speech_synthesizer=MockSpeechSynthesizer(),
        segment_synthesizer=MockSegmentSynthesizer(),
        audio_recombiner=MockAudioRecombiner(),
        caption_transcriber=MockCaptionTranscriber(),
        image_prompt_author=MockImagePromptAuthor(),
        image_generator=MockImageGenerator(),
        video_renderer=MockVideoRenderer(),
        metadata_author=MockMetadataAuthor(),
        thumbnail_generator=MockThumbnailGenerator(),
        platform_publisher=MockPlatformPublisher(),
    )
    return roster.replace(**overrides) if overrides else roster
