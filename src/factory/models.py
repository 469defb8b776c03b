"""
Artifact and value models for the generation pipeline.

Includes models for:
- Stage artifacts (script, audio, captions, image plan, images, render, publish)
- Intermediate collaborator results (transcript, recombined audio)
- Project inputs and generation settings

Every model accepts both snake_case field names and the camelCase keys used
on the wire by the collaborator API (`audioUrl`, `startSeconds`, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from src.factory.timing import format_timestamp


class WireModel(BaseModel):
    """Base for models exchanged with collaborators."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# VIDEO VARIANTS
# ============================================================================


class VideoVariant(str, Enum):
    """Visual-effect variants of a rendered video. Siblings, not a sequence."""

    BASIC = "basic"
    EMBERS = "embers"
    SMOKE_EMBERS = "smoke_embers"

    @property
    def effects(self) -> "EffectFlags":
        """Overlay flags sent to the renderer for this variant."""
        return EffectFlags(
            embers=self is VideoVariant.EMBERS,
            smoke_embers=self is VideoVariant.SMOKE_EMBERS,
        )

    @property
    def has_effects(self) -> bool:
        return self is not VideoVariant.BASIC


# Publish prefers an effect render, like the results screen does
VARIANT_PREFERENCE = [VideoVariant.EMBERS, VideoVariant.SMOKE_EMBERS, VideoVariant.BASIC]


class EffectFlags(WireModel):
    """Overlay effects toggled for one render."""

    embers: bool = False
    smoke_embers: bool = Field(default=False, alias="smoke_embers")


# ============================================================================
# PROJECT INPUTS
# ============================================================================


class SourceInput(BaseModel):
    """What the video is made from: a source video URL, a title, or both."""

    url: Optional[str] = None
    title: str = ""
    transcript: Optional[str] = None


class GenerationSettings(BaseModel):
    """Per-project knobs, seeded from configuration."""

    script_template: str = "documentary"
    target_words: int = 3000
    voice_reference: Optional[str] = None
    segment_count: int = 10
    image_count: int = 10
    image_style: str = ""
    full_automation: bool = False
    render_passes: list[VideoVariant] = Field(
        default_factory=lambda: [VideoVariant.BASIC, VideoVariant.EMBERS]
    )
    category_id: str = "27"
    privacy_status: Literal["private", "unlisted", "public"] = "unlisted"
    tags: list[str] = Field(default_factory=list)
    description: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> "GenerationSettings":
        """Build settings from a `src.config.Config`."""
        gen = config.generation
        return cls(
            script_template=gen.script_template,
            target_words=gen.target_words,
            voice_reference=gen.voice_reference,
            segment_count=gen.segment_count,
            image_count=gen.image_count,
            image_style=gen.image_style,
            full_automation=gen.full_automation,
            render_passes=[VideoVariant(v) for v in gen.render_passes],
            category_id=config.publish.category_id,
            privacy_status=config.publish.privacy_status,
            tags=list(config.publish.tags),
        )


# ============================================================================
# INTERMEDIATE RESULTS
# ============================================================================


class TranscriptResult(WireModel):
    """Raw text fetched from the source video."""

    video_id: Optional[str] = None
    title: Optional[str] = None
    transcript: str


class RecombinedAudio(WireModel):
    """Combined audio produced from the current segment set."""

    audio_url: str
    duration: float
    size: int = 0


class PublishMetadata(WireModel):
    """Title candidates, description and tags written for the upload."""

    titles: list[str] = Field(default_factory=list)
    description: str = ""
    tags: list[str] = Field(default_factory=list)

    @property
    def title(self) -> Optional[str]:
        return self.titles[0] if self.titles else None


class ThumbnailSet(WireModel):
    thumbnails: list[str] = Field(default_factory=list)

    @property
    def first(self) -> Optional[str]:
        return self.thumbnails[0] if self.thumbnails else None


# ============================================================================
# STAGE ARTIFACTS
# ============================================================================


class ScriptArtifact(WireModel):
    """Narration text produced by the script rewriter."""

    kind: Literal["script"] = "script"
    text: str = Field(validation_alias=AliasChoices("text", "script"))
    word_count: int = 0
    title: Optional[str] = None
    source_transcript: Optional[str] = None

    @model_validator(mode="after")
    def _count_words(self) -> "ScriptArtifact":
        if not self.word_count:
            self.word_count = len(self.text.split())
        return self


class AudioSegment(WireModel):
    """One independently regenerable slice of the narration audio.

    `index` is a stable identity (1-based), not an array position.
    """

    index: int
    text: str
    audio_url: str
    duration: float
    size: int = 0


class AudioArtifact(WireModel):
    """Synthesized narration: combined audio plus its segments."""

    kind: Literal["audio"] = "audio"
    audio_url: Optional[str] = None
    segments: list[AudioSegment] = Field(default_factory=list)
    total_duration: float = Field(
        default=0.0, validation_alias=AliasChoices("total_duration", "totalDuration", "duration")
    )
    size: int = 0
    needs_recombine: bool = False

    @model_validator(mode="after")
    def _fill_totals(self) -> "AudioArtifact":
        if self.segments and not self.total_duration:
            self.total_duration = sum(s.duration for s in self.segments)
        if self.segments and not self.size:
            self.size = sum(s.size for s in self.segments)
        if self.audio_url is None and self.segments:
            # Single-segment responses have no separate combined file
            self.audio_url = self.segments[0].audio_url
            self.needs_recombine = len(self.segments) > 1
        return self

    def segment(self, index: int) -> AudioSegment:
        """Look up a segment by its stable index.

        Raises:
            KeyError: If no segment has that index.
        """
        for seg in self.segments:
            if seg.index == index:
                return seg
        raise KeyError(f"No audio segment with index {index}")

    def replace_segment(self, segment: AudioSegment) -> "AudioArtifact":
        """Return a copy where only the segment with `segment.index` changes.

        Totals are recomputed from the full set and the combined audio is
        flagged stale until the segments are recombined.
        """
        self.segment(segment.index)
        segments = [segment if s.index == segment.index else s for s in self.segments]
        return self.model_copy(
            update={
                "segments": segments,
                "total_duration": sum(s.duration for s in segments),
                "size": sum(s.size for s in segments),
                "needs_recombine": True,
            }
        )

    def with_combined(self, combined: RecombinedAudio) -> "AudioArtifact":
        """Return a copy pointing at freshly recombined audio."""
        return self.model_copy(
            update={
                "audio_url": combined.audio_url,
                "size": combined.size or self.size,
                "needs_recombine": False,
            }
        )


class CaptionArtifact(WireModel):
    """Time-aligned SRT captions for the narration audio."""

    kind: Literal["captions"] = "captions"
    srt_content: str
    captions_url: Optional[str] = None
    segment_count: int = 0
    estimated_duration: float = 0.0
    skipped_segments: list[int] = Field(default_factory=list)


class ImagePrompt(WireModel):
    """One scene of the image plan, with its slot on the audio timeline."""

    index: int
    prompt: str
    scene_description: str = ""
    start_seconds: float
    end_seconds: float

    @property
    def start_time(self) -> str:
        return format_timestamp(self.start_seconds)

    @property
    def end_time(self) -> str:
        return format_timestamp(self.end_seconds)

    @property
    def duration(self) -> float:
        return self.end_seconds - self.start_seconds


class ImagePlan(WireModel):
    """Timed scene plan. Timings must partition `[0, total_duration]`."""

    kind: Literal["image_plan"] = "image_plan"
    prompts: list[ImagePrompt] = Field(default_factory=list)
    total_duration: float = 0.0
    reconciled: bool = False

    @property
    def count(self) -> int:
        return len(self.prompts)

    def timings(self) -> list[tuple[float, float]]:
        return [(p.start_seconds, p.end_seconds) for p in self.ordered()]

    def ordered(self) -> list[ImagePrompt]:
        return sorted(self.prompts, key=lambda p: p.index)


class ImageSet(WireModel):
    """Generated illustrations, in plan order."""

    kind: Literal["images"] = "images"
    image_urls: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("image_urls", "imageUrls", "images")
    )
    failed_indices: list[int] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.image_urls)


class VariantOutput(WireModel):
    """A rendered video file for one variant."""

    variant: Optional[VideoVariant] = None
    video_url: str
    size: int = 0
    captioned_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("captioned_url", "videoUrlCaptioned")
    )


class RenderArtifact(WireModel):
    """All rendered variants of the project's video.

    Variants are siblings: adding or failing one never drops another.
    """

    kind: Literal["render"] = "render"
    variants: dict[VideoVariant, VariantOutput] = Field(default_factory=dict)
    failures: dict[VideoVariant, str] = Field(default_factory=dict)

    @property
    def has_output(self) -> bool:
        return bool(self.variants)

    def url(self, variant: VideoVariant) -> Optional[str]:
        output = self.variants.get(variant)
        return output.video_url if output else None

    def with_variant(self, output: VariantOutput) -> "RenderArtifact":
        """Return a copy with `output` stored under its variant."""
        variants = dict(self.variants)
        variants[output.variant] = output
        failures = {v: r for v, r in self.failures.items() if v != output.variant}
        return self.model_copy(update={"variants": variants, "failures": failures})

    def with_failure(self, variant: VideoVariant, reason: str) -> "RenderArtifact":
        """Return a copy recording a failed render of `variant`."""
        failures = dict(self.failures)
        failures[variant] = reason
        return self.model_copy(update={"failures": failures})

    def preferred_output(self) -> Optional[VariantOutput]:
        """The output to publish: embers, then smoke+embers, then basic."""
        for variant in VARIANT_PREFERENCE:
            if variant in self.variants:
                return self.variants[variant]
        return None


class PublishResult(WireModel):
    """Identifiers returned by the platform publisher."""

    kind: Literal["publish"] = "publish"
    video_id: str
    video_url: str = Field(validation_alias=AliasChoices("video_url", "videoUrl", "youtubeUrl"))
    studio_url: Optional[str] = None
    publish_at: Optional[datetime] = None
    privacy_status: Optional[str] = None


Artifact = Annotated[
    Union[
        ScriptArtifact,
        AudioArtifact,
        CaptionArtifact,
        ImagePlan,
        ImageSet,
        RenderArtifact,
        PublishResult,
    ],
    Field(discriminator="kind"),
]

_artifact_adapter = TypeAdapter(Artifact)


def parse_artifact(data: dict) -> Artifact:
    """Validate a stored artifact dict into its concrete model."""
    return _artifact_adapter.validate_python(data)
