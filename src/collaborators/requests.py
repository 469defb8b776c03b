"""Request models sent to collaborators (camelCase on the wire)."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from src.factory.models import AudioSegment, EffectFlags, WireModel


class TranscriptRequest(WireModel):
    url: str


class ScriptRequest(WireModel):
    """Raw text + style template → narration."""

    transcript: Optional[str] = None
    template: str
    title: str
    word_count: int = 3000


class SpeechRequest(WireModel):
    """Narration + voice reference → segmented audio."""

    script: str
    voice_sample_url: Optional[str] = None
    project_id: str
    segment_count: int = 10


class SegmentRequest(WireModel):
    segment_text: str
    segment_index: int
    voice_sample_url: Optional[str] = None
    project_id: str


class RecombineRequest(WireModel):
    project_id: str
    segments: list[AudioSegment]


class CaptionRequest(WireModel):
    audio_url: str
    project_id: str
    segments: list[AudioSegment] = Field(default_factory=list)


class ImagePromptRequest(WireModel):
    """Script + caption timing + desired count → timed scene plan."""

    script: str
    srt_content: str
    image_count: int
    style_prompt: str = ""
    audio_duration: float


class ImageRequest(WireModel):
    """Scene plan → one image per prompt."""

    prompts: list[str]
    scene_descriptions: list[str] = Field(default_factory=list)
    image_count: int
    style_prompt: str = ""
    project_id: str


class ImageTiming(WireModel):
    start_seconds: float
    end_seconds: float


class RenderRequest(WireModel):
    """Audio + images + captions + effect flags → one video variant."""

    project_id: str
    audio_url: str
    image_urls: list[str]
    image_timings: list[ImageTiming]
    srt_content: str
    project_title: str
    effects: EffectFlags = Field(default_factory=EffectFlags)


class MetadataRequest(WireModel):
    """Working title + narration → title candidates, description and tags."""

    title: str
    script: str


class ThumbnailRequest(WireModel):
    project_id: str
    prompt: str
    thumbnail_count: int = 1
    example_image_url: Optional[str] = None


class UploadRequest(WireModel):
    """Video + metadata + schedule → published video."""

    video_url: str
    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    category_id: str = "27"
    privacy_status: Literal["private", "unlisted", "public"] = "private"
    publish_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None
