"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class EndpointPaths(BaseModel):
    """Routes of the collaborator HTTP API."""

    transcript: str = "/get-youtube-transcript"
    script: str = "/rewrite-script"
    audio: str = "/generate-audio"
    audio_segment: str = "/generate-audio/segment"
    audio_recombine: str = "/generate-audio/recombine"
    captions: str = "/generate-captions"
    image_prompts: str = "/generate-image-prompts"
    images: str = "/generate-images"
    render: str = "/render-video"
    metadata: str = "/generate-youtube-metadata"
    thumbnails: str = "/generate-thumbnails"
    publish: str = "/youtube-upload"


class TimeoutConfig(BaseModel):
    """Timeouts in seconds.

    `request` values bound a whole operation, `event` values bound the silence
    between two consecutive stream events.
    """

    request: dict[str, float] = Field(
        default_factory=lambda: {
            "transcript": 120.0,
            "script": 1800.0,
            "audio": 3600.0,
            "audio_segment": 600.0,
            "audio_recombine": 600.0,
            "captions": 1800.0,
            "image_prompts": 600.0,
            "images": 1800.0,
            "render": 1800.0,
            "metadata": 300.0,
            "thumbnails": 900.0,
            "publish": 1200.0,
        }
    )
    event: dict[str, float] = Field(
        default_factory=lambda: {
            "script": 600.0,
            "audio": 600.0,
            "render": 300.0,
        }
    )
    default_request: float = 600.0
    default_event: float = 600.0

    def request_timeout(self, name: str) -> float:
        return self.request.get(name, self.default_request)

    def event_timeout(self, name: str) -> float:
        return self.event.get(name, self.default_event)


class CollaboratorConfig(BaseModel):
    """Where and how the external collaborators are reached."""

    provider: Literal["mock", "http"] = "mock"
    base_url: str = "http://localhost:3000"
    api_key_env: str = "RENDER_API_KEY"
    paths: EndpointPaths = Field(default_factory=EndpointPaths)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    @property
    def api_key(self) -> str | None:
        """API key read from the configured environment variable."""
        load_dotenv()
        return os.environ.get(self.api_key_env)


class GenerationConfig(BaseModel):
    """Defaults applied to new projects."""

    script_template: str = "documentary"
    target_words: int = 3000
    voice_reference: str | None = None
    segment_count: int = 10
    image_count: int = 10
    image_style: str = "cinematic oil painting, dramatic lighting"
    full_automation: bool = False
    render_passes: list[str] = Field(default_factory=lambda: ["basic", "embers"])


class PublishConfig(BaseModel):
    """Video platform upload defaults."""

    category_id: str = "27"
    privacy_status: Literal["private", "unlisted", "public"] = "unlisted"
    tags: list[str] = Field(default_factory=lambda: ["history", "documentary", "education"])
    publish_hour: int = 17
    timezone: str = "America/Los_Angeles"


class PathsConfig(BaseModel):
    """Path configuration."""

    projects_dir: str = "projects"


class Config(BaseModel):
    """Main application configuration."""

    collaborators: CollaboratorConfig = Field(default_factory=CollaboratorConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()

        # Allow a bare `base_url` at the top level for short config files
        if "base_url" in data:
            data.setdefault("collaborators", {})["base_url"] = data.pop("base_url")

        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump()
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from file or use defaults."""
    if config_path is None:
        # Look for config.yaml in current directory or project root
        candidates = [Path("config.yaml"), Path(__file__).parent.parent / "config.yaml"]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is not None:
        return Config.from_yaml(config_path)

    return Config()
