"""
Base collaborator interface for the generation pipeline.

Every external operation (transcript fetch, script rewrite, speech synthesis,
captioning, image prompting, image generation, rendering, metadata,
thumbnails, upload) is reached through the same contract: take a request
model, stream progress events, finish with exactly one Completed or Failed.
Collaborators return values; they never mutate project state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, AsyncIterator, Optional

from pydantic import BaseModel

from src.factory.progress import ProgressEvent

if TYPE_CHECKING:
    from src.config import Config


class Collaborator(ABC):
    """
    Abstract base class for all external collaborators.

    Implementations are async generators: `async def stream(...)` that
    yields Progress/Ready events and one terminal event.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for logging and debugging."""
        pass

    @abstractmethod
    def stream(self, request: BaseModel) -> AsyncIterator[ProgressEvent]:
        """
        Start the operation and stream its events.

        Args:
            request: Stage-specific request model.

        Returns:
            Async iterator of progress events ending in Completed or Failed.
        """
        pass


@dataclass
class Collaborators:
    """The roster of collaborators one project's pipeline consumes."""

    transcript_fetcher: Collaborator
    script_rewriter: Collaborator
    speech_synthesizer: Collaborator
    segment_synthesizer: Collaborator
    audio_recombiner: Collaborator
    caption_transcriber: Collaborator
    image_prompt_author: Collaborator
    image_generator: Collaborator
    video_renderer: Collaborator
    metadata_author: Collaborator
    thumbnail_generator: Collaborator
    platform_publisher: Collaborator

    def replace(self, **overrides: Collaborator) -> "Collaborators":
        """Copy of the roster with some collaborators swapped out."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(overrides)
        return Collaborators(**values)


def build_collaborators(config: Optional["Config"] = None) -> Collaborators:
    """Build the roster selected by `config.collaborators.provider`."""
    from src.config import load_config

    config = config or load_config()

    if config.collaborators.provider == "mock":
        from src.collaborators.mock import mock_collaborators
        return mock_collaborators()

    from src.collaborators.http import http_collaborators
    return http_collaborators(config)
