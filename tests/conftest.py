"""Shared test fixtures."""

import pytest

from src.collaborators.mock import mock_collaborators
from src.config import Config
from src.factory.artifact_store import ArtifactStore
from src.factory.controller import StageController
from src.factory.models import (
    AudioArtifact,
    AudioSegment,
    CaptionArtifact,
    ImagePlan,
    ImagePrompt,
    ImageSet,
    RenderArtifact,
    ScriptArtifact,
    VariantOutput,
    VideoVariant,
)
from src.factory.project import Project
from src.factory.stages import STAGE_ORDER, Stage
from src.factory.timing import CaptionCue, build_srt


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-live-tests",
        action="store_true",
        default=False,
        help="Run live collaborator tests (makes real HTTP calls to the configured API)",
    )


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a running collaborator API"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live-tests is provided."""
    if not config.getoption("--run-live-tests", default=False):
        skip_live = pytest.mark.skip(
            reason="Live collaborator tests skipped. Use --run-live-tests to run."
        )
        for item in items:
            if "live" in item.keywords:
                item.add_marker(skip_live)


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration."""
    return Config()


@pytest.fixture
def sample_artifacts() -> dict:
    """One artifact per stage: 10 segments of 60s, 10 prompts, 10 images."""
    segments = [
        AudioSegment(
            index=i,
            text=f"Segment {i} narration text.",
            audio_url=f"https://cdn.test/audio/segment-{i}.wav",
            duration=60.0,
            size=1000,
        )
        for i in range(1, 11)
    ]
    prompts = [
        ImagePrompt(
            index=i,
            prompt=f"Prompt {i}",
            scene_description=f"Description {i}",
            start_seconds=(i - 1) * 60.0,
            end_seconds=i * 60.0,
        )
        for i in range(1, 11)
    ]
    return {
        Stage.SCRIPT: ScriptArtifact(text="The empire rose and then it fell.", title="Rome"),
        Stage.AUDIO: AudioArtifact(audio_url="https://cdn.test/audio/combined.wav", segments=segments),
        Stage.CAPTIONS: CaptionArtifact(
            srt_content=build_srt([CaptionCue(1, 0.0, 600.0, "The empire rose and then it fell.")]),
        ),
        Stage.IMAGE_PLAN: ImagePlan(prompts=prompts, total_duration=600.0),
        Stage.IMAGES: ImageSet(image_urls=[f"https://cdn.test/images/{i}.png" for i in range(1, 11)]),
        Stage.RENDER: RenderArtifact(variants={
            VideoVariant.BASIC: VariantOutput(
                variant=VideoVariant.BASIC, video_url="https://cdn.test/video/basic.mp4"
            ),
        }),
    }


@pytest.fixture
def store_through(sample_artifacts):
    """Factory: a store holding sample artifacts for every stage up to `last`."""

    def _build(last: Stage) -> ArtifactStore:
        store = ArtifactStore()
        for stage in STAGE_ORDER[: last.order + 1]:
            store.put(stage, sample_artifacts[stage])
        return store

    return _build


@pytest.fixture
def project() -> Project:
    """A fresh project with a title and no source URL."""
    return Project.create(title="Rome", project_id="proj_test")


@pytest.fixture
def collaborators():
    """Full mock collaborator roster."""
    return mock_collaborators()


@pytest.fixture
def controller(project, collaborators) -> StageController:
    """Stage controller over the mock roster."""
    return StageController(project, collaborators)


@pytest.fixture
def run_through():
    """Factory: run every stage up to and including `last`."""

    async def _run(controller: StageController, last: Stage) -> None:
        for stage in STAGE_ORDER[: last.order + 1]:
            await controller.run(stage)

    return _run
