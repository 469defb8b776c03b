"""Tests for artifact models."""

import pytest

from src.factory.models import (
    AudioArtifact,
    AudioSegment,
    GenerationSettings,
    RecombinedAudio,
    RenderArtifact,
    ScriptArtifact,
    VariantOutput,
    VideoVariant,
    parse_artifact,
)
from src.factory.stages import Stage


def output(variant: VideoVariant) -> VariantOutput:
    return VariantOutput(variant=variant, video_url=f"https://cdn.test/{variant.value}.mp4")


class TestAudioArtifact:
    """Tests for segmented audio."""

    def test_replace_segment_changes_only_that_index(self, sample_artifacts):
        """Only segment k changes; totals are recomputed from the full set."""
        audio = sample_artifacts[Stage.AUDIO]
        new = AudioSegment(index=4, text="Edited", audio_url="https://cdn.test/s4-v2.wav", duration=42.5, size=700)

        updated = audio.replace_segment(new)

        assert updated.segment(4) == new
        for before, after in zip(audio.segments, updated.segments):
            if before.index != 4:
                assert after == before
        assert updated.total_duration == pytest.approx(sum(s.duration for s in updated.segments))
        assert updated.total_duration == pytest.approx(582.5)
        assert updated.size == 9 * 1000 + 700
        assert updated.needs_recombine
        assert audio.segment(4).text != "Edited"

    def test_unknown_segment_raises(self, sample_artifacts):
        audio = sample_artifacts[Stage.AUDIO]

        with pytest.raises(KeyError):
            audio.segment(11)
        with pytest.raises(KeyError):
            audio.replace_segment(AudioSegment(index=11, text="x", audio_url="u", duration=1))

    def test_with_combined_clears_flag(self):
        audio = AudioArtifact(
            audio_url="https://cdn.test/old.wav",
            segments=[AudioSegment(index=1, text="a", audio_url="https://cdn.test/1.wav", duration=2)],
            needs_recombine=True,
        )

        combined = audio.with_combined(RecombinedAudio(audio_url="https://cdn.test/new.wav", duration=2, size=64))

        assert combined.audio_url == "https://cdn.test/new.wav"
        assert not combined.needs_recombine

    def test_parses_camel_case_wire_payload(self):
        """Collaborator payloads use camelCase keys."""
        audio = AudioArtifact.model_validate({
            "success": True,
            "segments": [
                {"index": 1, "text": "One", "audioUrl": "https://cdn.test/1.wav", "duration": 3.5, "size": 10},
                {"index": 2, "text": "Two", "audioUrl": "https://cdn.test/2.wav", "duration": 1.5, "size": 20},
            ],
            "totalDuration": 5.0,
        })

        assert audio.total_duration == 5.0
        assert audio.size == 30
        # No combined file: first segment stands in until recombined
        assert audio.audio_url == "https://cdn.test/1.wav"
        assert audio.needs_recombine


class TestRenderArtifact:
    """Tests for variant bookkeeping."""

    def test_with_variant_keeps_siblings(self):
        render = RenderArtifact().with_variant(output(VideoVariant.BASIC))
        render = render.with_variant(output(VideoVariant.EMBERS))

        assert set(render.variants) == {VideoVariant.BASIC, VideoVariant.EMBERS}

    def test_failure_does_not_touch_other_variant(self):
        render = RenderArtifact().with_variant(output(VideoVariant.BASIC))

        failed = render.with_failure(VideoVariant.EMBERS, "crash")

        assert failed.url(VideoVariant.BASIC) == "https://cdn.test/basic.mp4"
        assert failed.failures == {VideoVariant.EMBERS: "crash"}

    def test_preferred_output_order(self):
        render = RenderArtifact().with_variant(output(VideoVariant.BASIC))
        assert render.preferred_output().variant is VideoVariant.BASIC

        render = render.with_variant(output(VideoVariant.SMOKE_EMBERS))
        assert render.preferred_output().variant is VideoVariant.SMOKE_EMBERS

        render = render.with_variant(output(VideoVariant.EMBERS))
        assert render.preferred_output().variant is VideoVariant.EMBERS

    def test_variant_effect_flags(self):
        assert VideoVariant.EMBERS.effects.model_dump(by_alias=True) == {"embers": True, "smoke_embers": False}
        assert VideoVariant.SMOKE_EMBERS.effects.smoke_embers
        assert not VideoVariant.BASIC.has_effects


class TestParsing:
    """Tests for the discriminated artifact union."""

    def test_parse_artifact_uses_kind(self):
        script = ScriptArtifact(text="Four words right here")
        parsed = parse_artifact(script.model_dump(mode="json"))

        assert isinstance(parsed, ScriptArtifact)
        assert parsed.word_count == 4

    def test_script_accepts_wire_key(self):
        script = ScriptArtifact.model_validate({"success": True, "script": "Hello there"})

        assert script.text == "Hello there"

    def test_settings_from_config(self, test_config):
        test_config.generation.render_passes = ["basic", "smoke_embers"]

        settings = GenerationSettings.from_config(test_config)

        assert settings.render_passes == [VideoVariant.BASIC, VideoVariant.SMOKE_EMBERS]
        assert settings.category_id == "27"
