"""HTTP collaborators backed by the streaming render API.

Each collaborator POSTs its request as JSON and reads the response as a
server-sent event stream. Event payloads carry a `type`:

- progress: `percent` (or `progress`), `message`, optional `stage`
- video_ready: a playable video exists before final confirmation
- caption_error: caption burn-in failed; non-fatal, the video stays usable
- complete: terminal success, validated into the collaborator's result model
- error: terminal failure

Transport errors, HTTP errors and timeouts all become `Failed` events, so
callers only ever see the progress contract.
"""

import json
import time
from typing import Any, AsyncIterator, Optional

import httpx
from pydantic import BaseModel, ValidationError

from src.collaborators.base import Collaborator, Collaborators
from src.collaborators.sse import decode_payload, iter_sse
from src.config import Config
from src.factory.models import (
    AudioArtifact,
    AudioSegment,
    CaptionArtifact,
    ImagePlan,
    ImageSet,
    PublishMetadata,
    PublishResult,
    RecombinedAudio,
    ScriptArtifact,
    ThumbnailSet,
    TranscriptResult,
    VariantOutput,
)
from src.factory.progress import Completed, Failed, Progress, ProgressEvent, Ready


class HttpCollaborator(Collaborator):
    """A collaborator reached over HTTP with an SSE progress stream."""

    def __init__(
        self,
        name: str,
        base_url: str,
        path: str,
        result_model: type[BaseModel],
        request_timeout: float = 600.0,
        event_timeout: float = 600.0,
        api_key: Optional[str] = None,
        result_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the collaborator.

        Args:
            name: Name used in logs and failure messages.
            base_url: Root URL of the collaborator API.
            path: Route for this operation.
            result_model: Model the `complete` payload is validated into.
            request_timeout: Upper bound for the whole operation, in seconds.
            event_timeout: Upper bound for silence between events, in seconds.
            api_key: Optional bearer token.
            result_key: Key of the `complete` payload holding the result,
                when it is nested (e.g. `segment`).
            transport: Custom httpx transport (tests).
        """
        self._name = name
        self.url = base_url.rstrip("/") + path
        self.result_model = result_model
        self.request_timeout = request_timeout
        self.event_timeout = event_timeout
        self.api_key = api_key
        self.result_key = result_key
        self._transport = transport

    @property
    def name(self) -> str:
        return self._name

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(30.0, read=self.event_timeout)
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def stream(self, request: BaseModel) -> AsyncIterator[ProgressEvent]:
        body = request.model_dump(mode="json", by_alias=True, exclude_none=True)
        deadline = time.monotonic() + self.request_timeout
        state = {"percent": 0.0}

        try:
            async with self._client() as client:
                async with client.stream("POST", self.url, json=body, headers=self._headers()) as response:
                    if response.status_code >= 400:
                        text = (await response.aread()).decode(errors="replace")
                        yield Failed(f"{self.name} returned HTTP {response.status_code}: {text[:500]}")
                        return

                    content_type = response.headers.get("content-type", "")
                    if "text/event-stream" not in content_type:
                        yield self._from_json_body(await response.aread())
                        return

                    async for sse in iter_sse(response.aiter_lines()):
                        if time.monotonic() > deadline:
                            yield Failed(
                                f"{self.name} timed out after {self.request_timeout / 60:.0f} minutes"
                            )
                            return

                        payload = decode_payload(sse.data)
                        if payload is None:
                            continue

                        event = self._to_event(payload, state)
                        if event is None:
                            continue
                        yield event
                        if isinstance(event, (Completed, Failed)):
                            return
        except httpx.TimeoutException:
            yield Failed(
                f"{self.name} timed out - no progress received for {self.event_timeout / 60:.0f} minutes"
            )
            return
        except httpx.HTTPError as e:
            yield Failed(f"{self.name} request failed: {e}")
            return

        yield Failed(f"{self.name} stream closed without a result")

    def _to_event(self, payload: dict[str, Any], state: dict[str, float]) -> Optional[ProgressEvent]:
        """Map one decoded payload onto the progress contract."""
        kind = payload.get("type")

        if kind == "progress":
            percent = payload.get("percent", payload.get("progress"))
            if isinstance(percent, (int, float)):
                state["percent"] = float(percent)
            return Progress(state["percent"], payload.get("message", ""), payload.get("stage"))

        if kind == "video_ready":
            try:
                partial = VariantOutput.model_validate(payload)
            except ValidationError:
                return None
            if isinstance(payload.get("percent"), (int, float)):
                state["percent"] = float(payload["percent"])
            return Ready(partial, payload.get("message", "Video ready"))

        if kind == "caption_error":
            # Non-fatal: the uncaptioned video remains valid
            reason = payload.get("error") or "Caption burning failed"
            return Progress(state["percent"], f"Caption error (ignored): {reason}", "captions")

        if kind == "complete":
            return self._completed(payload)

        if kind == "error" or payload.get("error"):
            return Failed(payload.get("error") or f"{self.name} failed")

        # token streams and unknown types carry nothing the pipeline needs
        return None

    def _completed(self, payload: dict[str, Any]) -> ProgressEvent:
        data = payload.get(self.result_key) if self.result_key else payload
        if data is None:
            return Failed(f"{self.name} completed without '{self.result_key}'")
        try:
            return Completed(self.result_model.model_validate(data))
        except ValidationError as e:
            return Failed(f"{self.name} returned an invalid result: {e.error_count()} validation error(s)")

    def _from_json_body(self, raw: bytes) -> ProgressEvent:
        """Handle endpoints that answer with a single JSON document."""
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return Failed(f"{self.name} returned a non-JSON response")
        if not isinstance(payload, dict):
            return Failed(f"{self.name} returned an unexpected response")
        if payload.get("success") is False or payload.get("error"):
            return Failed(payload.get("error") or f"{self.name} failed")
        return self._completed(payload)


def http_collaborators(
    config: Config,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Collaborators:
    """Build the full roster against `config.collaborators.base_url`."""
    settings = config.collaborators
    paths = settings.paths
    timeouts = settings.timeouts
    api_key = settings.api_key

    def make(name: str, key: str, path: str, model: type[BaseModel], result_key: Optional[str] = None):
        return HttpCollaborator(
            name=name,
            base_url=settings.base_url,
            path=path,
            result_model=model,
            request_timeout=timeouts.request_timeout(key),
            event_timeout=timeouts.event_timeout(key),
            api_key=api_key,
            result_key=result_key,
            transport=transport,
        )

    return Collaborators(
        transcript_fetcher=make("transcript", "transcript", paths.transcript, TranscriptResult),
        script_rewriter=make("script", "script", paths.script, ScriptArtifact),
        speech_synthesizer=make("audio", "audio", paths.audio, AudioArtifact),
        segment_synthesizer=make("audio-segment", "audio_segment", paths.audio_segment, AudioSegment, "segment"),
        audio_recombiner=make("audio-recombine", "audio_recombine", paths.audio_recombine, RecombinedAudio),
        caption_transcriber=make("captions", "captions", paths.captions, CaptionArtifact),
        image_prompt_author=make("image-prompts", "image_prompts", paths.image_prompts, ImagePlan),
        image_generator=make("images", "images", paths.images, ImageSet),
        video_renderer=make("render", "render", paths.render, VariantOutput),
        metadata_author=make("metadata", "metadata", paths.metadata, PublishMetadata),
        thumbnail_generator=make("thumbnails", "thumbnails", paths.thumbnails, ThumbnailSet),
        platform_publisher=make("publish", "publish", paths.publish, PublishResult),
    )
