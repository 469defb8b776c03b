"""
Progress streaming contract.

Every collaborator operation is consumed as one async stream of tagged events:

    Progress* → Ready? → (Completed | Failed)

- Progress: percent (0-100, never decreasing) plus a human-readable message
- Ready: a usable partial result that is not authoritative yet
- Completed / Failed: exactly one terminal event

`guard_stream` enforces the contract on any source, so the controller can
rely on it even when a collaborator misbehaves. `Operation` runs a stream
in its own task so it finishes even when nobody is listening.
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterable, AsyncIterator, Callable, Optional, Union


@dataclass(frozen=True)
class Progress:
    """Intermediate progress report."""

    percent: float
    message: str = ""
    phase: Optional[str] = None  # collaborator sub-step, e.g. "downloading"


@dataclass(frozen=True)
class Ready:
    """A usable partial artifact emitted before the terminal event."""

    partial: Any
    message: str = ""


@dataclass(frozen=True)
class Completed:
    """Terminal success carrying the complete artifact."""

    artifact: Any


@dataclass(frozen=True)
class Failed:
    """Terminal failure carrying the collaborator's reason verbatim."""

    reason: str


ProgressEvent = Union[Progress, Ready, Completed, Failed]


def is_terminal(event: ProgressEvent) -> bool:
    return isinstance(event, (Completed, Failed))


async def guard_stream(
    source: AsyncIterable[ProgressEvent],
    name: str = "operation",
) -> AsyncIterator[ProgressEvent]:
    """Enforce the progress contract on `source`.

    - percent is clamped to 0-100 and never goes backwards
    - the first terminal event ends the stream; later events are dropped
    - an exception from the source becomes `Failed(str(exc))`
    - a source that ends without a terminal event yields `Failed`
    """
    last_percent = 0.0
    iterator = source.__aiter__()
    try:
        while True:
            try:
                event = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                yield Failed(str(e) or type(e).__name__)
                return

            if isinstance(event, Progress):
                percent = event.percent if event.percent is not None else last_percent
                percent = min(max(percent, last_percent, 0.0), 100.0)
                last_percent = percent
                yield replace(event, percent=percent)
            elif isinstance(event, Ready):
                yield event
            elif isinstance(event, (Completed, Failed)):
                yield event
                return
            else:
                yield Failed(f"{name} emitted an unknown event: {event!r}")
                return

        yield Failed(f"{name} ended without a terminal event")
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


async def rescale(
    source: AsyncIterable[ProgressEvent],
    start: float,
    end: float,
) -> AsyncIterator[ProgressEvent]:
    """Map a stream's local 0-100 progress onto the `[start, end]` window."""
    span = end - start
    async for event in source:
        if isinstance(event, Progress):
            yield replace(event, percent=start + event.percent * span / 100.0)
        else:
            yield event


@dataclass
class StreamOutcome:
    """Everything observed while draining one stream."""

    artifact: Any = None
    failure: Optional[str] = None
    partials: list[Any] = field(default_factory=list)
    last_percent: float = 0.0
    messages: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failure is None


async def collect(
    stream: AsyncIterable[ProgressEvent],
    on_event: Optional[Callable[[ProgressEvent], None]] = None,
) -> StreamOutcome:
    """Drain `stream`, recording partials and the terminal result.

    Partials from `Ready` events are kept even when the stream fails.
    """
    outcome = StreamOutcome()
    async for event in stream:
        if on_event:
            on_event(event)
        if isinstance(event, Progress):
            outcome.last_percent = event.percent
            if event.message:
                outcome.messages.append(event.message)
        elif isinstance(event, Ready):
            outcome.partials.append(event.partial)
        elif isinstance(event, Completed):
            outcome.artifact = event.artifact
        elif isinstance(event, Failed):
            outcome.failure = event.reason
    return outcome


_DONE = object()


class Operation:
    """
    An operation running in its own task.

    Iterating observes its events. The task runs to completion whether or
    not anyone is iterating, and `on_done` runs when it finishes. A body
    that raises re-raises to whoever reaches the end of the stream or
    awaits `wait()`.

    Must be created inside a running event loop.
    """

    def __init__(
        self,
        name: str,
        body: AsyncIterator[ProgressEvent],
        on_done: Optional[Callable[[], None]] = None,
    ):
        loop = asyncio.get_running_loop()
        self.name = name
        self.error: Optional[Exception] = None
        self._on_done = on_done
        self._queue: asyncio.Queue = asyncio.Queue()
        self._finished = False
        self._task = loop.create_task(self._drive(body))

    async def _drive(self, body: AsyncIterator[ProgressEvent]) -> None:
        try:
            async with aclosing(body) as events:
                async for event in events:
                    self._queue.put_nowait(event)
        except Exception as e:
            self.error = e
        finally:
            try:
                if self._on_done is not None:
                    self._on_done()
            except Exception as e:
                self.error = self.error or e
            self._queue.put_nowait(_DONE)

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        """Wait for the task without consuming events."""
        await asyncio.shield(self._task)
        if self.error is not None:
            raise self.error

    def __aiter__(self) -> "Operation":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is _DONE:
            self._finished = True
            if self.error is not None:
                raise self.error
            raise StopAsyncIteration
        return event
