"""
Timing utilities shared by captions, image plans and render timelines.

Timestamps use the SRT notation `HH:MM:SS,mmm`.
"""

import re
from dataclasses import dataclass

SRT_TIMESTAMP = re.compile(r"(\d{1,2}):(\d{2}):(\d{2})[,.](\d{1,3})")
SRT_RANGE = re.compile(rf"{SRT_TIMESTAMP.pattern}\s*-->\s*{SRT_TIMESTAMP.pattern}")

# Float tolerance when comparing interval boundaries
EPSILON = 1e-6


@dataclass(frozen=True)
class CaptionCue:
    """A single SRT cue."""

    index: int
    start_seconds: float
    end_seconds: float
    text: str


def format_timestamp(seconds: float) -> str:
    """Format seconds as an SRT timestamp (`00:01:15,000`)."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def parse_timestamp(value: str) -> float:
    """Parse an SRT timestamp into seconds.

    Raises:
        ValueError: If the value is not a timestamp.
    """
    match = SRT_TIMESTAMP.fullmatch(value.strip())
    if not match:
        raise ValueError(f"Invalid SRT timestamp: {value!r}")
    h, m, s, ms = match.groups()
    return int(h) * 3600 + int(m) * 60 + int(s) + int(ms.ljust(3, "0")) / 1000


def parse_srt(srt_content: str) -> list[CaptionCue]:
    """Parse SRT text into cues. Malformed blocks are skipped."""
    cues = []
    blocks = re.split(r"\r?\n\s*\r?\n", srt_content.strip())
    for block in blocks:
        lines = [line for line in block.splitlines() if line.strip()]
        if len(lines) < 2:
            continue

        range_line_idx = 1 if lines[0].strip().isdigit() else 0
        match = SRT_RANGE.search(lines[range_line_idx])
        if not match:
            continue

        groups = match.groups()
        start = int(groups[0]) * 3600 + int(groups[1]) * 60 + int(groups[2]) + int(groups[3].ljust(3, "0")) / 1000
        end = int(groups[4]) * 3600 + int(groups[5]) * 60 + int(groups[6]) + int(groups[7].ljust(3, "0")) / 1000
        index = int(lines[0]) if range_line_idx == 1 else len(cues) + 1
        text = " ".join(line.strip() for line in lines[range_line_idx + 1:])
        cues.append(CaptionCue(index=index, start_seconds=start, end_seconds=end, text=text))
    return cues


def build_srt(cues: list[CaptionCue]) -> str:
    """Serialize cues back into SRT text."""
    blocks = []
    for i, cue in enumerate(cues, start=1):
        blocks.append(
            f"{i}\n{format_timestamp(cue.start_seconds)} --> {format_timestamp(cue.end_seconds)}\n{cue.text}"
        )
    return "\n\n".join(blocks) + ("\n" if blocks else "")


def srt_duration(srt_content: str) -> float:
    """End time of the last cue, 0.0 for empty captions."""
    cues = parse_srt(srt_content)
    return cues[-1].end_seconds if cues else 0.0


def equal_intervals(count: int, total_duration: float) -> list[tuple[float, float]]:
    """Split `[0, total_duration]` into `count` equal intervals.

    The last interval ends exactly at `total_duration` so the partition has
    no rounding gap at the tail.
    """
    if count <= 0:
        return []
    step = total_duration / count
    intervals = []
    for i in range(count):
        start = i * step
        end = total_duration if i == count - 1 else (i + 1) * step
        intervals.append((start, end))
    return intervals


def scale_intervals(intervals: list[tuple[float, float]], total_duration: float) -> list[tuple[float, float]]:
    """Stretch a partition of `[0, end]` onto `[0, total_duration]`.

    Relative proportions are kept and the last interval ends exactly at
    `total_duration`. An empty or zero-length partition falls back to
    equal intervals.
    """
    if not intervals:
        return []
    end = intervals[-1][1]
    if end <= 0:
        return equal_intervals(len(intervals), total_duration)
    factor = total_duration / end
    scaled = [(start * factor, stop * factor) for start, stop in intervals]
    scaled[-1] = (scaled[-1][0], total_duration)
    return scaled


def partition_gaps(
    intervals: list[tuple[float, float]],
    total_duration: float,
    tolerance: float = EPSILON,
) -> list[str]:
    """Describe every way `intervals` fails to partition `[0, total_duration]`.

    Returns an empty list when the intervals (in order) start at 0, end at the
    total, and each one starts exactly where the previous one ended.
    """
    problems = []
    if not intervals:
        if total_duration > tolerance:
            problems.append(f"no intervals cover 0-{total_duration:.3f}s")
        return problems

    if abs(intervals[0][0]) > tolerance:
        problems.append(f"first interval starts at {intervals[0][0]:.3f}s, not 0")

    for i, (start, end) in enumerate(intervals):
        if end < start - tolerance:
            problems.append(f"interval {i + 1} ends before it starts")
        if i > 0:
            prev_end = intervals[i - 1][1]
            if start > prev_end + tolerance:
                problems.append(f"gap of {start - prev_end:.3f}s before interval {i + 1}")
            elif start < prev_end - tolerance:
                problems.append(f"overlap of {prev_end - start:.3f}s before interval {i + 1}")

    if abs(intervals[-1][1] - total_duration) > tolerance:
        problems.append(f"last interval ends at {intervals[-1][1]:.3f}s, not {total_duration:.3f}s")

    return problems
