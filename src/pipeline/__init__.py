"""Pipeline module for full-automation runs."""

from .orchestrator import PipelineResult, PipelineRunner, StepResult, next_publish_slot

__all__ = [
    "PipelineResult",
    "PipelineRunner",
    "StepResult",
    "next_publish_slot",
]
