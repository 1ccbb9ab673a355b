"""Reelvoice pipeline package.

This package contains orchestration, stage handlers, timeline helpers, and
stage failure descriptions used by run execution.
"""

from .orchestrator import ReelPipeline, RunHandle, final_output_bundle
from .timeline import export_timeline, parse_timeline, timeline_from_script

__all__ = [
    "ReelPipeline",
    "RunHandle",
    "export_timeline",
    "final_output_bundle",
    "parse_timeline",
    "timeline_from_script",
]
