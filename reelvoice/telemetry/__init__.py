"""Runtime logging for pipeline and narration activity."""

from .logger import RunLogger

__all__ = ["RunLogger"]
