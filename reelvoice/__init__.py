"""Top-level package for Reelvoice.

This package turns a product webpage into a short promotional video script and
a narration track whose measured duration matches a requested target. The main
orchestration entry point is `ReelPipeline`.
"""

from .pipeline import ReelPipeline

__all__ = ["ReelPipeline", "__version__"]

__version__ = "0.3.0"
