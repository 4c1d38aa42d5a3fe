"""Pipeline orchestration for matching and dispatch."""

from .models import PipelineRunResult, ProfileRunStats
from .runner import MatchingPipeline

__all__ = ["MatchingPipeline", "PipelineRunResult", "ProfileRunStats"]
