"""Candidate Pipeline: dedup, constraint filters, rerank and the auto-execute gate."""

from tabitha.pipeline.candidates import CandidatePipeline
from tabitha.pipeline.clarify import format_disambiguation_list, specific_clarifier
from tabitha.pipeline.dedup import dedupe
from tabitha.pipeline.filters import app_matches, card_passes, filter_candidates
from tabitha.pipeline.models import Candidate, PipelineResult

__all__ = [
    "Candidate",
    "CandidatePipeline",
    "PipelineResult",
    "app_matches",
    "card_passes",
    "dedupe",
    "filter_candidates",
    "format_disambiguation_list",
    "specific_clarifier",
]
