"""
Extractor module for Visibility Probe.

Turns raw model output into structured data:
- analysis_schema: strict, versioned schema for single-answer analysis
- answer_analyzer: analysis of one generated answer
- prompt_generator: customer prompt generation
- visibility_analyzer: qualitative visibility assessment
- recommendation_generator: prioritized improvement recommendations
"""

from .analysis_schema import (
    ANALYSIS_SCHEMA_VERSION,
    AnswerAnalysis,
    CompetitorMention,
    parse_analysis,
)
from .answer_analyzer import AnalysisOutcome, AnswerAnalyzer
from .prompt_generator import CustomerPrompt, PromptGenerator
from .recommendation_generator import Recommendation, RecommendationGenerator
from .visibility_analyzer import VisibilityAnalyzer, VisibilityAssessment

__all__ = [
    "ANALYSIS_SCHEMA_VERSION",
    "AnswerAnalysis",
    "CompetitorMention",
    "parse_analysis",
    "AnalysisOutcome",
    "AnswerAnalyzer",
    "CustomerPrompt",
    "PromptGenerator",
    "Recommendation",
    "RecommendationGenerator",
    "VisibilityAnalyzer",
    "VisibilityAssessment",
]
