"""Multi-signal ranking engine.

This package scores candidate catalog items with four independent signals
(Thompson sampling, trending velocity, cart affinity and collaborative
filtering), fuses them with per-vertical weights and learns online from
impression and conversion feedback.
"""

from src.engine.config import BusinessConfig, EngineSettings, SignalWeights, get_business_config
from src.engine.context import build_context
from src.engine.feedback import FeedbackRecorder
from src.engine.models import (
    CandidateItem,
    FeedbackAction,
    RankedRecommendation,
    RecommendationContext,
)
from src.engine.orchestrator import RecommendationEngine, create_engine

__all__ = [
    "BusinessConfig",
    "CandidateItem",
    "EngineSettings",
    "FeedbackAction",
    "FeedbackRecorder",
    "RankedRecommendation",
    "RecommendationContext",
    "RecommendationEngine",
    "SignalWeights",
    "build_context",
    "create_engine",
    "get_business_config",
]
