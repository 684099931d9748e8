"""Rule-based message classification.

This package provides the heuristic decision layer:
- Domain types (MessageMetadata, Recommendation, SuggestionGroup)
- Keyword and sender signal detection
- Sender profile metric maintenance
- ClassificationEngine (import from tidyinbox.classifier.engine)
"""

from tidyinbox.classifier.signals import SignalDetector
from tidyinbox.classifier.types import (
    AnalysisReport,
    Confidence,
    GroupAction,
    GroupReason,
    MessageMetadata,
    Recommendation,
    SafetyCheck,
    SafetyCheckId,
    ScoringFactor,
    SuggestionGroup,
)

__all__ = [
    # Signals
    "SignalDetector",
    # Types
    "AnalysisReport",
    "Confidence",
    "GroupAction",
    "GroupReason",
    "MessageMetadata",
    "Recommendation",
    "SafetyCheck",
    "SafetyCheckId",
    "ScoringFactor",
    "SuggestionGroup",
]
