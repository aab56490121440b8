"""Emotion estimation — text/voice/face fusion and per-frame tracking.

Estimates are probabilistic and always normalised into ``[0, 1]``; they are
never diagnoses.
"""

from companion_agent.emotion.fusion import (
    EmotionFusion,
    KeywordEmotionFusion,
    TextSentiment,
    VoiceEvidence,
    analyze_text_sentiment,
)
from companion_agent.emotion.tracker import EmotionTracker, PixelBuffer, SimulatedEmotionTracker

__all__ = [
    "EmotionFusion",
    "EmotionTracker",
    "KeywordEmotionFusion",
    "PixelBuffer",
    "SimulatedEmotionTracker",
    "TextSentiment",
    "VoiceEvidence",
    "analyze_text_sentiment",
]
