"""Analytics package.

This package contains modules for:
- Trending word and bigram frequencies (text.py)
- Sentiment normalization (sentiment.py)
- Cached dashboard payloads (dashboard.py)
"""

from .text import StopWords, TextAnalysis, TextAnalyzer, load_stop_words

from .sentiment import (
    Polarity,
    SentimentLevel,
    ConfidenceLevel,
    SentimentSignal,
    SentimentProvider,
    normalize,
    classify_score,
    classify_confidence,
    collapse,
    bucket_percentages,
    safe_percentage
)

from .dashboard import DashboardAggregator, TagInteraction, try_default, velocity

__all__ = [
    # Text
    'StopWords',
    'TextAnalysis',
    'TextAnalyzer',
    'load_stop_words',

    # Sentiment
    'Polarity',
    'SentimentLevel',
    'ConfidenceLevel',
    'SentimentSignal',
    'SentimentProvider',
    'normalize',
    'classify_score',
    'classify_confidence',
    'collapse',
    'bucket_percentages',
    'safe_percentage',

    # Dashboard
    'DashboardAggregator',
    'TagInteraction',
    'try_default',
    'velocity'
]
