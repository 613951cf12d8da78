"""
Keyword classifier for deal status and conversation sentiment

Bag-of-words heuristics over WhatsApp message text. No model, no store
access: every function here is pure and deterministic.
"""
import enum
import re
from typing import Iterable, List, Pattern


class DealStatus(str, enum.Enum):
    WON = "won"
    LOST = "lost"
    NEEDS_FOLLOWUP = "needs_followup"
    NEUTRAL = "neutral"


class Sentiment(str, enum.Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


DEAL_CLOSED_KEYWORDS = [
    "yes", "sure", "confirmed", "deal", "agreed", "accept", "buy", "purchase",
    "order", "booking", "book", "reserve", "confirm", "go ahead", "proceed",
    "perfect", "great", "sounds good", "count me in", "i'm in",
]

DEAL_LOST_KEYWORDS = [
    "no thanks", "not interested", "no", "cancel", "nevermind", "never mind",
    "too expensive", "expensive", "can't afford", "not now", "maybe later",
    "not for me", "pass", "decline", "reject",
]

NEEDS_FOLLOWUP_KEYWORDS = [
    "thinking", "maybe", "consider", "let me think", "think about it", "need to think",
    "not sure", "hmm", "i'll let you know", "get back to you", "discuss", "check", "see",
]

POSITIVE_KEYWORDS = ["yes", "great", "perfect", "thanks", "good", "interested", "excited"]
NEGATIVE_KEYWORDS = ["no", "expensive", "not", "can't", "won't", "difficult", "problem"]

SENTIMENT_WINDOW = 10


def compile_keywords(keywords: Iterable[str]) -> Pattern:
    """Build one case-insensitive whole-word alternation for a keyword set"""
    ordered = sorted(set(keywords), key=len, reverse=True)
    alternation = "|".join(re.escape(keyword) for keyword in ordered)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


# Checked in this order; first hit wins
_DEAL_PATTERNS = [
    (DealStatus.WON, compile_keywords(DEAL_CLOSED_KEYWORDS)),
    (DealStatus.LOST, compile_keywords(DEAL_LOST_KEYWORDS)),
    (DealStatus.NEEDS_FOLLOWUP, compile_keywords(NEEDS_FOLLOWUP_KEYWORDS)),
]

_POSITIVE_PATTERN = compile_keywords(POSITIVE_KEYWORDS)
_NEGATIVE_PATTERN = compile_keywords(NEGATIVE_KEYWORDS)


def classify_deal(text: str) -> DealStatus:
    """Map a single inbound message to a deal status"""
    if not text:
        return DealStatus.NEUTRAL

    for status, pattern in _DEAL_PATTERNS:
        if pattern.search(text):
            return status
    return DealStatus.NEUTRAL


def classify_sentiment(recent_inbound_texts: Iterable[str], window_size: int = SENTIMENT_WINDOW) -> Sentiment:
    """
    Score the newest inbound messages of a conversation.

    Expects texts ordered newest first; only the first window_size are
    considered. Each message counts at most once per side, so a message with
    both positive and negative words adds to both tallies.
    """
    window: List[str] = []
    for text in recent_inbound_texts:
        if len(window) >= window_size:
            break
        window.append(text or "")

    positive = sum(1 for text in window if _POSITIVE_PATTERN.search(text))
    negative = sum(1 for text in window if _NEGATIVE_PATTERN.search(text))

    if positive > negative:
        return Sentiment.POSITIVE
    if negative > positive:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL
