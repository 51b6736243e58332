"""
Network-free sentiment of survey answers.

Keyword and phrase scoring over declarative term tables. The tone feeds
both the prompt context and the question generator's negative-first rule.
"""

from survey_engine.core.models import SentimentResult, SentimentTone

MIN_SCORABLE_CHARS = 10

SENTIMENT_TERMS: dict[str, list[str]] = {
    "negative_words": [
        "hard", "difficult", "challenging", "struggle", "frustrating", "confusing",
        "overwhelming", "stressful", "boring", "not fun", "disappointing", "terrible",
        "awful", "hate", "dislike",
    ],
    "negative_phrases": [
        "not that fun", "really hard", "too difficult", "didn't like", "wasn't good",
        "couldn't understand",
    ],
    "positive_words": [
        "great", "excellent", "amazing", "wonderful", "fantastic", "love", "enjoy", "fun",
        "easy", "helpful", "useful", "valuable", "good", "better", "improved",
    ],
    "positive_phrases": [
        "really enjoyed", "very helpful", "made sense", "got better", "clicked for me",
    ],
    "challenge_words": [
        "initially", "at first", "in the beginning", "started with", "had trouble",
        "took time", "eventually", "finally", "but then",
    ],
}

TRANSITION_MARKERS = ["but", "however", "though"]


def analyze_sentiment(text: str) -> SentimentResult:
    """
    Score an answer against the sentiment term tables.

    Words count 1, phrases count 2. Matching is by substring on the
    lowercased text, so "fun" also matches inside "not fun".
    """
    if not text or len(text) < MIN_SCORABLE_CHARS:
        return SentimentResult(tone=SentimentTone.NEUTRAL, confidence=50, key_points=["short response"])

    lower = text.lower()
    key_points: list[str] = []
    negative = positive = challenge = 0

    for word in SENTIMENT_TERMS["negative_words"]:
        if word in lower:
            negative += 1
            key_points.append(f"negative: {word}")
    for phrase in SENTIMENT_TERMS["negative_phrases"]:
        if phrase in lower:
            negative += 2
            key_points.append(f"negative phrase: {phrase}")
    for word in SENTIMENT_TERMS["positive_words"]:
        if word in lower:
            positive += 1
            key_points.append(f"positive: {word}")
    for phrase in SENTIMENT_TERMS["positive_phrases"]:
        if phrase in lower:
            positive += 2
            key_points.append(f"positive phrase: {phrase}")
    for word in SENTIMENT_TERMS["challenge_words"]:
        if word in lower:
            challenge += 1
            key_points.append(f"challenge: {word}")

    tone = SentimentTone.NEUTRAL
    confidence = 50
    if negative > positive:
        tone = SentimentTone.NEGATIVE
        confidence = min(90, 50 + negative * 10)
    elif positive > negative:
        tone = SentimentTone.POSITIVE
        confidence = min(90, 50 + positive * 10)
    elif challenge > 0:
        tone = SentimentTone.CHALLENGING
        confidence = min(85, 50 + challenge * 8)

    if any(marker in lower for marker in TRANSITION_MARKERS):
        key_points.append("transition/change mentioned")

    return SentimentResult(tone=tone, confidence=confidence, key_points=key_points or ["neutral response"])
