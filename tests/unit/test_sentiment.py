"""Unit tests for answer sentiment"""

from survey_engine.core.models import SentimentTone
from survey_engine.extraction.sentiment import analyze_sentiment


class TestSentiment:
    """Keyword and phrase scoring"""

    def test_short_text_is_neutral(self) -> None:
        result = analyze_sentiment("ok fine")

        assert result.tone == SentimentTone.NEUTRAL
        assert result.confidence == 50
        assert result.key_points == ["short response"]

    def test_negative_phrase_counts_double(self) -> None:
        """'really hard' adds 2 on top of 'hard'"""
        result = analyze_sentiment("The setup was really hard for us")

        assert result.tone == SentimentTone.NEGATIVE
        assert result.confidence == 80
        assert "negative: hard" in result.key_points
        assert "negative phrase: really hard" in result.key_points

    def test_negative_confidence_capped(self) -> None:
        result = analyze_sentiment("hard difficult frustrating confusing stressful awful terrible")

        assert result.confidence == 90

    def test_positive(self) -> None:
        result = analyze_sentiment("The trainer was very helpful overall")

        assert result.tone == SentimentTone.POSITIVE
        assert result.confidence == 80

    def test_challenging_when_balanced(self) -> None:
        """Challenge terms decide the tone only when polarity is tied"""
        result = analyze_sentiment("Initially we waited, eventually it shipped")

        assert result.tone == SentimentTone.CHALLENGING
        assert result.confidence == 66

    def test_transition_marker_noted(self) -> None:
        result = analyze_sentiment("It was quick but we lost data")

        assert "transition/change mentioned" in result.key_points

    def test_neutral_response_point(self) -> None:
        result = analyze_sentiment("We use spreadsheets today")

        assert result.tone == SentimentTone.NEUTRAL
        assert result.key_points == ["neutral response"]
