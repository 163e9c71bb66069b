"""Tests for deterministic SEO scoring."""

import pytest

from autopilot import seo
from autopilot.seo import (
    average_sentence_length,
    count_words,
    keyword_density,
    score_breakdown,
    score_seo,
    strip_html,
)

KEYWORD = "dental implants"
META_TITLE = "Dental Implants in Austin: Costs, Benefits and Recovery"
META_DESCRIPTION = "d" * 140

KW_SENTENCE = "Patients often ask our team about dental implants and how they compare with bridges."
FILLER = "Healthy gums support every restoration and regular cleanings keep your smile strong for years."


def _article(blocks=16):
    paragraph = " ".join([KW_SENTENCE, FILLER, FILLER, FILLER])
    body = "".join(f"<p>{paragraph}</p>" for _ in range(blocks))
    return (
        "<h2>Why choose dental implants</h2>"
        + body
        + '<p><a href="/contact">Book a visit</a> today.</p>'
    )


class TestHelpers:

    @pytest.mark.unit
    def test_strip_html(self):
        assert strip_html("<p>Tom &amp; Jerry</p><p>smile</p>") == "Tom & Jerry smile"
        assert strip_html("") == ""

    @pytest.mark.unit
    def test_count_words(self):
        assert count_words("<h1>Hello</h1><p>dental world</p>") == 3

    @pytest.mark.unit
    def test_keyword_density(self):
        text = "dental implants " + "word " * 98
        assert keyword_density(text, "Dental Implants") == pytest.approx(1.0)
        assert keyword_density("", "x") == 0.0

    @pytest.mark.unit
    def test_average_sentence_length(self):
        assert average_sentence_length("One two three. Four five six!") == 3.0
        assert average_sentence_length("") == 0.0


class TestScore:

    @pytest.mark.unit
    def test_article_meeting_every_criterion_scores_100(self):
        breakdown = score_breakdown(_article(), KEYWORD, META_TITLE, META_DESCRIPTION)
        assert all(points > 0 for points in breakdown.values()), breakdown
        assert score_seo(_article(), KEYWORD, META_TITLE, META_DESCRIPTION) == 100

    @pytest.mark.unit
    def test_short_article_loses_length_points(self):
        breakdown = score_breakdown(_article(blocks=2), KEYWORD, META_TITLE, META_DESCRIPTION)
        assert breakdown["word_count"] == 0
        assert breakdown["keyword_in_title"] == 15

    @pytest.mark.unit
    def test_bad_meta_lengths(self):
        breakdown = score_breakdown(_article(), KEYWORD, "Implants", "short")
        assert breakdown["keyword_in_title"] == 0
        assert breakdown["meta_title_length"] == 0
        assert breakdown["meta_description_length"] == 0

    @pytest.mark.unit
    def test_empty_draft_scores_zero(self):
        assert score_seo("", KEYWORD, "", "") == 0

    @pytest.mark.unit
    def test_total_is_clamped(self, monkeypatch):
        monkeypatch.setattr(seo, "score_breakdown", lambda *a: {"a": 90, "b": 60})
        assert score_seo("<p>x</p>", KEYWORD, "", "") == 100
        monkeypatch.setattr(seo, "score_breakdown", lambda *a: {"a": -5})
        assert score_seo("<p>x</p>", KEYWORD, "", "") == 0
