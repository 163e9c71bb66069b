"""
Deterministic SEO scoring for drafted HTML.

Point allocation (total capped at 100):
    keyword in meta title                     +15
    keyword in first 500 chars of plain text  +10
    keyword in any H2                          +5
    keyword density 1%..3%                    +15
    average sentence length 10..20 words      +10
    meta title 50..70 chars                   +10
    meta description 120..160 chars           +10
    at least one hyperlink                    +10
    at least one H2/H3                        +10
    word count > 800                           +5
"""

from __future__ import annotations

import html as html_lib
import re
from typing import Dict

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_H2_RE = re.compile(r"<h2[^>]*>(.*?)</h2>", re.IGNORECASE | re.DOTALL)
_LINK_RE = re.compile(r"<a\s+[^>]*href", re.IGNORECASE)
_SUBHEADING_RE = re.compile(r"<h[23][^>]*>", re.IGNORECASE)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def strip_html(markup: str) -> str:
    """Plain text of *markup*: tags become spaces, whitespace collapsed."""
    text = _TAG_RE.sub(" ", markup or "")
    text = html_lib.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def count_words(markup: str) -> int:
    return len(strip_html(markup).split())


def keyword_density(text: str, keyword: str) -> float:
    """Occurrences of *keyword* per 100 words of *text*."""
    words = text.split()
    if not words or not keyword:
        return 0.0
    occurrences = text.lower().count(keyword.lower())
    return occurrences / len(words) * 100


def average_sentence_length(text: str) -> float:
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
    if not sentences:
        return 0.0
    return len(text.split()) / len(sentences)


def score_breakdown(
    body_html: str,
    keyword: str,
    meta_title: str,
    meta_description: str,
) -> Dict[str, int]:
    """Points earned per criterion, keyed by criterion name."""
    kw = (keyword or "").lower().strip()
    text = strip_html(body_html)
    lowered = text.lower()
    word_count = len(text.split())
    h2_texts = [strip_html(h).lower() for h in _H2_RE.findall(body_html or "")]
    density = keyword_density(text, kw)
    avg_sentence = average_sentence_length(text)

    points = {
        "keyword_in_title": 15 if kw and kw in (meta_title or "").lower() else 0,
        "keyword_in_intro": 10 if kw and kw in lowered[:500] else 0,
        "keyword_in_h2": 5 if kw and any(kw in h for h in h2_texts) else 0,
        "keyword_density": 15 if 1 <= density <= 3 else 0,
        "sentence_length": 10 if 10 <= avg_sentence <= 20 else 0,
        "meta_title_length": 10 if 50 <= len(meta_title or "") <= 70 else 0,
        "meta_description_length": 10 if 120 <= len(meta_description or "") <= 160 else 0,
        "has_link": 10 if _LINK_RE.search(body_html or "") else 0,
        "has_subheading": 10 if _SUBHEADING_RE.search(body_html or "") else 0,
        "word_count": 5 if word_count > 800 else 0,
    }
    return points


def score_seo(
    body_html: str,
    keyword: str,
    meta_title: str,
    meta_description: str,
) -> int:
    """Total SEO score in [0, 100]."""
    total = sum(score_breakdown(body_html, keyword, meta_title, meta_description).values())
    return max(0, min(total, 100))
